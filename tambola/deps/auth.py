"""
Dépendances d'authentification hôte
===================================

Objectif
--------
Fournir une *dependency* FastAPI `host_required` qui résout le Bearer token en `HostUser`
auprès de l'annuaire des hôtes (statique ou HTTP selon `AUTH_PROVIDER`).

Comportement & codes retour
---------------------------
- 401 si aucun Bearer n'est fourni, ou s'il est inconnu de l'annuaire.
- 503 si l'annuaire ne répond pas (timeouts durs).
- `HostUser` sinon.

Notes
-----
- On garde `HTTPBearer(auto_error=False)` pour faire remonter des 401 propres.
- L'expiration d'abonnement n'est PAS vérifiée ici : la lecture reste possible, et chaque
  action de mutation revérifie l'hôte au moment où elle s'exécute (contrôleur).
"""
from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tambola.models.host import HostUser
from tambola.services.errors import AuthUnavailable
from tambola.services.host_directory import get_directory

# Schéma Bearer (désactive l'erreur auto pour qu'on rende nos 401)
bearer = HTTPBearer(auto_error=False)


async def host_required(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> HostUser:
    if not credentials or (credentials.scheme or "").lower() != "bearer":
        raise HTTPException(status_code=401, detail="Host authentication required")
    try:
        host = await get_directory().fetch_by_token(credentials.credentials)
    except AuthUnavailable as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    if host is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return host
