"""
Models / host.py
Rôle:
- Définir l'utilisateur courant tel que fourni par le collaborateur auth/abonnement.

Champs:
- id: identifiant unique de l'hôte (ou de l'admin).
- role: "host" | "admin".
- is_active: compte activé par l'administration.
- subscription_end_date: fin d'abonnement (None = pas d'abonnement).
"""
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel


class HostUser(BaseModel):
    """Profil minimal d'un hôte pour l'autorisation des actions de jeu."""
    id: str
    name: str = ""
    role: Literal["host", "admin"] = "host"
    is_active: bool = True
    subscription_end_date: Optional[datetime] = None

    def can_act(self, now: Optional[datetime] = None) -> bool:
        """True si le compte est actif et (pour un hôte) l'abonnement non expiré."""
        if not self.is_active:
            return False
        if self.role == "admin":
            return True
        if self.subscription_end_date is None:
            return False
        now = now or datetime.now(timezone.utc)
        end = self.subscription_end_date
        if end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)
        return end > now
