"""
Models / event.py
Rôle:
- Définir l'événement d'annonce diffusé au collaborateur audio / aux écrans (WS, timeline).

Notes:
- `kind` restreint à un jeu de valeurs (Literal) pour éviter les fautes de frappe.
- `seq` est unique et croissant par partie : le consommateur déduplique seul les
  re-livraisons d'un même événement logique.
- `payload` est libre (clé/valeur) afin d'embarquer le contexte (numéro, gagnants...).
"""
from pydantic import BaseModel, Field
from typing import Literal, Dict, Any
from uuid import uuid4
import time

# Typage strict des catégories d'annonces
EventKind = Literal["numberCalled", "prizeWon", "gameOver"]


class GameEvent(BaseModel):
    """Une annonce discrète : numéro appelé, lot gagné ou fin de partie."""
    id: str = Field(default_factory=lambda: uuid4().hex)  # identité globale
    seq: int  # rang dans la partie (jamais réutilisé, même après reset)
    kind: EventKind
    ts: float = Field(default_factory=time.time)  # horodatage epoch (secondes)
    payload: Dict[str, Any] = Field(default_factory=dict)
