"""
Service: errors.py
Rôle:
- Taxonomie des erreurs du moteur de jeu, partagée par le store, le contrôleur et les routes.

Chaque erreur porte un `kind` stable (exposé au front dans `ActionResult.error`) et un
`status_code` indicatif utilisé par les routes pour construire l'HTTPException.

Note: l'épuisement du tirage n'est PAS une erreur (transition active → finished).
"""
from __future__ import annotations


class TambolaError(Exception):
    """Base de toutes les erreurs métier."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class StorageConflict(TambolaError):
    """Mise à jour atomique non committée après toutes les tentatives."""

    kind = "storage_conflict"
    status_code = 409


class GameNotFound(TambolaError):
    """La partie référencée n'existe pas (ou plus)."""

    kind = "game_not_found"
    status_code = 404


class ValidationError(TambolaError):
    """Configuration hôte refusée avant toute persistance."""

    kind = "validation_error"
    status_code = 422


class InvalidTransition(ValidationError):
    """Action incompatible avec la phase courante de la partie."""

    kind = "invalid_transition"
    status_code = 409


class AuthExpired(TambolaError):
    """Hôte désactivé ou abonnement expiré : actions de mutation refusées."""

    kind = "auth_expired"
    status_code = 401


class PermissionDenied(TambolaError):
    """L'hôte n'est pas propriétaire de la partie."""

    kind = "permission_denied"
    status_code = 403


class AuthUnavailable(TambolaError):
    """L'annuaire des hôtes n'a pas répondu dans le délai imparti."""

    kind = "auth_unavailable"
    status_code = 503
