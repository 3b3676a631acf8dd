"""
Routes de gestion des parties.

Objectifs :
- Création / configuration / suppression d'une partie (hôte propriétaire).
- Actions de déroulé : start, pause, resume, end, reset, call.
- Lecture publique de la vue dérivée et du journal d'annonces (écrans spectateurs).

Les actions renvoient l'`ActionResult` du contrôleur ; un refus devient une HTTPException
(404 partie inconnue, 409 conflit ou transition invalide, 422 configuration refusée,
401/403 hôte expiré ou non propriétaire, 503 annuaire indisponible).
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from tambola.deps.auth import host_required
from tambola.models.host import HostUser
from tambola.services.errors import GameNotFound
from tambola.services.game_controller import CONTROLLER, ActionResult
from tambola.services.game_store import STORE
from tambola.services.reconciliation import build_view

router = APIRouter(prefix="/games", tags=["games"])


# ---------------------------------------------------------------------------
# Modèles Pydantic
# ---------------------------------------------------------------------------
class TicketPayload(BaseModel):
    ticket_id: str
    rows: List[List[int]]
    set_id: Optional[int] = None
    position_in_set: Optional[int] = None


class GameCreatePayload(BaseModel):
    name: str = Field("", max_length=100)
    max_tickets: int = Field(100, description="Nombre de tickets mis en jeu (1..600)")
    ticket_price: float = 0
    call_interval: Optional[float] = Field(None, description="Secondes entre deux appels")
    countdown_seconds: Optional[int] = None
    auto_end: bool = False
    prizes: List[str] = Field(default_factory=list, description="Motifs choisis (ids du catalogue)")
    ticket_set_id: Optional[str] = Field(None, description="Jeu de tickets à charger")
    tickets: Optional[List[TicketPayload]] = Field(None, description="Tickets explicites (sinon ticket_set_id)")


class GameUpdatePayload(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    max_tickets: Optional[int] = None
    ticket_price: Optional[float] = None
    call_interval: Optional[float] = None
    countdown_seconds: Optional[int] = None
    auto_end: Optional[bool] = None
    prizes: Optional[List[str]] = None


class ResetPayload(BaseModel):
    confirm: bool = Field(False, description="Le reset efface appels et lots : confirmation requise")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def unwrap(result: ActionResult) -> Dict[str, Any]:
    """Transforme un refus du contrôleur en HTTPException (message lisible en detail)."""
    if not result.ok:
        raise HTTPException(status_code=result.status_code, detail=result.message)
    return result.model_dump()


def read_game_or_404(game_id: str):
    try:
        return STORE.read(game_id)
    except GameNotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------
@router.post("")
async def create_game(payload: GameCreatePayload, host: HostUser = Depends(host_required)):
    config = payload.model_dump(exclude_none=True)
    if payload.tickets is not None:
        config["tickets"] = [t.model_dump(exclude_none=True) for t in payload.tickets]
    return unwrap(await CONTROLLER.create_game(host.id, config))


@router.get("")
async def list_games(host: HostUser = Depends(host_required)):
    """Parties de l'hôte courant (toutes pour un admin), les plus récentes d'abord."""
    host_id = None if host.role == "admin" else host.id
    games = STORE.list_games(host_id)
    return {"games": [build_view(g, include_tickets=False) for g in games]}


@router.get("/{game_id}")
async def get_game(game_id: str):
    return build_view(read_game_or_404(game_id))


@router.patch("/{game_id}")
async def update_game(game_id: str, payload: GameUpdatePayload, host: HostUser = Depends(host_required)):
    return unwrap(await CONTROLLER.update_config(game_id, host.id, payload.model_dump(exclude_none=True)))


@router.delete("/{game_id}")
async def delete_game(game_id: str, host: HostUser = Depends(host_required)):
    return unwrap(await CONTROLLER.delete_game(game_id, host.id))


# ---------------------------------------------------------------------------
# Déroulé
# ---------------------------------------------------------------------------
@router.post("/{game_id}/start")
async def start_game(game_id: str, host: HostUser = Depends(host_required)):
    return unwrap(await CONTROLLER.start(game_id, host.id))


@router.post("/{game_id}/pause")
async def pause_game(game_id: str, host: HostUser = Depends(host_required)):
    return unwrap(await CONTROLLER.pause(game_id, host.id))


@router.post("/{game_id}/resume")
async def resume_game(game_id: str, host: HostUser = Depends(host_required)):
    return unwrap(await CONTROLLER.resume(game_id, host.id))


@router.post("/{game_id}/end")
async def end_game(game_id: str, host: HostUser = Depends(host_required)):
    return unwrap(await CONTROLLER.end(game_id, host.id))


@router.post("/{game_id}/reset")
async def reset_game(game_id: str, payload: ResetPayload, host: HostUser = Depends(host_required)):
    return unwrap(await CONTROLLER.reset(game_id, host.id, confirm=payload.confirm))


@router.post("/{game_id}/call")
async def call_number(game_id: str, host: HostUser = Depends(host_required)):
    """Appel manuel du prochain numéro (la boucle automatique reste la voie normale)."""
    return unwrap(await CONTROLLER.call_next_number(game_id, host.id))


# ---------------------------------------------------------------------------
# Annonces
# ---------------------------------------------------------------------------
@router.get("/{game_id}/events")
async def list_events(game_id: str, after_seq: int = Query(0, ge=0)):
    """Annonces dont `seq` > after_seq (le consommateur garde son propre curseur)."""
    game = read_game_or_404(game_id)
    events = [e.model_dump(mode="json") for e in game.events if e.seq > after_seq]
    return {"game_id": game_id, "last_seq": game.event_seq, "events": events}
