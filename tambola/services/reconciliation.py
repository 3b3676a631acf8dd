"""
Service: reconciliation.py
Rôle:
- Dériver, à partir d'un snapshot complet, ce que le front affiche (phase + vue en lecture seule).
- Suivre, côté consommateur, les annonces déjà traitées (dédoublonnage par `seq`).

Phases UI:
- creation (aucune partie) | setup (aucun ticket réservé) | booking (setup avec réservations)
- countdown | playing | paused | finished

Notes:
- Tout est recalculé depuis le snapshot : aucune donnée n'est rejouée, un client qui se
  reconnecte converge au prochain état poussé.
- `seq` n'est jamais réutilisé (même après reset) : un curseur ne ré-annonce jamais
  un ancien numéro.
"""
from typing import Any, Dict, List, Optional

from tambola.models.event import GameEvent
from tambola.models.game import Game, GameStatus
from .number_drawer import remaining_pool

PHASE_CREATION = "creation"
PHASE_SETUP = "setup"
PHASE_BOOKING = "booking"
PHASE_COUNTDOWN = "countdown"
PHASE_PLAYING = "playing"
PHASE_PAUSED = "paused"
PHASE_FINISHED = "finished"

_PHASE_BY_STATUS = {
    GameStatus.COUNTDOWN: PHASE_COUNTDOWN,
    GameStatus.ACTIVE: PHASE_PLAYING,
    GameStatus.PAUSED: PHASE_PAUSED,
    GameStatus.FINISHED: PHASE_FINISHED,
}


def derive_phase(game: Optional[Game]) -> str:
    if game is None:
        return PHASE_CREATION
    if game.status == GameStatus.SETUP:
        return PHASE_BOOKING if game.booked_tickets() else PHASE_SETUP
    return _PHASE_BY_STATUS[game.status]


def ticket_view(game: Game, ticket_id: str) -> Dict[str, Any]:
    ticket = game.tickets[ticket_id]
    data = ticket.model_dump(mode="json")
    data["marked_numbers"] = ticket.marked_numbers(game.called_numbers)
    return data


def build_view(game: Game, include_tickets: bool = True) -> Dict[str, Any]:
    """Vue dérivée (lecture seule) poussée aux écrans hôte et spectateurs."""
    view: Dict[str, Any] = {
        "id": game.id,
        "host_id": game.host_id,
        "name": game.name,
        "status": game.status.value,
        "phase": derive_phase(game),
        "is_active": game.is_active,
        "is_countdown": game.is_countdown,
        "game_over": game.game_over,
        "called_numbers": list(game.called_numbers),
        "current_number": game.current_number,
        "last_called": game.called_numbers[-1] if game.called_numbers else None,
        "remaining_count": len(remaining_pool(game)),
        "countdown_time": game.countdown_time if game.is_countdown else 0,
        "max_tickets": game.max_tickets,
        "ticket_price": game.ticket_price,
        "call_interval": game.call_interval,
        "auto_end": game.auto_end,
        "prizes": [p.model_dump(mode="json") for p in game.ordered_prizes()],
        "booked_count": len(game.booked_tickets()),
        "ticket_count": len(game.tickets),
        "last_event_seq": game.event_seq,
        "version": game.version,
        "created_at": game.created_at.isoformat() if game.created_at else None,
        "started_at": game.started_at.isoformat() if game.started_at else None,
        "ended_at": game.ended_at.isoformat() if game.ended_at else None,
    }
    if include_tickets:
        view["tickets"] = [ticket_view(game, tid) for tid in game.tickets]
    return view


class AnnouncementCursor:
    """Curseur d'annonces d'un consommateur (socket, lecteur audio)."""

    def __init__(self, last_seq: int = 0) -> None:
        self.last_seq = last_seq

    def prime(self, game: Optional[Game]) -> None:
        """Ignore l'historique existant (client qui rejoint une partie en cours)."""
        if game is not None:
            self.last_seq = max(self.last_seq, game.event_seq)

    def new_events(self, game: Optional[Game]) -> List[GameEvent]:
        if game is None:
            return []
        fresh = sorted((e for e in game.events if e.seq > self.last_seq), key=lambda e: e.seq)
        if fresh:
            self.last_seq = fresh[-1].seq
        return fresh
