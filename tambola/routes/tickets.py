"""
Routes tickets : consultation, réservation par l'hôte, vérification d'une réclamation.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from tambola.deps.auth import host_required
from tambola.models.host import HostUser
from tambola.routes.games import read_game_or_404, unwrap
from tambola.services.errors import ValidationError
from tambola.services.game_controller import CONTROLLER
from tambola.services.prize_evaluator import check_claim
from tambola.services.reconciliation import ticket_view

router = APIRouter(prefix="/games/{game_id}/tickets", tags=["tickets"])


class BookingPayload(BaseModel):
    player_name: str = Field(..., min_length=1, max_length=100)
    player_phone: Optional[str] = Field(None, max_length=32)


class ClaimPayload(BaseModel):
    prize_id: str


@router.get("")
async def list_tickets(game_id: str, booked: Optional[bool] = Query(None)):
    game = read_game_or_404(game_id)
    tickets = [
        ticket_view(game, tid)
        for tid, ticket in game.tickets.items()
        if booked is None or ticket.is_booked == booked
    ]
    return {"game_id": game_id, "tickets": tickets}


@router.post("/{ticket_id}/book")
async def book_ticket(game_id: str, ticket_id: str, payload: BookingPayload, host: HostUser = Depends(host_required)):
    return unwrap(
        await CONTROLLER.book_ticket(game_id, host.id, ticket_id, payload.player_name, payload.player_phone)
    )


@router.post("/{ticket_id}/check")
async def check_ticket_claim(game_id: str, ticket_id: str, payload: ClaimPayload):
    """Vérifie une réclamation : les numéros du motif sont-ils tous appelés ?"""
    game = read_game_or_404(game_id)
    try:
        return check_claim(game, ticket_id, payload.prize_id)
    except ValidationError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
