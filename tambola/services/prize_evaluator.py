"""
Service: prize_evaluator.py
Rôle:
- Déterminer, après un appel, quels lots non encore gagnés sont satisfaits et par quels
  tickets réservés.

Règles:
- Les lots sont parcourus dans l'ordre total fixe (`order`, puis `id`).
- Chaque lot est évalué indépendamment : un même appel peut faire gagner plusieurs lots.
- Tous les tickets qui satisfont un lot sur le même appel sont co-gagnants d'un seul gain.
- `evaluate` est pur (aucune écriture) ; `apply_wins` écrit sur le brouillon fourni par
  `GameStore.atomic_update` et re-vérifie `won` avant de basculer.

Motifs:
- quickFive: au moins 5 numéros du ticket appelés
- topLine / middleLine / bottomLine: les 5 numéros de la ligne
- fourCorners: premier et dernier numéros des lignes du haut et du bas
- starCorner: les 4 coins + le numéro central de la ligne du milieu
- halfSheet: positions 1-3 ou 4-6 d'un même carnet, toutes réservées, chacune avec
  au moins 2 numéros marqués (les gagnants sont ces trois tickets)
- fullHouse: les 15 numéros
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from tambola.models.game import Game, Prize, PrizeWinner, Ticket, SHEET_SIZE
from .errors import ValidationError
from .prize_catalog import (
    BOTTOM_LINE,
    FOUR_CORNERS,
    FULL_HOUSE,
    HALF_SHEET,
    MIDDLE_LINE,
    QUICK_FIVE,
    STAR_CORNER,
    TOP_LINE,
)

QUICK_FIVE_COUNT = 5
HALF_SHEET_MIN_MARKED = 2
HALF_SHEET_SIZE = SHEET_SIZE // 2

_ROW_PATTERNS = {TOP_LINE: 0, MIDDLE_LINE: 1, BOTTOM_LINE: 2}


@dataclass
class NewlyWonPrize:
    prize_id: str
    ticket_ids: List[str] = field(default_factory=list)


def check_ticket(ticket: Ticket, pattern: str, called: Iterable[int]) -> Optional[List[int]]:
    """
    Valide un motif sur UN ticket.
    Retourne les numéros qui forment le motif, ou None s'il n'est pas complet.
    halfSheet dépend du carnet entier : voir `half_sheet_winners`.
    """
    called_set = called if isinstance(called, set) else set(called)

    if pattern == QUICK_FIVE:
        marked = ticket.marked_numbers(called_set)
        return marked if len(marked) >= QUICK_FIVE_COUNT else None
    if pattern in _ROW_PATTERNS:
        target = ticket.row_numbers(_ROW_PATTERNS[pattern])
    elif pattern == FOUR_CORNERS:
        target = ticket.corners
    elif pattern == STAR_CORNER:
        target = ticket.corners + [ticket.center]
    elif pattern == FULL_HOUSE:
        target = ticket.numbers
    elif pattern == HALF_SHEET:
        raise ValidationError("halfSheet is validated on the whole sheet, not a single ticket")
    else:
        raise ValidationError(f"Unknown prize pattern: {pattern}")

    return list(target) if all(n in called_set for n in target) else None


def _half_key(ticket: Ticket) -> Optional[Tuple[int, int]]:
    if ticket.set_id is None or ticket.position_in_set is None:
        return None
    return ticket.set_id, (ticket.position_in_set - 1) // HALF_SHEET_SIZE


def half_sheet_winners(tickets: Iterable[Ticket], called: Iterable[int]) -> List[str]:
    """Tickets des demi-carnets complets (3 tickets réservés, >= 2 marqués chacun)."""
    called_set = called if isinstance(called, set) else set(called)
    halves: Dict[Tuple[int, int], List[Ticket]] = {}
    for ticket in tickets:
        key = _half_key(ticket)
        if key is not None:
            halves.setdefault(key, []).append(ticket)

    winners: List[str] = []
    for key in sorted(halves):
        group = sorted(halves[key], key=lambda t: t.position_in_set)
        positions = {t.position_in_set for t in group}
        if len(group) != HALF_SHEET_SIZE or len(positions) != HALF_SHEET_SIZE:
            continue
        if not all(t.is_booked for t in group):
            continue
        if all(len(t.marked_numbers(called_set)) >= HALF_SHEET_MIN_MARKED for t in group):
            winners.extend(t.ticket_id for t in group)
    return winners


def _winners_for(prize: Prize, game: Game, booked: List[Ticket], called: Set[int]) -> List[str]:
    if prize.id == HALF_SHEET:
        return half_sheet_winners(game.tickets.values(), called)
    winners = []
    for ticket in booked:
        try:
            if check_ticket(ticket, prize.id, called) is not None:
                winners.append(ticket.ticket_id)
        except ValidationError:
            return []
    return winners


def evaluate(game: Game) -> List[NewlyWonPrize]:
    """Lots nouvellement satisfaits par l'état courant, dans l'ordre fixe des lots."""
    called = set(game.called_numbers)
    if not called:
        return []
    booked = sorted(game.booked_tickets(), key=lambda t: t.ticket_id)
    results: List[NewlyWonPrize] = []
    for prize in game.ordered_prizes():
        if prize.won:
            continue
        winners = _winners_for(prize, game, booked, called)
        if winners:
            results.append(NewlyWonPrize(prize_id=prize.id, ticket_ids=winners))
    return results


def apply_wins(game: Game, wins: List[NewlyWonPrize], number: int, now: datetime) -> List[Prize]:
    """Enregistre les gains sur le brouillon ; un lot déjà gagné n'est jamais ré-attribué."""
    awarded: List[Prize] = []
    for win in wins:
        prize = game.prizes.get(win.prize_id)
        if prize is None or prize.won or not win.ticket_ids:
            continue
        prize.won = True
        prize.winning_number = number
        prize.won_at = now
        prize.winners = [
            PrizeWinner(
                ticket_id=tid,
                player_name=game.tickets[tid].player_name,
                player_phone=game.tickets[tid].player_phone,
            )
            for tid in win.ticket_ids
            if tid in game.tickets
        ]
        awarded.append(prize)
    return awarded


def check_claim(game: Game, ticket_id: str, prize_id: str) -> Dict[str, object]:
    """Vérification d'une réclamation joueur (lecture seule)."""
    ticket = game.tickets.get(ticket_id)
    if ticket is None:
        raise ValidationError(f"Unknown ticket: {ticket_id}")
    prize = game.prizes.get(prize_id)
    if prize is None:
        raise ValidationError(f"Prize {prize_id} is not part of this game")

    called = set(game.called_numbers)
    if prize_id == HALF_SHEET:
        winners = half_sheet_winners(game.tickets.values(), called)
        numbers = ticket.marked_numbers(called) if ticket_id in winners else None
    else:
        numbers = check_ticket(ticket, prize_id, called)

    return {
        "ticket_id": ticket_id,
        "prize_id": prize_id,
        "valid": numbers is not None and ticket.is_booked,
        "winning_numbers": numbers or [],
        "already_won": prize.won,
        "winners": [w.ticket_id for w in prize.winners],
    }
