"""
Service: ticket_sets.py
Rôle:
- Charger les jeux de tickets pré-générés (les grilles ne sont jamais générées ici).
- Vérifier la disposition des colonnes quand `STRICT_TICKET_LAYOUT` est actif.

Fichier source:
- DATA_DIR/ticket_sets/<ticket_set_id>.json →
  {"name": "...", "tickets": [{ticket_id, set_id, position_in_set, rows}]}
  (`set_id` = numéro de carnet de 6 tickets, `position_in_set` = 1..6)

Disposition:
- colonne 0 : 1-9, colonne c : 10c-10c+9, colonne 8 : 80-90
- chaque colonne contient au moins un numéro, croissant de haut en bas
"""
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from tambola.config.settings import settings
from tambola.models.game import COLUMNS, NUMBER_MAX, Ticket
from .errors import ValidationError
from .io_utils import read_json

TICKET_SETS_DIR = Path(settings.DATA_DIR) / "ticket_sets"


def column_range(column: int) -> range:
    if column == 0:
        return range(1, 10)
    if column == COLUMNS - 1:
        return range(80, NUMBER_MAX + 1)
    return range(column * 10, column * 10 + 10)


def validate_layout(rows: List[List[int]]) -> None:
    """Lève ValidationError si la grille ne respecte pas la règle des colonnes."""
    for column in range(COLUMNS):
        values = [row[column] for row in rows if row[column]]
        if not values:
            raise ValidationError(f"Column {column + 1} is empty")
        allowed = column_range(column)
        for n in values:
            if n not in allowed:
                raise ValidationError(f"Number {n} not allowed in column {column + 1}")
        if values != sorted(values):
            raise ValidationError(f"Column {column + 1} must be ascending")


def list_ticket_sets() -> List[Dict[str, Any]]:
    if not TICKET_SETS_DIR.exists():
        return []
    result = []
    for path in sorted(TICKET_SETS_DIR.glob("*.json")):
        raw = read_json(path) or {}
        result.append({
            "id": path.stem,
            "name": raw.get("name", path.stem),
            "ticket_count": len(raw.get("tickets", [])),
        })
    return result


def build_tickets(
    entries: Iterable[Dict[str, Any]],
    game_id: str,
    limit: Optional[int] = None,
    strict: Optional[bool] = None,
) -> Dict[str, Ticket]:
    """Valide et instancie les tickets (dans l'ordre du fichier, `limit` premiers)."""
    strict = settings.STRICT_TICKET_LAYOUT if strict is None else strict
    tickets: Dict[str, Ticket] = {}
    for entry in entries:
        if limit is not None and len(tickets) >= limit:
            break
        try:
            ticket = Ticket.model_validate({**entry, "game_id": game_id, "is_booked": False})
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Malformed ticket {entry.get('ticket_id', '?')}: {exc.errors()[0].get('msg', 'invalid')}"
            ) from exc
        if strict:
            validate_layout(ticket.rows)
        if ticket.ticket_id in tickets:
            raise ValidationError(f"Duplicate ticket id: {ticket.ticket_id}")
        tickets[ticket.ticket_id] = ticket
    return tickets


def load_ticket_set(ticket_set_id: str, game_id: str, limit: Optional[int] = None) -> Dict[str, Ticket]:
    path = TICKET_SETS_DIR / f"{Path(str(ticket_set_id)).name}.json"
    raw = read_json(path)
    if not raw:
        raise ValidationError(f"Unknown ticket set: {ticket_set_id}")
    return build_tickets(raw.get("tickets", []), game_id, limit=limit)
