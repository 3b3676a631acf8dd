"""
Service: prize_catalog.py
Rôle:
- Référentiel des lots sélectionnables par l'hôte (un lot par motif et par partie).
- Exposer `PRIZES.get(id)` / `PRIZES.all()` et `build_prizes(selected, game_id)`.

Ordre:
- `order` fixe l'ordre total d'évaluation et d'annonce (quickFive avant les lignes,
  fullHouse en dernier). Deux lots gagnés sur le même appel sont annoncés dans cet ordre.
"""
from typing import Dict, Iterable, List, Optional

from tambola.models.game import Prize
from .errors import ValidationError

QUICK_FIVE = "quickFive"
TOP_LINE = "topLine"
MIDDLE_LINE = "middleLine"
BOTTOM_LINE = "bottomLine"
FOUR_CORNERS = "fourCorners"
STAR_CORNER = "starCorner"
HALF_SHEET = "halfSheet"
FULL_HOUSE = "fullHouse"

_DEFINITIONS: List[Dict[str, object]] = [
    {
        "id": QUICK_FIVE,
        "name": "Quick Five",
        "pattern": "First 5 numbers",
        "description": "First player to mark any 5 numbers (multiple winners possible on the same call)",
    },
    {
        "id": TOP_LINE,
        "name": "Top Line",
        "pattern": "Complete top row",
        "description": "Complete the top row of any ticket",
    },
    {
        "id": MIDDLE_LINE,
        "name": "Middle Line",
        "pattern": "Complete middle row",
        "description": "Complete the middle row of any ticket",
    },
    {
        "id": BOTTOM_LINE,
        "name": "Bottom Line",
        "pattern": "Complete bottom row",
        "description": "Complete the bottom row of any ticket",
    },
    {
        "id": FOUR_CORNERS,
        "name": "Four Corners",
        "pattern": "All four corner numbers",
        "description": "Mark the first and last numbers of the top and bottom rows",
    },
    {
        "id": STAR_CORNER,
        "name": "Star Corner",
        "pattern": "Four corners and center",
        "description": "Mark the four corners plus the center number of the middle row",
    },
    {
        "id": HALF_SHEET,
        "name": "Half Sheet",
        "pattern": "Three tickets of a half sheet",
        "description": "Tickets 1-3 or 4-6 of one sheet, all booked, each with at least 2 numbers marked",
    },
    {
        "id": FULL_HOUSE,
        "name": "Full House",
        "pattern": "Complete ticket",
        "description": "Mark all 15 numbers of any ticket (multiple winners possible on the same call)",
    },
]


class PrizeCatalog:
    """Catalogue statique des lots, indexé par motif."""

    def __init__(self, definitions: Iterable[Dict[str, object]] = _DEFINITIONS):
        self.catalog: Dict[str, Dict[str, object]] = {}
        for order, definition in enumerate(definitions, start=1):
            self.catalog[str(definition["id"])] = {**definition, "order": order}

    def get(self, prize_id: str) -> Optional[Dict[str, object]]:
        return self.catalog.get(prize_id)

    def all(self) -> List[Dict[str, object]]:
        return sorted(self.catalog.values(), key=lambda d: d["order"])


PRIZES = PrizeCatalog()


def build_prizes(selected: Iterable[str], game_id: Optional[str] = None) -> Dict[str, Prize]:
    """Instancie les lots choisis par l'hôte ; refuse une liste vide ou un motif inconnu."""
    ids = list(dict.fromkeys(selected or []))
    if not ids:
        raise ValidationError("At least one prize must be selected")
    prizes: Dict[str, Prize] = {}
    for prize_id in ids:
        definition = PRIZES.get(prize_id)
        if definition is None:
            raise ValidationError(f"Unknown prize pattern: {prize_id}")
        prizes[prize_id] = Prize(
            id=prize_id,
            game_id=game_id,
            name=str(definition["name"]),
            pattern=str(definition["pattern"]),
            description=str(definition["description"]),
            order=int(definition["order"]),
        )
    return prizes
