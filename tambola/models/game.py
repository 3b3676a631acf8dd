"""
Models / game.py
Rôle:
- Définir les enregistrements typés d'une partie : Game, Ticket, Prize, PrizeWinner.
- Ces modèles sont la frontière de validation du GameStore (tout ce qui est relu du disque
  repasse par `Game.model_validate`).

Champs clés:
- status: unique enum de phase (remplace les drapeaux isActive / isCountdown / gameOver).
- called_numbers: historique ordonné, sans doublon, valeurs 1..90.
- session_numbers: permutation 1..90 figée au lancement du compte à rebours.
- tickets / prizes: sous-enregistrements embarqués (une seule mise à jour atomique
  touche numéros appelés + lots).
- events / event_seq: journal borné des annonces (identité stable via `seq`).
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from tambola.models.event import GameEvent

NUMBER_MIN = 1
NUMBER_MAX = 90
ROWS = 3
COLUMNS = 9
NUMBERS_PER_ROW = 5
SHEET_SIZE = 6


class GameStatus(str, Enum):
    SETUP = "setup"
    COUNTDOWN = "countdown"
    ACTIVE = "active"
    PAUSED = "paused"
    FINISHED = "finished"


class Ticket(BaseModel):
    """Ticket 3x9 (0 = case vide). La grille ne change jamais après création."""

    ticket_id: str = Field(min_length=1)
    game_id: Optional[str] = None
    rows: List[List[int]]
    set_id: Optional[int] = None
    position_in_set: Optional[int] = Field(default=None, ge=1, le=SHEET_SIZE)
    is_booked: bool = False
    player_name: str = ""
    player_phone: Optional[str] = None
    booked_at: Optional[datetime] = None

    @field_validator("rows")
    @classmethod
    def _check_grid(cls, rows: List[List[int]]) -> List[List[int]]:
        if len(rows) != ROWS or any(len(row) != COLUMNS for row in rows):
            raise ValueError("ticket grid must be 3 rows of 9 cells")
        seen: set[int] = set()
        for row in rows:
            values = [n for n in row if n]
            if len(values) != NUMBERS_PER_ROW:
                raise ValueError("each ticket row must hold exactly 5 numbers")
            for n in values:
                if not NUMBER_MIN <= n <= NUMBER_MAX:
                    raise ValueError(f"ticket number out of range: {n}")
                if n in seen:
                    raise ValueError(f"duplicate ticket number: {n}")
                seen.add(n)
        return rows

    # --- géométrie dérivée ---
    def row_numbers(self, index: int) -> List[int]:
        return [n for n in self.rows[index] if n]

    @property
    def numbers(self) -> List[int]:
        return [n for row in self.rows for n in row if n]

    @property
    def corners(self) -> List[int]:
        top, bottom = self.row_numbers(0), self.row_numbers(ROWS - 1)
        return [top[0], top[-1], bottom[0], bottom[-1]]

    @property
    def center(self) -> int:
        return self.row_numbers(1)[NUMBERS_PER_ROW // 2]

    def marked_numbers(self, called: List[int] | set[int]) -> List[int]:
        """Numéros de la grille déjà appelés (dérivé, jamais stocké)."""
        called_set = called if isinstance(called, set) else set(called)
        return [n for n in self.numbers if n in called_set]


class PrizeWinner(BaseModel):
    ticket_id: str
    player_name: str = ""
    player_phone: Optional[str] = None


class Prize(BaseModel):
    """Lot d'une partie. `won` ne repasse à False que via un reset explicite."""

    id: str
    game_id: Optional[str] = None
    name: str
    pattern: str
    description: str = ""
    order: int = 0
    won: bool = False
    winning_number: Optional[int] = None
    won_at: Optional[datetime] = None
    winners: List[PrizeWinner] = Field(default_factory=list)

    def clear(self) -> None:
        self.won = False
        self.winning_number = None
        self.won_at = None
        self.winners = []


class SessionMetadata(BaseModel):
    created: Optional[datetime] = None
    source: str = "host"
    validated: bool = False
    total_numbers: int = NUMBER_MAX


class DriverLease(BaseModel):
    driver_id: str
    heartbeat_at: float


class Game(BaseModel):
    """Enregistrement complet d'une partie (configuration, phase, tirage, tickets, lots)."""

    id: str
    host_id: str
    name: str = ""
    max_tickets: int = 100
    ticket_price: float = 0
    call_interval: float = 5
    countdown_seconds: int = 10
    auto_end: bool = False
    ticket_set_id: Optional[str] = None

    status: GameStatus = GameStatus.SETUP
    called_numbers: List[int] = Field(default_factory=list)
    current_number: Optional[int] = None
    countdown_time: int = 0
    session_numbers: List[int] = Field(default_factory=list)
    session_metadata: Optional[SessionMetadata] = None

    tickets: Dict[str, Ticket] = Field(default_factory=dict)
    prizes: Dict[str, Prize] = Field(default_factory=dict)

    events: List[GameEvent] = Field(default_factory=list)
    event_seq: int = 0
    driver: Optional[DriverLease] = None

    version: int = 0
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("called_numbers")
    @classmethod
    def _check_called(cls, values: List[int]) -> List[int]:
        if len(values) != len(set(values)):
            raise ValueError("called_numbers must not contain duplicates")
        if any(not NUMBER_MIN <= n <= NUMBER_MAX for n in values):
            raise ValueError("called_numbers out of range")
        return values

    # --- drapeaux dérivés (lecture seule, pour la vue UI) ---
    @property
    def is_active(self) -> bool:
        return self.status == GameStatus.ACTIVE

    @property
    def is_countdown(self) -> bool:
        return self.status == GameStatus.COUNTDOWN

    @property
    def game_over(self) -> bool:
        return self.status == GameStatus.FINISHED

    def booked_tickets(self) -> List[Ticket]:
        return [t for t in self.tickets.values() if t.is_booked]

    def ordered_prizes(self) -> List[Prize]:
        """Ordre total et fixe d'évaluation / présentation."""
        return sorted(self.prizes.values(), key=lambda p: (p.order, p.id))

    def to_record(self) -> Dict[str, Any]:
        """Forme JSON-compatible persistée par les backends."""
        return self.model_dump(mode="json")
