from __future__ import annotations

from typing import Iterable, List, Optional
from uuid import uuid4

import pytest

from tambola.config.settings import settings
from tambola.models.game import Game, GameStatus, Ticket
from tambola.services import game_driver
from tambola.services.game_store import STORE
from tambola.services.host_directory import StaticHostDirectory, use_directory
from tambola.services.live_sync import LIVE
from tambola.services.prize_catalog import FULL_HOUSE, QUICK_FIVE, build_prizes
from tambola.services.storage_backends import MemoryBackend

HOSTS = [
    {
        "id": "host-1",
        "name": "Asha",
        "role": "host",
        "is_active": True,
        "subscription_end_date": "2099-01-01T00:00:00+00:00",
        "token": "token-host-1",
    },
    {
        "id": "host-2",
        "name": "Ravi",
        "role": "host",
        "is_active": True,
        "subscription_end_date": "2099-01-01T00:00:00+00:00",
        "token": "token-host-2",
    },
    {
        "id": "host-expired",
        "name": "Meera",
        "role": "host",
        "is_active": True,
        "subscription_end_date": "2001-01-01T00:00:00+00:00",
        "token": "token-expired",
    },
    {
        "id": "admin",
        "name": "Admin",
        "role": "admin",
        "is_active": True,
        "subscription_end_date": None,
        "token": "token-admin",
    },
]


@pytest.fixture(autouse=True)
def isolated_runtime(monkeypatch):
    """Store en mémoire, annuaire statique et cadences de jeu très courtes."""
    LIVE.reset()
    STORE.use_backend(MemoryBackend())
    monkeypatch.setattr(STORE, "backoff_base", 0.0)
    directory = StaticHostDirectory(hosts=[dict(h) for h in HOSTS])
    use_directory(directory)
    game_driver.forget_all()
    monkeypatch.setattr(settings, "CALL_INTERVAL_MIN", 0.01)
    monkeypatch.setattr(settings, "DISPLAY_WINDOW_SECONDS", 0.01)
    monkeypatch.setattr(game_driver, "COUNTDOWN_TICK_SECONDS", 0.01)
    try:
        yield directory
    finally:
        game_driver.forget_all()
        LIVE.reset()
        use_directory(None)


def grid(top: List[int], middle: List[int], bottom: List[int]) -> List[List[int]]:
    """Grille 3x9 : les 5 numéros de chaque ligne en tête, cases vides ensuite."""
    return [list(row) + [0] * 4 for row in (top, middle, bottom)]


@pytest.fixture
def make_ticket():
    def _make(
        ticket_id: str,
        top: List[int],
        middle: List[int],
        bottom: List[int],
        booked: bool = True,
        set_id: Optional[int] = None,
        position: Optional[int] = None,
        player_name: Optional[str] = None,
    ) -> Ticket:
        return Ticket(
            ticket_id=ticket_id,
            rows=grid(top, middle, bottom),
            set_id=set_id,
            position_in_set=position,
            is_booked=booked,
            player_name=player_name or (f"Player {ticket_id}" if booked else ""),
        )

    return _make


@pytest.fixture
def make_game():
    def _make(
        tickets: Iterable[Ticket],
        prizes: Iterable[str] = (QUICK_FIVE, FULL_HOUSE),
        status: GameStatus = GameStatus.ACTIVE,
        called: Iterable[int] = (),
        host_id: str = "host-1",
        **fields,
    ) -> Game:
        game_id = uuid4().hex
        fields.setdefault("call_interval", 0.01)
        game = Game(
            id=game_id,
            host_id=host_id,
            tickets={t.ticket_id: t.model_copy(update={"game_id": game_id}) for t in tickets},
            prizes=build_prizes(list(prizes), game_id),
            status=status,
            called_numbers=list(called),
            **fields,
        )
        return STORE.create(game)

    return _make
