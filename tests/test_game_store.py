from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from tambola.models.game import Game, GameStatus
from tambola.services.errors import GameNotFound, StorageConflict, ValidationError
from tambola.services.game_store import STORE, GameStore
from tambola.services.storage_backends import JsonFileBackend, MemoryBackend


def _new_game(game_id: str = "g1", host_id: str = "host-1", age_minutes: int = 0) -> Game:
    created = datetime(2024, 1, 1, 12, tzinfo=timezone.utc) - timedelta(minutes=age_minutes)
    return Game(id=game_id, host_id=host_id, created_at=created)


def test_create_and_read_snapshot_is_a_copy():
    STORE.create(_new_game())
    snapshot = STORE.read("g1")
    assert snapshot.version == 1
    snapshot.called_numbers.append(12)
    assert STORE.read("g1").called_numbers == []


def test_read_unknown_game_raises():
    with pytest.raises(GameNotFound):
        STORE.read("missing")


def test_atomic_update_commits_and_bumps_version():
    STORE.create(_new_game())

    def mutate(game: Game) -> int:
        game.called_numbers.append(42)
        return len(game.called_numbers)

    result = asyncio.run(STORE.atomic_update("g1", mutate))

    assert result.committed is True
    assert result.value == 1
    assert result.game.version == 2
    assert STORE.read("g1").called_numbers == [42]


def test_atomic_update_without_change_writes_nothing():
    STORE.create(_new_game())
    result = asyncio.run(STORE.atomic_update("g1", lambda game: "noop"))
    assert result.committed is False
    assert STORE.read("g1").version == 1


def test_failed_mutation_leaves_state_untouched():
    STORE.create(_new_game())

    def mutate(game: Game) -> None:
        game.called_numbers.append(7)
        game.status = GameStatus.ACTIVE
        raise ValidationError("refused")

    with pytest.raises(ValidationError):
        asyncio.run(STORE.atomic_update("g1", mutate))

    game = STORE.read("g1")
    assert game.called_numbers == []
    assert game.status == GameStatus.SETUP


def test_invalid_draft_is_rejected_at_store_boundary():
    STORE.create(_new_game())

    def mutate(game: Game) -> None:
        game.called_numbers.extend([5, 5])

    with pytest.raises(ValidationError):
        asyncio.run(STORE.atomic_update("g1", mutate))
    assert STORE.read("g1").called_numbers == []


def test_persistent_version_conflict_raises_storage_conflict(monkeypatch):
    backend = MemoryBackend()
    store = GameStore(backend, max_attempts=3, backoff_base=0)
    store.create(_new_game())
    calls = []

    def always_conflict(game_id, expected_version, record):
        calls.append(expected_version)
        return False

    monkeypatch.setattr(backend, "compare_and_set", always_conflict)

    with pytest.raises(StorageConflict):
        asyncio.run(store.atomic_update("g1", lambda game: game.called_numbers.append(3)))
    assert len(calls) == 3
    assert store.read("g1").called_numbers == []


def test_conflict_then_success_is_retried(monkeypatch):
    backend = MemoryBackend()
    store = GameStore(backend, max_attempts=3, backoff_base=0)
    store.create(_new_game())
    original = backend.compare_and_set
    attempts = {"n": 0}

    def flaky(game_id, expected_version, record):
        attempts["n"] += 1
        if attempts["n"] == 1:
            return False
        return original(game_id, expected_version, record)

    monkeypatch.setattr(backend, "compare_and_set", flaky)
    result = asyncio.run(store.atomic_update("g1", lambda game: game.called_numbers.append(3)))
    assert result.committed
    assert attempts["n"] == 2
    assert store.read("g1").called_numbers == [3]


def test_subscribe_receives_snapshots_and_deletion():
    STORE.create(_new_game())
    received = []
    unsubscribe = STORE.subscribe("g1", received.append)

    asyncio.run(STORE.atomic_update("g1", lambda game: game.called_numbers.append(9)))
    STORE.delete("g1")

    assert received[0].called_numbers == [9]
    assert received[-1] is None

    unsubscribe()
    assert STORE.subscriber_count("g1") == 0


def test_failing_subscriber_does_not_affect_writer():
    STORE.create(_new_game())

    def broken(snapshot):
        raise RuntimeError("boom")

    STORE.subscribe("g1", broken)
    result = asyncio.run(STORE.atomic_update("g1", lambda game: game.called_numbers.append(1)))
    assert result.committed


def test_list_games_newest_first_and_filtered_by_host():
    STORE.create(_new_game("a", "host-1", age_minutes=30))
    STORE.create(_new_game("b", "host-2", age_minutes=20))
    STORE.create(_new_game("c", "host-1", age_minutes=10))

    ids = [g.id for g in STORE.list_games("host-1")]
    assert ids == ["c", "a"]
    assert len(STORE.list_games()) == 3


def test_json_backend_round_trip(tmp_path: Path):
    store = GameStore(JsonFileBackend(tmp_path), backoff_base=0)
    store.create(_new_game())
    asyncio.run(store.atomic_update("g1", lambda game: game.called_numbers.append(90)))

    assert (tmp_path / "g1.json").exists()
    assert store.read("g1").called_numbers == [90]
    assert not list(tmp_path.glob(".*.tmp"))

    store.delete("g1")
    with pytest.raises(GameNotFound):
        store.read("g1")
