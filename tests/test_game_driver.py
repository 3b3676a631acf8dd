import asyncio

from tambola.models.game import GameStatus
from tambola.services.game_controller import CONTROLLER
from tambola.services.game_driver import get_driver, peek_driver
from tambola.services.game_store import STORE


def _tickets(make_ticket):
    return [make_ticket("A", [1, 2, 3, 4, 5], [10, 11, 12, 13, 14], [20, 21, 22, 23, 24])]


async def _until(predicate, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def _other_tasks():
    await asyncio.sleep(0.05)
    current = asyncio.current_task()
    return [t for t in asyncio.all_tasks() if t is not current and not t.done()]


def test_conflict_when_countdown_ends_is_retried(make_ticket, make_game, monkeypatch):
    game = make_game(_tickets(make_ticket), status=GameStatus.COUNTDOWN, countdown_seconds=0, countdown_time=0)
    original = STORE.backend.compare_and_set
    refused = {"n": 0}

    def flaky(game_id, expected_version, record):
        # la bascule countdown -> active perd plus de commits qu'une mise à jour n'en retente
        if record["status"] == "active" and refused["n"] < STORE.max_attempts + 1:
            refused["n"] += 1
            return False
        return original(game_id, expected_version, record)

    monkeypatch.setattr(STORE.backend, "compare_and_set", flaky)

    async def scenario():
        get_driver(game.id, CONTROLLER).start_countdown()
        await _until(lambda: STORE.read(game.id).status == GameStatus.ACTIVE)
        calling = peek_driver(game.id).calling
        await CONTROLLER.end(game.id, "host-1")
        return calling

    assert asyncio.run(scenario()) is True
    assert refused["n"] == STORE.max_attempts + 1
    assert STORE.read(game.id).started_at is not None


def test_deleting_game_stops_call_loop(make_ticket, make_game):
    game = make_game(_tickets(make_ticket))

    async def scenario():
        driver = get_driver(game.id, CONTROLLER)
        driver.start_calling()
        await _until(lambda: len(STORE.read(game.id).called_numbers) >= 2)
        STORE.delete(game.id)
        await _until(lambda: peek_driver(game.id) is None)
        return driver, await _other_tasks()

    driver, leftovers = asyncio.run(scenario())
    assert not driver.calling
    assert leftovers == []


def test_deleting_game_stops_countdown(make_ticket, make_game):
    game = make_game(_tickets(make_ticket), status=GameStatus.COUNTDOWN, countdown_seconds=300, countdown_time=300)

    async def scenario():
        driver = get_driver(game.id, CONTROLLER)
        driver.start_countdown()
        await _until(lambda: STORE.read(game.id).countdown_time < 300)
        STORE.delete(game.id)
        await _until(lambda: peek_driver(game.id) is None)
        return driver, await _other_tasks()

    driver, leftovers = asyncio.run(scenario())
    assert not driver.counting_down
    assert not driver.calling
    assert leftovers == []


def test_display_clear_survives_a_lost_write(make_ticket, make_game, monkeypatch):
    game = make_game(
        _tickets(make_ticket),
        status=GameStatus.FINISHED,
        called=list(range(1, 91)),
        current_number=90,
    )
    original = STORE.backend.compare_and_set
    refused = {"n": 0}

    def lose_first(game_id, expected_version, record):
        if refused["n"] == 0:
            refused["n"] += 1
            return False
        return original(game_id, expected_version, record)

    monkeypatch.setattr(STORE.backend, "compare_and_set", lose_first)

    asyncio.run(CONTROLLER.clear_display(game.id, 90))

    assert refused["n"] == 1
    stored = STORE.read(game.id)
    assert stored.status == GameStatus.FINISHED
    assert stored.current_number is None


def test_display_clear_keeps_a_newer_number(make_ticket, make_game):
    game = make_game(_tickets(make_ticket), called=[7, 8], current_number=8)
    asyncio.run(CONTROLLER.clear_display(game.id, 7))
    assert STORE.read(game.id).current_number == 8
