import asyncio
import logging

from tambola.services.live_sync import LiveSync


def test_failed_push_is_logged_and_released(monkeypatch, caplog):
    sync = LiveSync()

    async def broken(game_id, snapshot):
        raise RuntimeError("socket gone")

    monkeypatch.setattr(sync, "push", broken)

    async def scenario():
        sync._on_change("g1", None)
        queued = sync.pending_pushes()
        for _ in range(5):
            await asyncio.sleep(0)
        return queued, sync.pending_pushes()

    with caplog.at_level(logging.ERROR, logger="tambola.services.live_sync"):
        queued, left = asyncio.run(scenario())

    assert queued == 1
    assert left == 0
    assert "Live push failed" in caplog.text


def test_push_outside_a_loop_runs_inline(monkeypatch):
    sync = LiveSync()
    seen = []

    async def record(game_id, snapshot):
        seen.append(game_id)
        return 0

    monkeypatch.setattr(sync, "push", record)
    sync._on_change("g1", None)

    assert seen == ["g1"]
    assert sync.pending_pushes() == 0
