"""
Service: live_sync.py
Rôle:
- Pont entre les notifications du GameStore et les sockets des écrans (hôte, spectateurs).

Messages poussés:
- {"type": "game_state", "game_id", "payload": <vue dérivée>} après chaque commit
- {"type": "event", "game_id", "payload": <GameEvent>} pour chaque annonce pas encore
  envoyée à CETTE socket (curseur par socket, dédoublonnage par seq)
- {"type": "game_deleted", "game_id"} quand la partie disparaît

Notes:
- Un seul abonnement store par partie, tant qu'au moins une socket la suit.
- Les pushs peuvent arriver dans le désordre : un snapshot plus ancien que le dernier
  envoyé à une socket est ignoré (comparaison sur `version`).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from threading import RLock
from typing import Callable, Dict, Optional, Set

from starlette.websockets import WebSocket

from tambola.models.game import Game
from .errors import GameNotFound
from .game_store import STORE, GameStore
from .reconciliation import AnnouncementCursor, build_view
from .ws_manager import WS, WSManager, run_async

logger = logging.getLogger(__name__)


@dataclass
class _Viewer:
    game_id: str
    cursor: AnnouncementCursor = field(default_factory=AnnouncementCursor)
    last_version: int = 0


class LiveSync:
    def __init__(self, store: GameStore = STORE, manager: WSManager = WS) -> None:
        self.store = store
        self.manager = manager
        self._lock = RLock()
        self._viewers: Dict[WebSocket, _Viewer] = {}
        self._unsubscribers: Dict[str, Callable[[], None]] = {}
        self._pushes: Set[asyncio.Task] = set()

    # ---------- cycle de vie socket ----------
    async def join(self, ws: WebSocket, game_id: str) -> bool:
        """Attache une socket déjà acceptée et lui envoie l'état courant."""
        try:
            game = self.store.read(game_id)
        except GameNotFound:
            await self.manager.send_json(ws, {"type": "error", "error": "game_not_found", "game_id": game_id})
            return False

        viewer = _Viewer(game_id=game_id)
        viewer.cursor.prime(game)
        with self._lock:
            self._viewers[ws] = viewer
            if game_id not in self._unsubscribers:
                self._unsubscribers[game_id] = self.store.subscribe(
                    game_id, lambda snapshot, gid=game_id: self._on_change(gid, snapshot)
                )
        self.manager.attach(ws, game_id)
        await self._send_state(ws, viewer, game)
        return True

    def leave(self, ws: WebSocket) -> None:
        with self._lock:
            viewer = self._viewers.pop(ws, None)
        if viewer is None:
            return
        self.manager.detach(ws)
        if not self.manager.snapshot_game(viewer.game_id):
            self._unsubscribe(viewer.game_id)

    def _unsubscribe(self, game_id: str) -> None:
        with self._lock:
            unsubscribe = self._unsubscribers.pop(game_id, None)
        if unsubscribe is not None:
            unsubscribe()

    def reset(self) -> None:
        """Oublie sockets et abonnements (tests, changement de backend)."""
        with self._lock:
            unsubscribers = list(self._unsubscribers.values())
            self._unsubscribers.clear()
            self._viewers.clear()
        for unsubscribe in unsubscribers:
            unsubscribe()

    # ---------- notifications store ----------
    def _on_change(self, game_id: str, snapshot: Optional[Game]) -> None:
        pending = run_async(self.push(game_id, snapshot))
        if isinstance(pending, asyncio.Task):
            self._pushes.add(pending)
            pending.add_done_callback(self._push_done)

    def _push_done(self, task: asyncio.Task) -> None:
        self._pushes.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Live push failed", exc_info=exc)

    def pending_pushes(self) -> int:
        return len(self._pushes)

    async def push(self, game_id: str, snapshot: Optional[Game]) -> int:
        if snapshot is None:
            await self.manager.broadcast_game(game_id, {"type": "game_deleted", "game_id": game_id})
            for ws in self.manager.snapshot_game(game_id):
                with self._lock:
                    self._viewers.pop(ws, None)
            await self.manager.close_game(game_id)
            self._unsubscribe(game_id)
            return 0

        sent = 0
        for ws in self.manager.snapshot_game(game_id):
            with self._lock:
                viewer = self._viewers.get(ws)
            if viewer is None:
                continue
            if await self._send_state(ws, viewer, snapshot):
                sent += 1
        return sent

    async def _send_state(self, ws: WebSocket, viewer: _Viewer, game: Game) -> bool:
        if game.version < viewer.last_version:
            return False
        viewer.last_version = game.version
        ok = await self.manager.send_json(ws, {"type": "game_state", "game_id": game.id, "payload": build_view(game)})
        if not ok:
            self.leave(ws)
            return False
        for event in viewer.cursor.new_events(game):
            if not await self.manager.send_json(
                ws, {"type": "event", "game_id": game.id, "payload": event.model_dump(mode="json")}
            ):
                self.leave(ws)
                return False
        return True


LIVE = LiveSync()
