# tambola/services/ws_manager.py
"""
Service: ws_manager.py
- Mapping game_id -> sockets ET socket -> game_id (ws_to_game).
- Abonnement idempotent (déplacement de socket si la partie suivie change).
- Snapshots immuables pour éviter "set changed size during iteration".
- Les sockets mortes sont retirées au premier envoi en échec.
- Admin: stats(), close_game(), close_all().
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Dict, Set

import anyio.from_thread
from starlette.websockets import WebSocket

from .io_utils import dumps

logger = logging.getLogger(__name__)


@dataclass
class WSManager:
    _lock: RLock = field(default_factory=RLock, init=False, repr=False)
    # game_id -> set(WebSocket)
    clients_by_game: Dict[str, Set[WebSocket]] = field(default_factory=dict)
    # reverse map: socket -> game_id
    ws_to_game: Dict[WebSocket, str] = field(default_factory=dict)

    def attach(self, ws: WebSocket, game_id: str) -> None:
        with self._lock:
            prev = self.ws_to_game.get(ws)
            if prev and prev != game_id:
                self.detach(ws)
            self.clients_by_game.setdefault(game_id, set()).add(ws)
            self.ws_to_game[ws] = game_id

    def detach(self, ws: WebSocket) -> None:
        with self._lock:
            game_id = self.ws_to_game.pop(ws, None)
            if game_id:
                bucket = self.clients_by_game.get(game_id)
                if bucket and ws in bucket:
                    bucket.discard(ws)
                    if not bucket:
                        self.clients_by_game.pop(game_id, None)

    async def disconnect(self, ws: WebSocket) -> None:
        """Ferme proprement la connexion et nettoie les registres."""
        game_id = self.ws_to_game.get(ws)
        self.detach(ws)
        try:
            await ws.close()
        except Exception:
            # socket déjà fermée côté client
            logger.debug("Socket already closed", extra={"game_id": game_id})

    async def send_json(self, ws: WebSocket, payload: Any) -> bool:
        """Envoie à un WS; renvoie True si succès, sinon False (et retire le WS mort)."""
        try:
            await ws.send_text(dumps(payload))
            return True
        except Exception:
            logger.debug("Dropping dead socket", extra={"game_id": self.ws_to_game.get(ws)})
            self.detach(ws)
            return False

    # ---------- snapshots immuables ----------
    def snapshot_game(self, game_id: str) -> list[WebSocket]:
        with self._lock:
            return list(self.clients_by_game.get(game_id, set()))

    def _snapshot_all(self) -> list[WebSocket]:
        with self._lock:
            result: list[WebSocket] = []
            for bucket in self.clients_by_game.values():
                result.extend(list(bucket))
            return result

    # ---------- envois ----------
    async def broadcast_game(self, game_id: str, payload: Any) -> int:
        conns = self.snapshot_game(game_id)
        success = 0
        for ws in conns:
            if await self.send_json(ws, payload):
                success += 1
        return success

    # ---------- admin ----------
    def stats(self) -> dict:
        with self._lock:
            by_game = {gid: len(conns) for gid, conns in self.clients_by_game.items()}
            return {"games": by_game, "total": sum(by_game.values())}

    async def close_game(self, game_id: str) -> int:
        conns = self.snapshot_game(game_id)
        for ws in conns:
            await self.disconnect(ws)
        return len(conns)

    async def close_all(self) -> dict:
        for ws in self._snapshot_all():
            await self.disconnect(ws)
        return self.stats()


WS = WSManager()


def run_async(coro) -> Any:
    """
    Lance `coro` depuis un callback synchrone (notification du GameStore).
    - thread worker anyio : exécution sur la boucle de l'app
    - boucle en cours dans ce thread : tâche en arrière-plan
    - aucune boucle : exécution bloquante
    """
    async def _runner():
        return await coro

    try:
        return anyio.from_thread.run(_runner)
    except RuntimeError:
        pass
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(_runner())
    return loop.create_task(_runner())
