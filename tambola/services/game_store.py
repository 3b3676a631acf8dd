"""
Service: game_store.py
Rôle:
- Unique propriétaire des enregistrements Game (tickets et lots embarqués).
- Fournit la primitive de mise à jour atomique sur laquelle repose tout le moteur.

API:
- STORE.create(game) / STORE.read(game_id) / STORE.delete(game_id) / STORE.list_games(host_id)
- await STORE.atomic_update(game_id, mutate_fn) -> UpdateResult
    * relit l'état le plus récent, applique mutate_fn sur une copie, valide, puis commit
      conditionnel (compare-and-set sur `version`) sous un verrou par partie
    * si mutate_fn lève une exception : rien n'est écrit
    * si la copie est identique à l'état stocké : rien n'est écrit (committed=False)
    * conflit de version : STORE_MAX_ATTEMPTS tentatives avec backoff exponentiel,
      puis StorageConflict
- await STORE.write_cosmetic(game_id, mutate_fn): une seule tentative, pour les champs
  sans invariant (current_number, countdown_time). En cas de conflit, l'écriture est abandonnée.
- STORE.subscribe(game_id, callback) -> unsubscribe
    * callback(snapshot) après chaque commit, callback(None) à la suppression

Notes:
- Aucun `await` pendant que le verrou est tenu : la section critique est synchrone.
- Les callbacks peuvent être appelés plusieurs fois pour un même état (idempotents).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from tambola.config.settings import settings
from tambola.models.game import Game
from .errors import GameNotFound, StorageConflict, ValidationError
from .storage_backends import build_backend

logger = logging.getLogger(__name__)

MutateFn = Callable[[Game], Any]
Subscriber = Callable[[Optional[Game]], None]

# champs gérés par le store lui-même (exclus de la détection de changement)
_STORE_FIELDS = ("version", "updated_at")


@dataclass
class UpdateResult:
    game: Game
    value: Any = None
    committed: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _comparable(record: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in record.items() if k not in _STORE_FIELDS}


class GameStore:
    def __init__(
        self,
        backend=None,
        *,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
    ) -> None:
        self.backend = backend if backend is not None else build_backend()
        self.max_attempts = max_attempts if max_attempts is not None else settings.STORE_MAX_ATTEMPTS
        self.backoff_base = backoff_base if backoff_base is not None else settings.STORE_BACKOFF_BASE
        self._locks: Dict[str, RLock] = {}
        self._locks_guard = RLock()
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._subs_lock = RLock()

    def use_backend(self, backend) -> None:
        """Remplace le backend (tests) et oublie verrous et abonnés."""
        with self._locks_guard:
            self.backend = backend
            self._locks.clear()
        with self._subs_lock:
            self._subscribers.clear()

    def _lock_for(self, game_id: str) -> RLock:
        with self._locks_guard:
            lock = self._locks.get(game_id)
            if lock is None:
                lock = RLock()
                self._locks[game_id] = lock
            return lock

    # ---------- lecture ----------
    def _load(self, game_id: str) -> Game:
        raw = self.backend.load(game_id)
        if raw is None:
            raise GameNotFound(f"Game {game_id} not found")
        return Game.model_validate(raw)

    def read(self, game_id: str) -> Game:
        with self._lock_for(game_id):
            return self._load(game_id)

    def list_games(self, host_id: Optional[str] = None) -> List[Game]:
        """Parties (d'un hôte si précisé), les plus récentes d'abord."""
        games: List[Game] = []
        for raw in self.backend.list_records():
            if host_id is not None and raw.get("host_id") != host_id:
                continue
            try:
                games.append(Game.model_validate(raw))
            except PydanticValidationError:
                logger.warning("Skipping invalid game record", extra={"game_id": raw.get("id")})
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        games.sort(key=lambda g: g.created_at or epoch, reverse=True)
        return games

    # ---------- écriture ----------
    def create(self, game: Game) -> Game:
        now = _utcnow()
        game.version = 1
        game.created_at = game.created_at or now
        game.updated_at = now
        record = self._validated_record(game)
        with self._lock_for(game.id):
            try:
                self.backend.insert(record)
            except KeyError as exc:
                raise ValidationError(f"Game {game.id} already exists") from exc
        logger.info("Game created", extra={"game_id": game.id, "host_id": game.host_id})
        created = Game.model_validate(record)
        self._notify(game.id, created)
        return created

    def delete(self, game_id: str) -> None:
        with self._lock_for(game_id):
            if not self.backend.delete(game_id):
                raise GameNotFound(f"Game {game_id} not found")
        with self._locks_guard:
            self._locks.pop(game_id, None)
        logger.info("Game deleted", extra={"game_id": game_id})
        self._notify(game_id, None)

    @staticmethod
    def _validated_record(game: Game) -> Dict[str, Any]:
        record = game.to_record()
        try:
            Game.model_validate(record)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid game record: {exc.errors()[0].get('msg', 'invalid')}") from exc
        return record

    def _try_commit(self, game_id: str, mutate_fn: MutateFn) -> Optional[UpdateResult]:
        """Une tentative. None si la version a bougé pendant la tentative."""
        with self._lock_for(game_id):
            draft = self._load(game_id)
            expected = draft.version
            before = _comparable(draft.to_record())
            value = mutate_fn(draft)
            after = _comparable(draft.to_record())
            if after == before:
                return UpdateResult(game=draft, value=value, committed=False)

            draft.version = expected + 1
            draft.updated_at = _utcnow()
            record = self._validated_record(draft)
            if not self.backend.compare_and_set(game_id, expected, record):
                return None
            return UpdateResult(game=Game.model_validate(record), value=value, committed=True)

    async def atomic_update(self, game_id: str, mutate_fn: MutateFn) -> UpdateResult:
        attempts = max(1, int(self.max_attempts))
        for attempt in range(1, attempts + 1):
            result = self._try_commit(game_id, mutate_fn)
            if result is not None:
                if result.committed:
                    self._notify(game_id, result.game)
                return result
            logger.warning(
                "Version conflict on atomic update",
                extra={"game_id": game_id, "attempt": attempt},
            )
            if attempt < attempts:
                await asyncio.sleep(self.backoff_base * 2 ** (attempt - 1))
        logger.error("Atomic update not committed", extra={"game_id": game_id, "attempts": attempts})
        raise StorageConflict(f"Game {game_id} was modified concurrently, please retry")

    async def write_cosmetic(self, game_id: str, mutate_fn: MutateFn) -> UpdateResult:
        result = self._try_commit(game_id, mutate_fn)
        if result is None:
            logger.debug("Cosmetic write dropped after conflict", extra={"game_id": game_id})
            return UpdateResult(game=self.read(game_id), committed=False)
        if result.committed:
            self._notify(game_id, result.game)
        return result

    # ---------- abonnements ----------
    def subscribe(self, game_id: str, callback: Subscriber) -> Callable[[], None]:
        with self._subs_lock:
            self._subscribers.setdefault(game_id, []).append(callback)

        def unsubscribe() -> None:
            with self._subs_lock:
                bucket = self._subscribers.get(game_id)
                if bucket and callback in bucket:
                    bucket.remove(callback)
                    if not bucket:
                        self._subscribers.pop(game_id, None)

        return unsubscribe

    def subscriber_count(self, game_id: str) -> int:
        with self._subs_lock:
            return len(self._subscribers.get(game_id, []))

    def _notify(self, game_id: str, game: Optional[Game]) -> None:
        with self._subs_lock:
            callbacks = list(self._subscribers.get(game_id, []))
        for callback in callbacks:
            snapshot = game.model_copy(deep=True) if game is not None else None
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Subscriber callback failed", extra={"game_id": game_id})


STORE = GameStore()
