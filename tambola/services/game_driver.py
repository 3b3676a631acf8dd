"""
Service: game_driver.py
Rôle:
- Piloter localement une partie : compte à rebours, boucle d'appel, effacement de l'affichage.
- Registre en mémoire des pilotes (un par partie et par processus).

Comportement:
- Chaque tâche est une `asyncio.Task` propre à la partie ; l'échec d'une partie ne touche
  jamais les autres.
- Les appels sont séquentiels : on attend la fin d'un tick avant de programmer le suivant.
- Pause / fin annulent immédiatement la tâche locale ; un tick déjà en vol revalide le
  statut dans la mise à jour atomique et devient un no-op.
- Plusieurs pilotes pour une même partie (plusieurs onglets) restent corrects ; le bail
  `driver_id` ne sert qu'à éviter le travail redondant.

Contrat attendu du contrôleur:
- countdown_tick(game_id) -> int | None
- finish_countdown(game_id) -> bool
- tick(game_id, driver_id) -> TickOutcome
- clear_display(game_id, number)
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from tambola.config.settings import settings
from tambola.models.game import GameStatus
from .errors import GameNotFound, StorageConflict

logger = logging.getLogger(__name__)

COUNTDOWN_TICK_SECONDS = 1.0


@dataclass
class GameDriver:
    game_id: str
    controller: Any
    driver_id: str = field(default_factory=lambda: uuid4().hex)
    _countdown_task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)
    _call_task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)
    _display_tasks: Set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    # ---------- état ----------
    @property
    def counting_down(self) -> bool:
        return bool(self._countdown_task and not self._countdown_task.done())

    @property
    def calling(self) -> bool:
        return bool(self._call_task and not self._call_task.done())

    # ---------- démarrage ----------
    def start_countdown(self) -> None:
        if self.counting_down:
            return
        self._countdown_task = asyncio.create_task(self._countdown_loop())

    def start_calling(self) -> None:
        if self.calling:
            return
        self._call_task = asyncio.create_task(self._call_loop())

    def schedule_display_clear(self, number: int, delay: Optional[float] = None) -> None:
        wait = settings.DISPLAY_WINDOW_SECONDS if delay is None else delay
        task = asyncio.create_task(self._clear_later(number, wait))
        self._display_tasks.add(task)
        task.add_done_callback(self._display_tasks.discard)

    # ---------- arrêt ----------
    def stop_calling(self) -> None:
        """Annulation immédiate (synchrone) de la boucle d'appel."""
        if self.calling and self._call_task is not asyncio.current_task():
            self._call_task.cancel()
        self._call_task = None

    def stop(self) -> None:
        current = asyncio.current_task()
        for task in self._tasks():
            if task is not current and not task.done():
                task.cancel()
        self._countdown_task = None
        self._call_task = None
        self._display_tasks.clear()

    async def aclose(self) -> None:
        """Annule toutes les tâches et attend leur terminaison."""
        current = asyncio.current_task()
        tasks = [t for t in self._tasks() if t is not current and not t.done()]
        self.stop()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _tasks(self) -> List[asyncio.Task]:
        tasks = [t for t in (self._countdown_task, self._call_task) if t is not None]
        tasks.extend(self._display_tasks)
        return tasks

    # ---------- boucles ----------
    async def _countdown_loop(self) -> None:
        while True:
            try:
                game = self.controller.store.read(self.game_id)
                if game.status != GameStatus.COUNTDOWN:
                    return
                if game.countdown_time <= 0:
                    if await self.controller.finish_countdown(self.game_id):
                        self.start_calling()
                    return
                await asyncio.sleep(COUNTDOWN_TICK_SECONDS)
                # une écriture perdue est rattrapée au tour suivant (statut relu en tête de boucle)
                await self.controller.countdown_tick(self.game_id)
            except StorageConflict:
                logger.warning("Countdown write not committed, retrying", extra={"game_id": self.game_id})
                await asyncio.sleep(COUNTDOWN_TICK_SECONDS)
            except GameNotFound:
                logger.info("Game vanished during countdown", extra={"game_id": self.game_id})
                drop_driver(self.game_id)
                return
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Countdown loop failed", extra={"game_id": self.game_id})
                return

    async def _call_loop(self) -> None:
        while True:
            try:
                game = self.controller.store.read(self.game_id)
            except GameNotFound:
                logger.info("Game vanished, stopping driver", extra={"game_id": self.game_id})
                drop_driver(self.game_id)
                return
            if game.status != GameStatus.ACTIVE:
                return

            await asyncio.sleep(float(game.call_interval))
            try:
                outcome = await self.controller.tick(self.game_id, driver_id=self.driver_id)
            except StorageConflict:
                logger.warning("Tick not committed, keeping cadence", extra={"game_id": self.game_id})
                continue
            except GameNotFound:
                drop_driver(self.game_id)
                return
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Tick failed", extra={"game_id": self.game_id})
                continue

            if outcome.number is not None:
                self.schedule_display_clear(outcome.number)
            if outcome.result in ("finished", "inactive"):
                return

    async def _clear_later(self, number: int, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.controller.clear_display(self.game_id, number)
        except GameNotFound:
            return
        except Exception:
            logger.exception("Display clear failed", extra={"game_id": self.game_id})


# ---------- registre ----------
_DRIVERS: Dict[str, GameDriver] = {}
_LOCK = RLock()


def get_driver(game_id: str, controller: Any) -> GameDriver:
    """Retourne (et crée si besoin) le pilote local de la partie."""
    with _LOCK:
        driver = _DRIVERS.get(game_id)
        if driver is None:
            driver = GameDriver(game_id=game_id, controller=controller)
            _DRIVERS[game_id] = driver
        return driver


def peek_driver(game_id: str) -> Optional[GameDriver]:
    with _LOCK:
        return _DRIVERS.get(game_id)


def drop_driver(game_id: str) -> Optional[GameDriver]:
    """Retire le pilote du registre et annule ses tâches."""
    with _LOCK:
        driver = _DRIVERS.pop(game_id, None)
    if driver is not None:
        driver.stop()
    return driver


def list_driver_ids() -> List[str]:
    with _LOCK:
        return list(_DRIVERS.keys())


def forget_all() -> None:
    """Vide le registre sans toucher aux tâches (boucle déjà fermée, tests)."""
    with _LOCK:
        _DRIVERS.clear()


async def shutdown_drivers() -> None:
    with _LOCK:
        drivers = list(_DRIVERS.values())
        _DRIVERS.clear()
    for driver in drivers:
        await driver.aclose()
