"""
Service: game_controller.py
Rôle:
- Machine à états d'une partie : setup → countdown → active ⇄ paused → finished,
  active → finished à l'épuisement des numéros, toute phase → finished sur fin hôte,
  finished → setup sur reset confirmé.
- Tick d'appel : tirage + ajout + évaluation des lots + annonces dans UNE mise à jour atomique.

API interne exposée aux routes (jamais d'exception, toujours un ActionResult):
- CONTROLLER.create_game(host_id, config)
- CONTROLLER.update_config(game_id, host_id, changes)
- CONTROLLER.book_ticket(game_id, host_id, ticket_id, player_name, player_phone)
- CONTROLLER.start / pause / resume / end (game_id, host_id)
- CONTROLLER.reset(game_id, host_id, confirm)
- CONTROLLER.call_next_number(game_id, host_id)
- CONTROLLER.auto_resume(host_id)
- CONTROLLER.delete_game(game_id, host_id)

Utilisé par le pilote local (peut lever):
- countdown_tick, finish_countdown, tick, clear_display

Autorisation:
- L'annuaire des hôtes est interrogé au moment de chaque action de mutation (pas de cache).
- Un hôte n'agit que sur ses parties ; un admin agit sur toutes.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from tambola.config.settings import settings
from tambola.models.event import GameEvent
from tambola.models.game import DriverLease, Game, GameStatus, SessionMetadata
from tambola.models.host import HostUser
from .errors import (
    AuthExpired,
    GameNotFound,
    InvalidTransition,
    PermissionDenied,
    TambolaError,
    ValidationError,
)
from .game_driver import drop_driver, get_driver, peek_driver
from .game_store import STORE, GameStore
from .host_directory import get_directory
from .number_drawer import call_text, next_number, shuffle, validate_sequence
from .prize_catalog import build_prizes
from .prize_evaluator import apply_wins, evaluate
from .reconciliation import build_view
from .ticket_sets import build_tickets, load_ticket_set

logger = logging.getLogger(__name__)

MAX_COUNTDOWN_SECONDS = 300
MAX_NAME_LENGTH = 100

# clés de configuration modifiables en setup
CONFIG_KEYS = ("name", "max_tickets", "ticket_price", "call_interval", "countdown_seconds", "auto_end")


class ActionResult(BaseModel):
    ok: bool
    message: str = ""
    error: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    status_code: int = Field(default=200, exclude=True)

    @classmethod
    def success(cls, message: str, **data: Any) -> "ActionResult":
        return cls(ok=True, message=message, data=data or None)

    @classmethod
    def failure(cls, exc: TambolaError) -> "ActionResult":
        return cls(ok=False, message=exc.message, error=exc.kind, status_code=exc.status_code)


@dataclass
class TickOutcome:
    """Résultat d'un tick : called | finished | inactive | skipped."""

    result: str
    number: Optional[int] = None
    prizes_won: List[str] = field(default_factory=list)
    game: Optional[Game] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# -------------------- validation de configuration --------------------

def validate_config(values: Dict[str, Any]) -> Dict[str, Any]:
    """Normalise et borne la configuration hôte ; lève ValidationError avant toute écriture."""
    clean: Dict[str, Any] = {}
    try:
        if "name" in values:
            name = str(values["name"] or "").strip()
            if len(name) > MAX_NAME_LENGTH:
                raise ValidationError("Game name is too long")
            clean["name"] = name
        if "max_tickets" in values:
            max_tickets = int(values["max_tickets"])
            if not 1 <= max_tickets <= settings.MAX_TICKETS_LIMIT:
                raise ValidationError(f"max_tickets must be between 1 and {settings.MAX_TICKETS_LIMIT}")
            clean["max_tickets"] = max_tickets
        if "ticket_price" in values:
            price = float(values["ticket_price"])
            if price < 0:
                raise ValidationError("ticket_price must not be negative")
            clean["ticket_price"] = price
        if "call_interval" in values:
            interval = float(values["call_interval"])
            if not settings.CALL_INTERVAL_MIN <= interval <= settings.CALL_INTERVAL_MAX:
                raise ValidationError(
                    f"call_interval must be between {settings.CALL_INTERVAL_MIN} and {settings.CALL_INTERVAL_MAX} seconds"
                )
            clean["call_interval"] = interval
        if "countdown_seconds" in values:
            countdown = int(values["countdown_seconds"])
            if not 0 <= countdown <= MAX_COUNTDOWN_SECONDS:
                raise ValidationError(f"countdown_seconds must be between 0 and {MAX_COUNTDOWN_SECONDS}")
            clean["countdown_seconds"] = countdown
        if "auto_end" in values:
            clean["auto_end"] = bool(values["auto_end"])
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid configuration value: {exc}") from exc
    return clean


class GameController:
    def __init__(self, store: GameStore = STORE) -> None:
        self.store = store

    # ---------- plomberie ----------
    async def _guard(self, action: str, game_id: Optional[str], fn: Callable[[], Awaitable[ActionResult]]) -> ActionResult:
        try:
            return await fn()
        except TambolaError as exc:
            logger.info(
                "Action refused",
                extra={"action": action, "game_id": game_id, "error_kind": exc.kind, "reason": exc.message},
            )
            return ActionResult.failure(exc)

    async def _authorize(self, host_id: str, game_id: Optional[str] = None) -> HostUser:
        host = await get_directory().fetch_host(host_id)
        if host is None or not host.can_act():
            raise AuthExpired("Your account is inactive or your subscription has expired")
        if game_id is not None:
            game = self.store.read(game_id)
            if host.role != "admin" and game.host_id != host.id:
                raise PermissionDenied("You are not the host of this game")
        return host

    @staticmethod
    def _emit(game: Game, kind: str, payload: Dict[str, Any]) -> GameEvent:
        game.event_seq += 1
        event = GameEvent(seq=game.event_seq, kind=kind, payload=payload)
        game.events.append(event)
        if len(game.events) > settings.MAX_GAME_EVENTS:
            game.events = game.events[-settings.MAX_GAME_EVENTS:]
        return event

    def _restart_local(self, game_id: str) -> None:
        """Relance le pilotage local si l'action a échoué alors que la partie tourne encore."""
        try:
            game = self.store.read(game_id)
        except GameNotFound:
            return
        if game.status == GameStatus.ACTIVE:
            get_driver(game_id, self).start_calling()
        elif game.status == GameStatus.COUNTDOWN:
            get_driver(game_id, self).start_countdown()

    def _finish(self, game: Game, reason: str, now: datetime, clear_display: bool) -> None:
        game.status = GameStatus.FINISHED
        game.ended_at = now
        game.countdown_time = 0
        game.driver = None
        if clear_display:
            game.current_number = None
        self._emit(game, "gameOver", {
            "reason": reason,
            "called_count": len(game.called_numbers),
            "winners": {p.id: [w.ticket_id for w in p.winners] for p in game.ordered_prizes() if p.won},
        })

    # ---------- création / configuration ----------
    async def create_game(self, host_id: str, config: Dict[str, Any]) -> ActionResult:
        async def run() -> ActionResult:
            await self._authorize(host_id)
            values = {
                "name": "",
                "max_tickets": 100,
                "ticket_price": 0,
                "call_interval": settings.CALL_INTERVAL_SECONDS,
                "countdown_seconds": settings.COUNTDOWN_SECONDS,
                "auto_end": False,
            }
            values.update({k: v for k, v in config.items() if k in CONFIG_KEYS and v is not None})
            clean = validate_config(values)

            game_id = uuid4().hex
            prizes = build_prizes(config.get("prizes") or [], game_id)
            ticket_set_id = config.get("ticket_set_id")
            if config.get("tickets"):
                tickets = build_tickets(config["tickets"], game_id, limit=clean["max_tickets"])
            elif ticket_set_id:
                tickets = load_ticket_set(str(ticket_set_id), game_id, limit=clean["max_tickets"])
            else:
                raise ValidationError("A ticket set or explicit tickets are required")
            if not tickets:
                raise ValidationError("The selected ticket set holds no tickets")
            if len(tickets) < clean["max_tickets"]:
                logger.info(
                    "max_tickets capped to available tickets",
                    extra={"requested": clean["max_tickets"], "available": len(tickets)},
                )
                clean["max_tickets"] = len(tickets)

            game = Game(
                id=game_id,
                host_id=host_id,
                ticket_set_id=str(ticket_set_id) if ticket_set_id else None,
                tickets=tickets,
                prizes=prizes,
                **clean,
            )
            created = self.store.create(game)
            return ActionResult.success("Game created", game=build_view(created))

        return await self._guard("create_game", None, run)

    async def update_config(self, game_id: str, host_id: str, changes: Dict[str, Any]) -> ActionResult:
        async def run() -> ActionResult:
            await self._authorize(host_id, game_id)
            clean = validate_config({k: v for k, v in changes.items() if k in CONFIG_KEYS and v is not None})
            selected = changes.get("prizes")
            new_prizes = build_prizes(selected, game_id) if selected is not None else None

            current = self.store.read(game_id)
            reload = None
            if "max_tickets" in clean and current.ticket_set_id and clean["max_tickets"] > len(current.tickets):
                reload = load_ticket_set(current.ticket_set_id, game_id, limit=clean["max_tickets"])

            def mutate(game: Game) -> None:
                if game.status != GameStatus.SETUP:
                    raise InvalidTransition("Configuration can only change before the game starts")
                values = dict(clean)
                if "max_tickets" in values:
                    limit = values["max_tickets"]
                    if len(game.booked_tickets()) > limit:
                        raise ValidationError("max_tickets is lower than the number of booked tickets")
                    if reload is not None:
                        for tid, ticket in reload.items():
                            game.tickets.setdefault(tid, ticket)
                    kept = list(game.tickets.values())
                    unbooked_room = limit - len(game.booked_tickets())
                    tickets = {}
                    for ticket in kept:
                        if ticket.is_booked:
                            tickets[ticket.ticket_id] = ticket
                        elif unbooked_room > 0:
                            tickets[ticket.ticket_id] = ticket
                            unbooked_room -= 1
                    game.tickets = tickets
                    values["max_tickets"] = min(limit, len(tickets))
                for key, value in values.items():
                    setattr(game, key, value)
                if new_prizes is not None:
                    game.prizes = {pid: p.model_copy(deep=True) for pid, p in new_prizes.items()}

            result = await self.store.atomic_update(game_id, mutate)
            return ActionResult.success("Game updated", game=build_view(result.game))

        return await self._guard("update_config", game_id, run)

    async def book_ticket(
        self,
        game_id: str,
        host_id: str,
        ticket_id: str,
        player_name: str,
        player_phone: Optional[str] = None,
    ) -> ActionResult:
        async def run() -> ActionResult:
            await self._authorize(host_id, game_id)
            name = (player_name or "").strip()
            if not name:
                raise ValidationError("Player name is required")

            def mutate(game: Game) -> None:
                if game.status != GameStatus.SETUP:
                    raise InvalidTransition("Tickets can only be booked before the game starts")
                ticket = game.tickets.get(ticket_id)
                if ticket is None:
                    raise ValidationError(f"Unknown ticket: {ticket_id}")
                if ticket.is_booked:
                    raise ValidationError(f"Ticket {ticket_id} is already booked")
                ticket.is_booked = True
                ticket.player_name = name
                ticket.player_phone = (player_phone or "").strip() or None
                ticket.booked_at = _utcnow()

            result = await self.store.atomic_update(game_id, mutate)
            logger.info("Ticket booked", extra={"game_id": game_id, "ticket_id": ticket_id})
            return ActionResult.success(
                f"Ticket {ticket_id} booked for {name}",
                ticket=result.game.tickets[ticket_id].model_dump(mode="json"),
            )

        return await self._guard("book_ticket", game_id, run)

    # ---------- transitions hôte ----------
    async def start(self, game_id: str, host_id: str) -> ActionResult:
        async def run() -> ActionResult:
            await self._authorize(host_id, game_id)
            now = _utcnow()

            def mutate(game: Game) -> None:
                if game.status != GameStatus.SETUP:
                    raise InvalidTransition(f"Cannot start a game in status {game.status.value}")
                sequence = shuffle()
                game.status = GameStatus.COUNTDOWN
                game.countdown_time = game.countdown_seconds
                game.called_numbers = []
                game.current_number = None
                game.session_numbers = sequence
                game.session_metadata = SessionMetadata(
                    created=now,
                    source="host",
                    validated=validate_sequence(sequence),
                    total_numbers=len(sequence),
                )

            result = await self.store.atomic_update(game_id, mutate)
            get_driver(game_id, self).start_countdown()
            logger.info("Countdown started", extra={"game_id": game_id, "seconds": result.game.countdown_time})
            return ActionResult.success("Countdown started", game=build_view(result.game))

        return await self._guard("start", game_id, run)

    async def pause(self, game_id: str, host_id: str) -> ActionResult:
        async def run() -> ActionResult:
            await self._authorize(host_id, game_id)
            driver = peek_driver(game_id)
            if driver is not None:
                driver.stop_calling()

            def mutate(game: Game) -> None:
                if game.status != GameStatus.ACTIVE:
                    raise InvalidTransition(f"Cannot pause a game in status {game.status.value}")
                game.status = GameStatus.PAUSED
                game.driver = None

            try:
                result = await self.store.atomic_update(game_id, mutate)
            except TambolaError:
                if driver is not None:
                    self._restart_local(game_id)
                raise
            logger.info("Game paused", extra={"game_id": game_id, "called": len(result.game.called_numbers)})
            return ActionResult.success("Game paused", game=build_view(result.game))

        return await self._guard("pause", game_id, run)

    async def resume(self, game_id: str, host_id: str) -> ActionResult:
        async def run() -> ActionResult:
            await self._authorize(host_id, game_id)

            def mutate(game: Game) -> None:
                if game.status != GameStatus.PAUSED:
                    raise InvalidTransition(f"Cannot resume a game in status {game.status.value}")
                game.status = GameStatus.ACTIVE

            result = await self.store.atomic_update(game_id, mutate)
            get_driver(game_id, self).start_calling()
            logger.info("Game resumed", extra={"game_id": game_id})
            return ActionResult.success("Game resumed", game=build_view(result.game))

        return await self._guard("resume", game_id, run)

    async def end(self, game_id: str, host_id: str) -> ActionResult:
        async def run() -> ActionResult:
            await self._authorize(host_id, game_id)
            driver = peek_driver(game_id)
            if driver is not None:
                driver.stop()
            now = _utcnow()

            def mutate(game: Game) -> None:
                if game.status == GameStatus.FINISHED:
                    raise InvalidTransition("Game is already finished")
                self._finish(game, "host_ended", now, clear_display=True)

            try:
                result = await self.store.atomic_update(game_id, mutate)
            except TambolaError:
                self._restart_local(game_id)
                raise
            drop_driver(game_id)
            logger.info("Game ended by host", extra={"game_id": game_id})
            return ActionResult.success("Game ended", game=build_view(result.game))

        return await self._guard("end", game_id, run)

    async def reset(self, game_id: str, host_id: str, confirm: bool = False) -> ActionResult:
        async def run() -> ActionResult:
            await self._authorize(host_id, game_id)
            if not confirm:
                raise ValidationError("Reset must be confirmed: it clears every called number and prize")

            def mutate(game: Game) -> None:
                if game.status != GameStatus.FINISHED:
                    raise InvalidTransition("Only a finished game can be reset")
                game.status = GameStatus.SETUP
                game.called_numbers = []
                game.current_number = None
                game.countdown_time = 0
                game.session_numbers = []
                game.session_metadata = None
                game.started_at = None
                game.ended_at = None
                game.driver = None
                for prize in game.prizes.values():
                    prize.clear()

            result = await self.store.atomic_update(game_id, mutate)
            drop_driver(game_id)
            logger.info("Game reset", extra={"game_id": game_id})
            return ActionResult.success("Game reset", game=build_view(result.game))

        return await self._guard("reset", game_id, run)

    async def delete_game(self, game_id: str, host_id: str) -> ActionResult:
        async def run() -> ActionResult:
            await self._authorize(host_id, game_id)
            driver = drop_driver(game_id)
            if driver is not None:
                await driver.aclose()
            self.store.delete(game_id)
            return ActionResult.success("Game deleted", game_id=game_id)

        return await self._guard("delete_game", game_id, run)

    async def call_next_number(self, game_id: str, host_id: str) -> ActionResult:
        """Appel manuel d'un numéro par l'hôte (hors boucle automatique)."""
        async def run() -> ActionResult:
            await self._authorize(host_id, game_id)
            outcome = await self.tick(game_id)
            if outcome.result == "inactive":
                raise InvalidTransition("Numbers can only be called while the game is active")
            if outcome.number is not None:
                get_driver(game_id, self).schedule_display_clear(outcome.number)
            return ActionResult.success(
                "Number called" if outcome.number is not None else "All numbers have been called",
                outcome=outcome.result,
                number=outcome.number,
                prizes_won=outcome.prizes_won,
                game=build_view(outcome.game),
            )

        return await self._guard("call_next_number", game_id, run)

    # ---------- reprise automatique ----------
    async def auto_resume(self, host_id: str) -> ActionResult:
        """
        Inspecte les parties de l'hôte (les plus récentes d'abord), sans jamais créer d'état :
        - active / countdown → reprise locale du pilotage ("resumed")
        - finished récente (< RECENT_GAME_WINDOW_HOURS) → proposée en revue ("review")
        - paused → signalée ("paused")
        - sinon "none"
        """
        async def run() -> ActionResult:
            await self._authorize(host_id)
            games = self.store.list_games(host_id)

            for game in games:
                if game.status in (GameStatus.ACTIVE, GameStatus.COUNTDOWN):
                    driver = get_driver(game.id, self)
                    if game.status == GameStatus.COUNTDOWN:
                        driver.start_countdown()
                    else:
                        driver.start_calling()
                    logger.info("Driving resumed", extra={"game_id": game.id, "status": game.status.value})
                    return ActionResult.success("Game resumed", action="resumed", game=build_view(game))

            window = timedelta(hours=settings.RECENT_GAME_WINDOW_HOURS)
            now = _utcnow()
            for game in games:
                if game.status == GameStatus.FINISHED and game.ended_at and now - _as_utc(game.ended_at) <= window:
                    return ActionResult.success("Recent game available for review", action="review", game=build_view(game))

            for game in games:
                if game.status == GameStatus.PAUSED:
                    return ActionResult.success("Paused game found", action="paused", game=build_view(game))

            return ActionResult.success("No game to resume", action="none")

        return await self._guard("auto_resume", None, run)

    # ---------- appelés par le pilote ----------
    async def countdown_tick(self, game_id: str) -> Optional[int]:
        def mutate(game: Game) -> Optional[int]:
            if game.status != GameStatus.COUNTDOWN:
                return None
            game.countdown_time = max(0, game.countdown_time - 1)
            return game.countdown_time

        result = await self.store.write_cosmetic(game_id, mutate)
        return result.value

    async def finish_countdown(self, game_id: str) -> bool:
        now = _utcnow()

        def mutate(game: Game) -> bool:
            if game.status != GameStatus.COUNTDOWN:
                return False
            game.status = GameStatus.ACTIVE
            game.countdown_time = 0
            game.started_at = now
            return True

        result = await self.store.atomic_update(game_id, mutate)
        if result.value:
            logger.info("Game active", extra={"game_id": game_id})
        return bool(result.value)

    async def tick(self, game_id: str, driver_id: Optional[str] = None) -> TickOutcome:
        """Un appel : statut revalidé, tirage, lots et annonces dans la même mise à jour."""
        now = _utcnow()
        heartbeat = time.time()

        def mutate(game: Game) -> TickOutcome:
            if game.status != GameStatus.ACTIVE:
                return TickOutcome(result="inactive")
            if driver_id is not None:
                lease = game.driver
                ttl = settings.LEASE_TTL_FACTOR * float(game.call_interval)
                if lease and lease.driver_id != driver_id and heartbeat - lease.heartbeat_at < ttl:
                    return TickOutcome(result="skipped")
                game.driver = DriverLease(driver_id=driver_id, heartbeat_at=heartbeat)

            number = next_number(game)
            if number is None:
                self._finish(game, "pool_exhausted", now, clear_display=False)
                return TickOutcome(result="finished")

            game.called_numbers.append(number)
            game.current_number = number
            self._emit(game, "numberCalled", {
                "number": number,
                "text": call_text(number),
                "count": len(game.called_numbers),
            })

            awarded = apply_wins(game, evaluate(game), number, now)
            for prize in awarded:
                self._emit(game, "prizeWon", {
                    "prize_id": prize.id,
                    "prize_name": prize.name,
                    "number": number,
                    "winners": [w.model_dump(mode="json") for w in prize.winners],
                })

            outcome = "called"
            if next_number(game) is None:
                self._finish(game, "pool_exhausted", now, clear_display=False)
                outcome = "finished"
            elif game.auto_end and game.prizes and all(p.won for p in game.prizes.values()):
                self._finish(game, "all_prizes_won", now, clear_display=False)
                outcome = "finished"
            return TickOutcome(result=outcome, number=number, prizes_won=[p.id for p in awarded])

        result = await self.store.atomic_update(game_id, mutate)
        outcome: TickOutcome = result.value
        outcome.game = result.game
        if outcome.number is not None:
            logger.debug(
                "Number called",
                extra={"game_id": game_id, "number": outcome.number, "prizes_won": outcome.prizes_won},
            )
        if outcome.result == "finished":
            logger.info("Game finished", extra={"game_id": game_id, "called": len(result.game.called_numbers)})
        return outcome

    async def clear_display(self, game_id: str, number: int) -> None:
        def mutate(game: Game) -> None:
            if game.current_number == number:
                game.current_number = None

        result = await self.store.write_cosmetic(game_id, mutate)
        if not result.committed and result.game.current_number == number:
            # écriture perdue : l'affichage d'une partie terminée ne doit pas rester figé
            await self.store.atomic_update(game_id, mutate)


CONTROLLER = GameController()
