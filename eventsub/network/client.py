"""EventSub session client.

Owns the physical streams of one logical EventSub session:

- one receive loop per open stream (two while a reconnect swap is in flight)
- a keepalive watchdog for the active stream
- connection attempts with bounded exponential backoff
- delivery of welcome/notification/revocation/closed events to listeners

Every mutation of session state happens under a single lock. Listeners run on
the task that received the frame, outside of that lock, and must return
quickly or hand work off: a slow listener stalls keepalive detection for its
connection.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from eventsub.config import EventSubSettings
from eventsub.models.events import ClassifiedEvent, Notification, Revocation, SessionWelcome, Unknown
from eventsub.network.backoff import ReconnectPolicy
from eventsub.network.session_state import (
    CloseStream,
    ConnectionState,
    DeliverNotification,
    DeliverRevocation,
    DeliverWelcome,
    Effect,
    OpenStream,
    SessionClosed,
    SessionSnapshot,
    SessionTracker,
    TransitionRecord,
)
from eventsub.network.transport.base import BaseTransport
from eventsub.protocol.classifier import classify

LOGGER = logging.getLogger(__name__)

NotificationListener = Callable[[Notification], Awaitable[None] | None]
WelcomeListener = Callable[[str], Awaitable[None] | None]
DisconnectedListener = Callable[[], Awaitable[None] | None]
RevocationListener = Callable[[Revocation], Awaitable[None] | None]
TransportFactory = Callable[[EventSubSettings, str], BaseTransport]


@dataclass
class EventSubClient:
    """Client side of an EventSub WebSocket session."""

    settings: EventSubSettings
    transport_factory: TransportFactory
    policy: Optional[ReconnectPolicy] = None

    tracker: SessionTracker = field(init=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)
    _streams: Dict[int, BaseTransport] = field(default_factory=dict, init=False, repr=False)
    _loops: Dict[int, asyncio.Task[None]] = field(default_factory=dict, init=False, repr=False)
    _attempts: Dict[int, asyncio.Task[None]] = field(default_factory=dict, init=False, repr=False)
    _welcome_waiters: Dict[int, asyncio.Future[None]] = field(default_factory=dict, init=False, repr=False)
    _watchdog_task: Optional[asyncio.Task[None]] = field(default=None, init=False, repr=False)
    _watchdog_wakeup: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)
    _connected: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)
    _closed: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)
    _recent_message_ids: "OrderedDict[str, None]" = field(default_factory=OrderedDict, init=False, repr=False)
    _notification_listeners: List[NotificationListener] = field(default_factory=list, init=False, repr=False)
    _welcome_listeners: List[WelcomeListener] = field(default_factory=list, init=False, repr=False)
    _disconnected_listeners: List[DisconnectedListener] = field(default_factory=list, init=False, repr=False)
    _revocation_listeners: List[RevocationListener] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.policy is None:
            self.policy = ReconnectPolicy.from_settings(self.settings)
        self.tracker = SessionTracker(
            default_url=self.settings.default_endpoint,
            keepalive_grace_factor=float(self.settings.keepalive_grace_factor),
            max_reconnect_attempts=int(self.settings.max_reconnect_attempts),
            stable_session_seconds=float(self.settings.stable_session_seconds),
            on_transition=self._log_transition,
        )

    # ----------------------------------------------------------- public state

    @property
    def session_id(self) -> Optional[str]:
        return self.tracker.session_id

    @property
    def is_connected(self) -> bool:
        return self.tracker.is_connected

    @property
    def last_keepalive_time(self) -> Optional[datetime]:
        return self.tracker.last_keepalive_time

    @property
    def keepalive_timeout_seconds(self) -> Optional[int]:
        return self.tracker.keepalive_timeout_seconds

    @property
    def state(self) -> ConnectionState:
        return self.tracker.state

    @property
    def connection_generation(self) -> int:
        return self.tracker.connection_generation

    def status(self) -> SessionSnapshot:
        """Point-in-time view of the session, including keepalive age."""

        return self.tracker.snapshot()

    # -------------------------------------------------------------- listeners

    def add_notification_listener(self, listener: NotificationListener) -> None:
        self._notification_listeners.append(listener)

    def remove_notification_listener(self, listener: NotificationListener) -> None:
        if listener in self._notification_listeners:
            self._notification_listeners.remove(listener)

    def add_session_welcome_listener(self, listener: WelcomeListener) -> None:
        self._welcome_listeners.append(listener)

    def remove_session_welcome_listener(self, listener: WelcomeListener) -> None:
        if listener in self._welcome_listeners:
            self._welcome_listeners.remove(listener)

    def add_disconnected_listener(self, listener: DisconnectedListener) -> None:
        self._disconnected_listeners.append(listener)

    def remove_disconnected_listener(self, listener: DisconnectedListener) -> None:
        if listener in self._disconnected_listeners:
            self._disconnected_listeners.remove(listener)

    def add_revocation_listener(self, listener: RevocationListener) -> None:
        self._revocation_listeners.append(listener)

    def remove_revocation_listener(self, listener: RevocationListener) -> None:
        if listener in self._revocation_listeners:
            self._revocation_listeners.remove(listener)

    # ------------------------------------------------------------- lifecycle

    async def connect(self) -> bool:
        """Open the session and wait until it is live or has given up.

        Calling while a session is already connecting or live is a no-op.
        Returns whether the session is connected.
        """

        async with self._lock:
            if self.tracker.state not in (ConnectionState.IDLE, ConnectionState.CLOSED):
                LOGGER.warning("connect() ignored; session is %s", self.tracker.state.value)
                return self.tracker.is_connected
            self._closed.clear()
            self._recent_message_ids.clear()
            effects: List[Effect] = [self.tracker.begin_connect()]
            deliveries = await self._execute(effects)
            self._ensure_watchdog()
            self._sync_events()
        await self._deliver(deliveries)
        await self._wait_settled()
        return self.tracker.is_connected

    async def disconnect(self) -> None:
        """Close every stream and enter the closed state. Safe to call at any time."""

        async with self._lock:
            effects = self.tracker.disconnect()
            deliveries = await self._execute(effects)
            for generation in set(self._streams) | set(self._loops) | set(self._attempts):
                await self._teardown(generation)
            self._sync_events()
        await self._stop_watchdog()
        await self._deliver(deliveries)

    async def force_reconnect(self) -> bool:
        """Drop the current session and build a fresh one against the default endpoint."""

        LOGGER.info("Force reconnect requested (session=%s)", self.tracker.session_id)
        await self.disconnect()
        return await self.connect()

    async def wait_until_connected(self, timeout: Optional[float] = None) -> bool:
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # ------------------------------------------------------- receive path

    async def _receive_loop(self, generation: int, transport: BaseTransport) -> None:
        LOGGER.debug("Receive loop started for generation %s", generation)
        while generation in self._loops:
            try:
                raw = await transport.receive()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Receive failed on generation %s: %s", generation, exc)
                await self._connection_lost(generation, f"transport error: {exc}")
                return
            event = classify(raw)
            if isinstance(event, Unknown):
                LOGGER.warning("Discarding frame on generation %s: %s", generation, event.raw_reason)
                continue
            await self._handle_event(generation, event)
        LOGGER.debug("Receive loop finished for generation %s", generation)

    async def _handle_event(self, generation: int, event: ClassifiedEvent) -> None:
        async with self._lock:
            effects = self.tracker.apply(generation, event)
            if isinstance(event, SessionWelcome) and any(isinstance(e, DeliverWelcome) for e in effects):
                if not event.session_id:
                    LOGGER.warning("session_welcome on generation %s carried no session id", generation)
                waiter = self._welcome_waiters.pop(generation, None)
                if waiter is not None and not waiter.done():
                    waiter.set_result(None)
                self._attempts.pop(generation, None)
                self._watchdog_wakeup.set()
            deliveries = await self._execute(effects)
            self._sync_events()
        await self._deliver(deliveries)

    async def _connection_lost(self, generation: int, reason: str) -> None:
        async with self._lock:
            effects = self.tracker.connection_lost(generation, reason)
            deliveries = await self._execute(effects)
            self._sync_events()
        await self._deliver(deliveries)

    # ------------------------------------------------------- connect path

    async def _run_attempt(self, opening: OpenStream) -> None:
        generation = opening.generation
        assert self.policy is not None
        delay = self.policy.delay(opening.attempt)
        if delay > 0:
            LOGGER.info(
                "Retrying EventSub connection in %.2fs (attempt %s, generation %s)",
                delay,
                opening.attempt + 1,
                generation,
            )
            await asyncio.sleep(delay)

        transport = self.transport_factory(self.settings, opening.url)
        try:
            await asyncio.wait_for(transport.connect(), timeout=float(self.settings.connect_timeout_seconds))
        except asyncio.CancelledError:
            with contextlib.suppress(Exception):
                await transport.close()
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("EventSub connect to %s failed (generation %s): %s", opening.url, generation, exc)
            with contextlib.suppress(Exception):
                await transport.close()
            await self._attempt_failed(generation, f"connect failed: {exc}")
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        async with self._lock:
            if not self.tracker.is_current(generation) or generation != self.tracker.pending_generation:
                LOGGER.debug("Generation %s superseded while connecting; closing", generation)
                with contextlib.suppress(Exception):
                    await transport.close()
                return
            self._streams[generation] = transport
            self._welcome_waiters[generation] = waiter
            self._loops[generation] = asyncio.create_task(
                self._receive_loop(generation, transport),
                name=f"eventsub-recv-{generation}",
            )
        LOGGER.info("EventSub stream open (generation %s, %s); awaiting welcome", generation, opening.reason)

        try:
            await asyncio.wait_for(waiter, timeout=float(self.settings.welcome_timeout_seconds))
        except asyncio.TimeoutError:
            LOGGER.warning(
                "No session_welcome on generation %s within %ss",
                generation,
                self.settings.welcome_timeout_seconds,
            )
            await self._attempt_failed(generation, "welcome timeout")

    async def _attempt_failed(self, generation: int, reason: str) -> None:
        async with self._lock:
            effects = self.tracker.attempt_failed(generation, reason)
            deliveries = await self._execute(effects)
            self._sync_events()
        await self._deliver(deliveries)

    # ------------------------------------------------------------- watchdog

    def _ensure_watchdog(self) -> None:
        if self._watchdog_task is None or self._watchdog_task.done():
            self._watchdog_task = asyncio.create_task(self._watchdog_loop(), name="eventsub-keepalive-watchdog")

    async def _stop_watchdog(self) -> None:
        task = self._watchdog_task
        self._watchdog_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _watchdog_loop(self) -> None:
        while True:
            deadline = self.tracker.keepalive_deadline()
            if deadline is None:
                await self._watchdog_wakeup.wait()
                self._watchdog_wakeup.clear()
                continue
            remaining = deadline - self.tracker.monotonic()
            if remaining > 0:
                self._watchdog_wakeup.clear()
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._watchdog_wakeup.wait(), timeout=remaining)
                continue
            async with self._lock:
                effects = self.tracker.check_keepalive()
                if effects:
                    LOGGER.warning(
                        "No EventSub traffic for %.1fs (keepalive %ss); reconnecting",
                        self.tracker.keepalive_timeout_seconds * self.tracker.keepalive_grace_factor,
                        self.tracker.keepalive_timeout_seconds,
                    )
                deliveries = await self._execute(effects)
                self._sync_events()
            await self._deliver(deliveries)

    # -------------------------------------------------------------- effects

    async def _execute(self, effects: Sequence[Effect]) -> List[Effect]:
        """Run stream effects (lock held) and return those meant for listeners."""

        deliveries: List[Effect] = []
        for effect in effects:
            if isinstance(effect, CloseStream):
                LOGGER.debug("Closing generation %s: %s", effect.generation, effect.reason)
                await self._teardown(effect.generation)
            elif isinstance(effect, OpenStream):
                LOGGER.info("Opening generation %s to %s (%s)", effect.generation, effect.url, effect.reason)
                self._attempts[effect.generation] = asyncio.create_task(
                    self._run_attempt(effect),
                    name=f"eventsub-connect-{effect.generation}",
                )
            else:
                deliveries.append(effect)
        return deliveries

    async def _teardown(self, generation: int) -> None:
        current = asyncio.current_task()
        transport = self._streams.pop(generation, None)
        for tasks in (self._loops, self._attempts):
            task = tasks.pop(generation, None)
            if task is None or task is current or task.done():
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        waiter = self._welcome_waiters.pop(generation, None)
        if waiter is not None and not waiter.done():
            waiter.cancel()
        if transport is not None:
            try:
                await transport.close()
            except Exception:  # noqa: BLE001
                LOGGER.debug("Suppress transport close error", exc_info=True)

    async def _deliver(self, deliveries: Sequence[Effect]) -> None:
        for effect in deliveries:
            if isinstance(effect, DeliverWelcome):
                LOGGER.info(
                    "EventSub session welcomed: id=%s keepalive=%ss (generation %s)",
                    effect.session_id,
                    effect.keepalive_timeout_seconds,
                    effect.generation,
                )
                await self._run_listeners(self._welcome_listeners, effect.session_id)
                async with self._lock:
                    self.tracker.mark_live(effect.generation)
                    self._sync_events()
            elif isinstance(effect, DeliverNotification):
                if self._is_duplicate(effect.notification):
                    LOGGER.debug("Dropping duplicate notification %s", effect.notification.message_id)
                    continue
                LOGGER.debug("Notification received: %s", effect.notification.message_id)
                await self._run_listeners(self._notification_listeners, effect.notification)
            elif isinstance(effect, DeliverRevocation):
                LOGGER.warning(
                    "Subscription revoked: %s - %s",
                    effect.revocation.subscription_id,
                    effect.revocation.status,
                )
                await self._run_listeners(self._revocation_listeners, effect.revocation)
            elif isinstance(effect, SessionClosed):
                LOGGER.warning("EventSub session closed: %s", effect.reason)
                await self._stop_watchdog()
                await self._run_listeners(self._disconnected_listeners)
                if self.tracker.state is ConnectionState.CLOSED:
                    self._closed.set()

    def _is_duplicate(self, notification: Notification) -> bool:
        window = int(self.settings.dedupe_window_size or 0)
        message_id = notification.message_id
        if window <= 0 or not message_id:
            return False
        if message_id in self._recent_message_ids:
            self._recent_message_ids.move_to_end(message_id)
            return True
        self._recent_message_ids[message_id] = None
        while len(self._recent_message_ids) > window:
            self._recent_message_ids.popitem(last=False)
        return False

    def _sync_events(self) -> None:
        if self.tracker.is_connected and self.tracker.state is not ConnectionState.WELCOMED:
            self._connected.set()
        else:
            self._connected.clear()
        if self.tracker.state is ConnectionState.CLOSED:
            self._connected.clear()

    async def _wait_settled(self) -> None:
        waiters = [
            asyncio.create_task(self._connected.wait()),
            asyncio.create_task(self._closed.wait()),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

    async def _run_listeners(self, listeners: List[Callable], *args: Any) -> None:
        for listener in list(listeners):
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                LOGGER.exception("EventSub listener failed: %s", listener)

    @staticmethod
    def _log_transition(record: TransitionRecord) -> None:
        LOGGER.info(
            "EventSub session %s → %s (generation %s): %s",
            record.previous.value,
            record.current.value,
            record.generation,
            record.reason,
        )
