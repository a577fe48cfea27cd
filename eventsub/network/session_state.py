"""Session tracking for one logical EventSub session.

The tracker is the single owner of connection lifecycle state. It performs no
I/O: every operation returns a list of effects which the client executes
(open or close a stream, deliver something to listeners). Transitions are
reported through ``on_transition`` so logging stays outside of this module.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Union

from eventsub.models.events import (
    ClassifiedEvent,
    Notification,
    Reconnect,
    Revocation,
    SessionKeepalive,
    SessionWelcome,
    Unknown,
)


class ConnectionState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    WELCOMED = "welcomed"
    LIVE = "live"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class InvalidTransition(ValueError):
    """Raised when the tracker is asked to make a transition the lifecycle forbids."""


_ALLOWED = {
    ConnectionState.IDLE: {ConnectionState.CONNECTING, ConnectionState.CLOSED},
    ConnectionState.CONNECTING: {ConnectionState.WELCOMED, ConnectionState.CLOSED},
    ConnectionState.WELCOMED: {ConnectionState.LIVE, ConnectionState.RECONNECTING, ConnectionState.CLOSED},
    ConnectionState.LIVE: {ConnectionState.RECONNECTING, ConnectionState.CLOSED},
    ConnectionState.RECONNECTING: {ConnectionState.WELCOMED, ConnectionState.CLOSED},
    ConnectionState.CLOSED: {ConnectionState.CONNECTING},
}


@dataclass(frozen=True)
class OpenStream:
    generation: int
    url: str
    reason: str
    attempt: int = 0


@dataclass(frozen=True)
class CloseStream:
    generation: int
    reason: str


@dataclass(frozen=True)
class DeliverWelcome:
    generation: int
    session_id: str
    keepalive_timeout_seconds: Optional[int]


@dataclass(frozen=True)
class DeliverNotification:
    generation: int
    notification: Notification


@dataclass(frozen=True)
class DeliverRevocation:
    generation: int
    revocation: Revocation


@dataclass(frozen=True)
class SessionClosed:
    reason: str


Effect = Union[OpenStream, CloseStream, DeliverWelcome, DeliverNotification, DeliverRevocation, SessionClosed]


@dataclass(frozen=True)
class TransitionRecord:
    previous: ConnectionState
    current: ConnectionState
    reason: str
    generation: Optional[int]
    at: datetime


@dataclass(frozen=True)
class SessionSnapshot:
    state: ConnectionState
    session_id: Optional[str]
    is_connected: bool
    last_keepalive_time: Optional[datetime]
    keepalive_timeout_seconds: Optional[int]
    connection_generation: int
    active_generation: Optional[int]
    pending_generation: Optional[int]
    consecutive_failures: int
    keepalive_age_seconds: Optional[float]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class SessionTracker:
    """In-memory session state and the transition rules that mutate it."""

    default_url: str
    keepalive_grace_factor: float = 1.5
    max_reconnect_attempts: int = 8
    stable_session_seconds: float = 30.0
    monotonic: Callable[[], float] = time.monotonic
    wall_clock: Callable[[], datetime] = _utcnow
    on_transition: Optional[Callable[[TransitionRecord], None]] = None

    state: ConnectionState = field(default=ConnectionState.IDLE, init=False)
    session_id: Optional[str] = field(default=None, init=False)
    is_connected: bool = field(default=False, init=False)
    last_keepalive_time: Optional[datetime] = field(default=None, init=False)
    last_keepalive_at: Optional[float] = field(default=None, init=False)
    keepalive_timeout_seconds: Optional[int] = field(default=None, init=False)
    connection_generation: int = field(default=0, init=False)
    active_generation: Optional[int] = field(default=None, init=False)
    pending_generation: Optional[int] = field(default=None, init=False)
    pending_url: Optional[str] = field(default=None, init=False)
    welcomed_at: Optional[float] = field(default=None, init=False)
    rapid_drops: int = field(default=0, init=False)
    consecutive_failures: int = field(default=0, init=False)

    # ------------------------------------------------------------------ queries

    def is_current(self, generation: int) -> bool:
        if self.state in (ConnectionState.IDLE, ConnectionState.CLOSED):
            return False
        return generation in (self.active_generation, self.pending_generation)

    def keepalive_deadline(self) -> Optional[float]:
        """Monotonic instant after which the active stream counts as dead."""

        if self.active_generation is None:
            return None
        if not self.keepalive_timeout_seconds or self.last_keepalive_at is None:
            return None
        return self.last_keepalive_at + self.keepalive_timeout_seconds * self.keepalive_grace_factor

    def snapshot(self) -> SessionSnapshot:
        age: Optional[float] = None
        if self.last_keepalive_at is not None:
            age = max(0.0, self.monotonic() - self.last_keepalive_at)
        return SessionSnapshot(
            state=self.state,
            session_id=self.session_id,
            is_connected=self.is_connected,
            last_keepalive_time=self.last_keepalive_time,
            keepalive_timeout_seconds=self.keepalive_timeout_seconds,
            connection_generation=self.connection_generation,
            active_generation=self.active_generation,
            pending_generation=self.pending_generation,
            consecutive_failures=self.consecutive_failures,
            keepalive_age_seconds=age,
        )

    # -------------------------------------------------------------- transitions

    def transition(self, next_state: ConnectionState, reason: str, generation: Optional[int] = None) -> None:
        """Move into a new state, validating allowed transitions."""

        if next_state not in _ALLOWED.get(self.state, set()):
            raise InvalidTransition(f"Invalid transition {self.state.value} → {next_state.value}")
        record = TransitionRecord(
            previous=self.state,
            current=next_state,
            reason=reason,
            generation=generation,
            at=self.wall_clock(),
        )
        self.state = next_state
        if self.on_transition is not None:
            self.on_transition(record)

    def begin_connect(self, url: Optional[str] = None) -> OpenStream:
        if self.state not in (ConnectionState.IDLE, ConnectionState.CLOSED):
            raise InvalidTransition(f"connect() not allowed while {self.state.value}")
        self.consecutive_failures = 0
        self.rapid_drops = 0
        self.pending_url = None
        generation = self._next_generation()
        self.pending_generation = generation
        self.transition(ConnectionState.CONNECTING, "connect requested", generation)
        return OpenStream(generation=generation, url=url or self.default_url, reason="connect")

    def apply(self, generation: int, event: ClassifiedEvent) -> List[Effect]:
        """Feed one classified frame received on ``generation``."""

        if isinstance(event, Unknown) or not self.is_current(generation):
            return []
        if isinstance(event, SessionWelcome):
            return self._on_welcome(generation, event)
        if generation != self.active_generation:
            # Only a welcome is meaningful before a pending stream is promoted.
            return []
        self._touch()
        if isinstance(event, SessionKeepalive):
            return []
        if isinstance(event, Notification):
            return [DeliverNotification(generation=generation, notification=event)]
        if isinstance(event, Revocation):
            return [DeliverRevocation(generation=generation, revocation=event)]
        if isinstance(event, Reconnect):
            return self._on_reconnect_requested(generation, event)
        return []

    def mark_live(self, generation: int) -> bool:
        if self.state is ConnectionState.WELCOMED and generation == self.active_generation:
            self.transition(ConnectionState.LIVE, "welcome dispatched", generation)
            return True
        return False

    def check_keepalive(self) -> List[Effect]:
        deadline = self.keepalive_deadline()
        if deadline is None or self.monotonic() < deadline:
            return []
        assert self.active_generation is not None
        return self.connection_lost(self.active_generation, "keepalive timeout")

    def connection_lost(self, generation: int, reason: str) -> List[Effect]:
        """The stream of ``generation`` failed (read error or silent past its deadline)."""

        if not self.is_current(generation):
            return []
        if generation == self.pending_generation:
            return self.attempt_failed(generation, reason)

        effects: List[Effect] = [CloseStream(generation=generation, reason=reason)]
        self._count_drop()
        self.active_generation = None
        self.pending_url = None
        self.session_id = None
        self.is_connected = False
        if self.state is not ConnectionState.RECONNECTING:
            self.transition(ConnectionState.RECONNECTING, reason, generation)
        if self.pending_generation is None:
            replacement = self._next_generation()
            self.pending_generation = replacement
            effects.append(
                OpenStream(generation=replacement, url=self.default_url, reason=reason, attempt=self.rapid_drops)
            )
        return effects

    def attempt_failed(self, generation: int, reason: str) -> List[Effect]:
        """A pending stream could not be opened or was never welcomed."""

        if generation != self.pending_generation or not self.is_current(generation):
            return []
        effects: List[Effect] = [CloseStream(generation=generation, reason=reason)]
        self.pending_generation = None
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.max_reconnect_attempts:
            if self.active_generation is not None:
                effects.append(CloseStream(generation=self.active_generation, reason="retries exhausted"))
            effects.extend(self._close(f"retries exhausted after {self.consecutive_failures} attempt(s): {reason}"))
            return effects
        replacement = self._next_generation()
        self.pending_generation = replacement
        effects.append(
            OpenStream(
                generation=replacement,
                url=self.pending_url or self.default_url,
                reason=reason,
                attempt=self.consecutive_failures,
            )
        )
        return effects

    def disconnect(self, reason: str = "disconnect requested") -> List[Effect]:
        effects: List[Effect] = []
        for generation in (self.active_generation, self.pending_generation):
            if generation is not None:
                effects.append(CloseStream(generation=generation, reason=reason))
        if self.state is ConnectionState.CLOSED:
            self._reset_session()
            return effects
        effects.extend(self._close(reason))
        return effects

    # ---------------------------------------------------------------- internals

    def _on_welcome(self, generation: int, event: SessionWelcome) -> List[Effect]:
        if generation != self.pending_generation:
            if generation == self.active_generation:
                self._touch()
            return []
        superseded = self.active_generation
        self.active_generation = generation
        self.pending_generation = None
        self.pending_url = None
        self.welcomed_at = self.monotonic()
        self.session_id = event.session_id
        if event.keepalive_timeout_seconds is not None:
            self.keepalive_timeout_seconds = event.keepalive_timeout_seconds
        self.is_connected = True
        self.consecutive_failures = 0
        self._touch()
        self.transition(ConnectionState.WELCOMED, "session welcome", generation)

        effects: List[Effect] = []
        if superseded is not None and superseded != generation:
            effects.append(CloseStream(generation=superseded, reason="superseded by reconnect"))
        effects.append(
            DeliverWelcome(
                generation=generation,
                session_id=event.session_id,
                keepalive_timeout_seconds=self.keepalive_timeout_seconds,
            )
        )
        return effects

    def _on_reconnect_requested(self, generation: int, event: Reconnect) -> List[Effect]:
        if self.state is not ConnectionState.LIVE or self.pending_generation is not None:
            return []
        replacement = self._next_generation()
        self.pending_generation = replacement
        self.pending_url = event.reconnect_url or self.default_url
        self.transition(ConnectionState.RECONNECTING, "server requested reconnect", generation)
        return [OpenStream(generation=replacement, url=self.pending_url, reason="server reconnect")]

    def _close(self, reason: str) -> List[Effect]:
        self._reset_session()
        self.transition(ConnectionState.CLOSED, reason)
        return [SessionClosed(reason=reason)]

    def _reset_session(self) -> None:
        self.active_generation = None
        self.pending_generation = None
        self.pending_url = None
        self.welcomed_at = None
        self.session_id = None
        self.is_connected = False
        self.keepalive_timeout_seconds = None

    def _count_drop(self) -> None:
        # A session lost soon after its welcome backs off like a failed attempt.
        now = self.monotonic()
        if self.welcomed_at is not None and now - self.welcomed_at < self.stable_session_seconds:
            self.rapid_drops += 1
        else:
            self.rapid_drops = 0

    def _touch(self) -> None:
        now = self.monotonic()
        if self.last_keepalive_at is None or now > self.last_keepalive_at:
            self.last_keepalive_at = now
        wall = self.wall_clock()
        if self.last_keepalive_time is None or wall > self.last_keepalive_time:
            self.last_keepalive_time = wall

    def _next_generation(self) -> int:
        self.connection_generation += 1
        return self.connection_generation
