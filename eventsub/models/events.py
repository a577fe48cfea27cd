"""Classified forms of inbound EventSub messages."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, Union

from eventsub.models.envelope import Envelope


class MessageKind(enum.Enum):
    SESSION_WELCOME = "session_welcome"
    SESSION_KEEPALIVE = "session_keepalive"
    NOTIFICATION = "notification"
    RECONNECT = "reconnect"
    REVOCATION = "revocation"
    UNKNOWN = "unknown"

    @classmethod
    def from_wire(cls, value: str) -> Optional["MessageKind"]:
        """Resolve a wire message type, matching exactly apart from case. Returns None when unrecognised."""

        normalized = value.lower()
        if normalized == cls.UNKNOWN.value:
            return None
        try:
            return cls(normalized)
        except ValueError:
            return None


@dataclass(frozen=True)
class SessionWelcome:
    session_id: str
    keepalive_timeout_seconds: Optional[int] = None
    envelope: Optional[Envelope] = field(default=None, repr=False, compare=False)
    kind: MessageKind = field(default=MessageKind.SESSION_WELCOME, init=False)


@dataclass(frozen=True)
class SessionKeepalive:
    envelope: Optional[Envelope] = field(default=None, repr=False, compare=False)
    kind: MessageKind = field(default=MessageKind.SESSION_KEEPALIVE, init=False)


@dataclass(frozen=True)
class Notification:
    envelope: Envelope
    kind: MessageKind = field(default=MessageKind.NOTIFICATION, init=False)

    @property
    def message_id(self) -> str:
        return self.envelope.message_id

    @property
    def subscription_type(self) -> Optional[str]:
        return self.envelope.subscription_type


@dataclass(frozen=True)
class Reconnect:
    reconnect_url: Optional[str] = None
    requires_disconnect: bool = True
    envelope: Optional[Envelope] = field(default=None, repr=False, compare=False)
    kind: MessageKind = field(default=MessageKind.RECONNECT, init=False)


@dataclass(frozen=True)
class Revocation:
    subscription_id: Optional[str] = None
    status: Optional[str] = None
    envelope: Optional[Envelope] = field(default=None, repr=False, compare=False)
    kind: MessageKind = field(default=MessageKind.REVOCATION, init=False)


@dataclass(frozen=True)
class Unknown:
    raw_reason: str
    kind: MessageKind = field(default=MessageKind.UNKNOWN, init=False)


ClassifiedEvent = Union[SessionWelcome, SessionKeepalive, Notification, Reconnect, Revocation, Unknown]
