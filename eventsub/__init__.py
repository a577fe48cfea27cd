"""eventsub

Client for EventSub WebSocket sessions: message classification, session
state tracking with keepalive supervision, and reconnect handling.
"""

from .config import EventSubSettings, get_settings
from .models import (
    ClassifiedEvent,
    Envelope,
    MessageKind,
    Notification,
    Reconnect,
    Revocation,
    SessionKeepalive,
    SessionWelcome,
    Unknown,
)
from .network import (
    BaseTransport,
    ConnectionState,
    DummyTransport,
    EventSubClient,
    NotificationRouter,
    ReconnectPolicy,
    SessionTracker,
    WebSocketTransport,
)
from .protocol import classify

__all__ = [
    "EventSubSettings",
    "get_settings",
    "ClassifiedEvent",
    "Envelope",
    "MessageKind",
    "Notification",
    "Reconnect",
    "Revocation",
    "SessionKeepalive",
    "SessionWelcome",
    "Unknown",
    "BaseTransport",
    "ConnectionState",
    "DummyTransport",
    "EventSubClient",
    "NotificationRouter",
    "ReconnectPolicy",
    "SessionTracker",
    "WebSocketTransport",
    "classify",
]

__version__ = "0.1.0"
