"""Network stack (transport/session/client) for EventSub WebSocket sessions."""

from eventsub.network.backoff import ReconnectPolicy
from eventsub.network.client import EventSubClient
from eventsub.network.router import NotificationRouter
from eventsub.network.session_state import (
    ConnectionState,
    InvalidTransition,
    SessionSnapshot,
    SessionTracker,
)
from eventsub.network.transport.base import BaseTransport, TransportNotReady
from eventsub.network.transport.dummy import DummyTransport
from eventsub.network.transport.websocket import WebSocketTransport

__all__ = [
    "EventSubClient",
    "NotificationRouter",
    "ReconnectPolicy",
    "ConnectionState",
    "InvalidTransition",
    "SessionSnapshot",
    "SessionTracker",
    "BaseTransport",
    "TransportNotReady",
    "DummyTransport",
    "WebSocketTransport",
]
