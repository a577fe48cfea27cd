from .envelope import (
    Envelope,
    EnvelopeMetadata,
    EnvelopePayload,
    SessionInfo,
    SubscriptionInfo,
    SubscriptionTransport,
)
from .events import (
    ClassifiedEvent,
    MessageKind,
    Notification,
    Reconnect,
    Revocation,
    SessionKeepalive,
    SessionWelcome,
    Unknown,
)

__all__ = [
    "Envelope",
    "EnvelopeMetadata",
    "EnvelopePayload",
    "SessionInfo",
    "SubscriptionInfo",
    "SubscriptionTransport",
    "ClassifiedEvent",
    "MessageKind",
    "Notification",
    "Reconnect",
    "Revocation",
    "SessionKeepalive",
    "SessionWelcome",
    "Unknown",
]
