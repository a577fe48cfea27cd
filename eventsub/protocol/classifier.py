"""Classification of raw EventSub frames into typed events.

``classify`` is pure: it performs no I/O, keeps no state and never raises.
Anything it cannot interpret comes back as :class:`Unknown` with a short reason
(``decode-error``, ``malformed`` or ``unrecognized-type:<value>``).
"""

from __future__ import annotations

import json
from typing import Any, Optional, Union

from pydantic import ValidationError

from eventsub.models.envelope import Envelope
from eventsub.models.events import (
    ClassifiedEvent,
    MessageKind,
    Notification,
    Reconnect,
    Revocation,
    SessionKeepalive,
    SessionWelcome,
    Unknown,
)

DECODE_ERROR = "decode-error"
MALFORMED = "malformed"
UNRECOGNIZED_PREFIX = "unrecognized-type:"


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value if value.strip() else None


def decode_envelope(raw: Union[str, bytes, bytearray]) -> Union[Envelope, Unknown]:
    """Decode raw frame text into an :class:`Envelope` or an :class:`Unknown` reason."""

    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = bytes(raw).decode("utf-8")
        data: Any = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError, TypeError):
        return Unknown(DECODE_ERROR)
    if not isinstance(data, dict) or not isinstance(data.get("metadata"), dict):
        return Unknown(MALFORMED)
    try:
        envelope = Envelope.model_validate(data)
    except ValidationError:
        return Unknown(MALFORMED)
    if not envelope.message_type.strip():
        return Unknown(MALFORMED)
    return envelope


def classify_envelope(envelope: Envelope) -> ClassifiedEvent:
    kind = MessageKind.from_wire(envelope.message_type)
    if kind is None:
        return Unknown(f"{UNRECOGNIZED_PREFIX}{envelope.message_type}")

    session = envelope.payload.session
    if kind is MessageKind.SESSION_WELCOME:
        return SessionWelcome(
            session_id=(session.id if session and session.id else ""),
            keepalive_timeout_seconds=session.keepalive_timeout_seconds if session else None,
            envelope=envelope,
        )
    if kind is MessageKind.SESSION_KEEPALIVE:
        return SessionKeepalive(envelope=envelope)
    if kind is MessageKind.NOTIFICATION:
        return Notification(envelope=envelope)
    if kind is MessageKind.RECONNECT:
        return Reconnect(
            reconnect_url=_blank_to_none(session.reconnect_url) if session else None,
            requires_disconnect=True,
            envelope=envelope,
        )
    subscription = envelope.payload.subscription
    return Revocation(
        subscription_id=_blank_to_none(subscription.id) if subscription else None,
        status=_blank_to_none(subscription.status) if subscription else None,
        envelope=envelope,
    )


def classify(raw: Union[str, bytes, bytearray]) -> ClassifiedEvent:
    """Classify one inbound frame."""

    try:
        decoded = decode_envelope(raw)
        if isinstance(decoded, Unknown):
            return decoded
        return classify_envelope(decoded)
    except Exception:  # noqa: BLE001
        return Unknown(DECODE_ERROR)
