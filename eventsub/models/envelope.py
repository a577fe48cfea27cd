from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Timestamps arrive with nanosecond precision; datetime holds microseconds.
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _parse_timestamp(value: Any) -> Any:
    value = _blank_to_none(value)
    if isinstance(value, str):
        return _FRACTION_RE.sub(r"\1", value, count=1)
    return value


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class EnvelopeMetadata(_WireModel):
    """Metadata block present on every EventSub WebSocket message."""

    message_id: str = Field(default="", validation_alias=AliasChoices("message_id", "messageId"))
    message_type: str = Field(validation_alias=AliasChoices("message_type", "messageType"))
    message_timestamp: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("message_timestamp", "messageTimestamp"),
    )
    subscription_type: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("subscription_type", "subscriptionType"),
    )
    subscription_version: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("subscription_version", "subscriptionVersion"),
    )

    _timestamp = field_validator("message_timestamp", mode="before")(_parse_timestamp)
    _optional_text = field_validator("subscription_type", "subscription_version", mode="before")(_blank_to_none)


class SessionInfo(_WireModel):
    id: Optional[str] = None
    status: Optional[str] = None
    keepalive_timeout_seconds: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("keepalive_timeout_seconds", "keepaliveTimeoutSeconds"),
    )
    reconnect_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("reconnect_url", "reconnectUrl"),
    )
    connected_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("connected_at", "connectedAt"),
    )

    _timestamp = field_validator("connected_at", mode="before")(_parse_timestamp)
    _optional_number = field_validator("keepalive_timeout_seconds", mode="before")(_blank_to_none)


class SubscriptionTransport(_WireModel):
    method: Optional[str] = None
    session_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("session_id", "sessionId"))


class SubscriptionInfo(_WireModel):
    """Subscription descriptor carried by notification and revocation messages."""

    id: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None
    version: Optional[str] = None
    cost: Optional[int] = None
    condition: Dict[str, Any] = Field(default_factory=dict)
    transport: Optional[SubscriptionTransport] = None
    created_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("created_at", "createdAt"))

    _timestamp = field_validator("created_at", mode="before")(_parse_timestamp)
    _optional_number = field_validator("cost", mode="before")(_blank_to_none)


class EnvelopePayload(_WireModel):
    session: Optional[SessionInfo] = None
    subscription: Optional[SubscriptionInfo] = None
    event: Optional[Dict[str, Any]] = None


class Envelope(_WireModel):
    """Top-level decoded EventSub message. Immutable once parsed."""

    metadata: EnvelopeMetadata
    payload: EnvelopePayload = Field(default_factory=EnvelopePayload)

    @field_validator("payload", mode="before")
    @classmethod
    def _null_payload(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def message_id(self) -> str:
        return self.metadata.message_id

    @property
    def message_type(self) -> str:
        return self.metadata.message_type

    @property
    def subscription_type(self) -> Optional[str]:
        """Subscription type from the metadata, falling back to the payload subscription."""

        if self.metadata.subscription_type:
            return self.metadata.subscription_type
        if self.payload.subscription is not None:
            return self.payload.subscription.type
        return None
