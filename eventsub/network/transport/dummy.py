"""In-memory transport for offline runs and tests."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Union

from eventsub.network.transport.base import BaseTransport, Frame, TransportNotReady

LOGGER = logging.getLogger(__name__)


def build_frame(
    message_type: str,
    payload: Optional[dict[str, Any]] = None,
    *,
    message_id: Optional[str] = None,
    subscription_type: Optional[str] = None,
) -> str:
    """Serialise a wire envelope the way the platform sends it."""

    metadata: dict[str, Any] = {
        "message_id": message_id or str(uuid.uuid4()),
        "message_type": message_type,
        "message_timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if subscription_type:
        metadata["subscription_type"] = subscription_type
        metadata["subscription_version"] = "1"
    return json.dumps({"metadata": metadata, "payload": payload or {}})


def welcome_frame(session_id: str, keepalive_timeout_seconds: int = 10) -> str:
    return build_frame(
        "session_welcome",
        {
            "session": {
                "id": session_id,
                "status": "connected",
                "keepalive_timeout_seconds": keepalive_timeout_seconds,
                "reconnect_url": None,
                "connected_at": datetime.now(timezone.utc).isoformat(),
            }
        },
    )


class DummyTransport(BaseTransport):
    """Queue-backed stream: frames and failures are fed in by the owner.

    With ``greet=True`` the stream opens with a synthetic ``session_welcome``
    so a client can reach the live state without a network.
    """

    def __init__(self, settings=None, url: str = "dummy://eventsub", *, greet: bool = False) -> None:
        super().__init__(url)
        self._settings = settings
        self._inbox: asyncio.Queue[Union[Frame, BaseException]] = asyncio.Queue()
        self.connected = False
        self.closed = False
        if greet:
            self.feed(welcome_frame(f"dummy-{uuid.uuid4().hex[:12]}"))

    def feed(self, frame: Frame) -> None:
        self._inbox.put_nowait(frame)

    def fail(self, exc: BaseException) -> None:
        """Make the next ``receive`` raise ``exc`` after queued frames drain."""

        self._inbox.put_nowait(exc)

    async def connect(self) -> None:
        LOGGER.debug("Dummy transport connect() to %s", self.url)
        self.connected = True

    async def receive(self) -> Frame:
        if not self.connected or self.closed:
            raise TransportNotReady("Dummy transport not connected")
        item = await self._inbox.get()
        if isinstance(item, BaseException):
            raise item
        LOGGER.debug("Dummy transport receive(): %s", item)
        return item

    async def close(self) -> None:
        LOGGER.debug("Dummy transport close() for %s", self.url)
        self.closed = True
