"""WebSocket transport implementation."""

from __future__ import annotations

import logging
from typing import Optional

from websockets.asyncio.client import ClientConnection, connect

from eventsub.config import EventSubSettings
from eventsub.network.transport.base import BaseTransport, Frame, TransportNotReady

LOGGER = logging.getLogger(__name__)


class WebSocketTransport(BaseTransport):
    """WebSocket-based EventSub stream."""

    def __init__(self, settings: EventSubSettings, url: str) -> None:
        super().__init__(url)
        self._settings = settings
        self._ws: Optional[ClientConnection] = None

    async def connect(self) -> None:
        LOGGER.info("Connecting to EventSub WebSocket at %s", self.url)
        self._ws = await connect(self.url, open_timeout=self._settings.connect_timeout_seconds)

    async def receive(self) -> Frame:
        if not self._ws:
            raise TransportNotReady("WebSocket transport not connected")
        raw = await self._ws.recv()
        LOGGER.debug("WebSocket receive: %s", raw)
        return raw

    async def close(self) -> None:
        if self._ws:
            LOGGER.info("Closing WebSocket transport to %s", self.url)
            ws = self._ws
            self._ws = None
            await ws.close()
