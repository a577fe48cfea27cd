"""EventSub client bootstrap entrypoint."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Optional, Type

from eventsub.config import EventSubSettings, get_settings
from eventsub.models.events import Notification, Revocation
from eventsub.network.client import EventSubClient
from eventsub.network.router import NotificationRouter
from eventsub.network.transport.base import BaseTransport
from eventsub.network.transport.dummy import DummyTransport
from eventsub.network.transport.websocket import WebSocketTransport

LOGGER = logging.getLogger(__name__)


def build_client(
    settings: Optional[EventSubSettings] = None,
    router: Optional[NotificationRouter] = None,
) -> EventSubClient:
    """Construct a client wired to the configured transport."""

    settings = settings or get_settings()
    resolved_cls: Type[BaseTransport]
    if settings.transport == "websocket":
        resolved_cls = WebSocketTransport
    else:
        resolved_cls = DummyTransport
    LOGGER.debug("Initialising EventSub client via %s", resolved_cls.__name__)

    if resolved_cls is DummyTransport:
        def factory(s: EventSubSettings, url: str) -> BaseTransport:
            return DummyTransport(s, url, greet=True)
    else:
        def factory(s: EventSubSettings, url: str) -> BaseTransport:
            return WebSocketTransport(s, url)

    client = EventSubClient(settings=settings, transport_factory=factory)
    if router is not None:
        client.add_notification_listener(router)
    return client


def _log_notification(notification: Notification) -> None:
    LOGGER.info(
        "Notification %s (%s)",
        notification.message_id,
        notification.subscription_type or "unknown subscription",
    )


def _log_revocation(revocation: Revocation) -> None:
    LOGGER.warning("Revocation for subscription %s (%s)", revocation.subscription_id, revocation.status)


async def run_forever(settings: Optional[EventSubSettings] = None) -> None:
    """Connect and keep the session alive until cancelled or signalled."""

    client = build_client(settings)
    client.add_notification_listener(_log_notification)
    client.add_revocation_listener(_log_revocation)

    stop = asyncio.Event()
    client.add_disconnected_listener(stop.set)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)

    try:
        if not await client.connect():
            LOGGER.error("EventSub session could not be established")
            return
        await stop.wait()
    finally:
        await client.disconnect()


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    asyncio.run(run_forever(settings))


if __name__ == "__main__":
    main()
