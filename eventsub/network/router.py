"""Routes EventSub notifications to handlers by subscription type."""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, Dict, List, Optional

from eventsub.models.events import Notification

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None] | None]


class NotificationRouter:
    """Notification listener that fans out on ``subscription_type``.

    Subscription types are matched case-insensitively. With ``unwrap_event``
    handlers receive the inner ``payload.event`` mapping instead of the whole
    :class:`Notification`.
    """

    def __init__(self, *, unwrap_event: bool = False) -> None:
        self._unwrap_event = unwrap_event
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def register(self, subscription_type: str, handler: Handler) -> None:
        LOGGER.debug("Registering handler for %s: %s", subscription_type, handler)
        self._handlers[subscription_type.lower()].append(handler)

    def unregister(self, subscription_type: str, handler: Handler) -> None:
        handlers = self._handlers.get(subscription_type.lower(), [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, subscription_type: Optional[str]) -> List[Handler]:
        if not subscription_type:
            return []
        return list(self._handlers.get(subscription_type.lower(), []))

    async def __call__(self, notification: Notification) -> None:
        subscription_type = notification.subscription_type
        handlers = self.handlers_for(subscription_type)
        if not handlers:
            LOGGER.debug("No handler registered for %s", subscription_type)
            return
        argument: Any = notification
        if self._unwrap_event:
            argument = notification.envelope.payload.event or {}
        for handler in handlers:
            try:
                result = handler(argument)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                LOGGER.exception("Handler error for %s", subscription_type)
