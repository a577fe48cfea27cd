"""Reconnect delay policy."""

from __future__ import annotations

import random
from dataclasses import dataclass

from eventsub.config import EventSubSettings


@dataclass(frozen=True)
class ReconnectPolicy:
    """Bounded exponential backoff with multiplicative jitter."""

    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.2

    @classmethod
    def from_settings(cls, settings: EventSubSettings) -> "ReconnectPolicy":
        return cls(
            base_delay=float(settings.reconnect_base_delay_seconds),
            max_delay=float(settings.reconnect_max_delay_seconds),
            jitter=float(settings.reconnect_jitter),
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based). Zero for a first try."""

        if attempt <= 0:
            return 0.0
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if self.jitter:
            delay *= random.uniform(1 - self.jitter, 1 + self.jitter)
        return max(0.0, min(self.max_delay, delay))
