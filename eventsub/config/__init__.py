"""Configuration primitives for the EventSub client."""

from .settings import DEFAULT_EVENTSUB_URL, EventSubSettings, get_settings

__all__ = ["DEFAULT_EVENTSUB_URL", "EventSubSettings", "get_settings"]
