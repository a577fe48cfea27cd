"""EventSub client configuration loading and validation."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, Iterator, Literal, Optional

import yaml
from pydantic import AnyUrl, Field, NonNegativeInt, PositiveFloat, PositiveInt, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

DEFAULT_EVENTSUB_URL = "wss://eventsub.wss.twitch.tv/ws"
CONFIG_FILE_ENV = "EVENTSUB_CONFIG_FILE"

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("/etc/eventsub/client.yaml"),
    Path("/etc/eventsub/client.yml"),
    Path("./config/eventsub.yaml"),
    Path("./config/eventsub.yml"),
)


class EventSubSettings(BaseSettings):
    """Validated settings for the EventSub session client."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="EVENTSUB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Endpoint
    default_url: AnyUrl = Field(
        default=DEFAULT_EVENTSUB_URL,
        description="Default EventSub WebSocket endpoint, also used when a reconnect carries no URL.",
    )
    transport: Literal["dummy", "websocket"] = Field(
        default="websocket",
        description="Transport implementation to use.",
    )
    connect_timeout_seconds: PositiveFloat = Field(
        default=10.0,
        description="Seconds allowed for the transport handshake.",
    )
    welcome_timeout_seconds: PositiveFloat = Field(
        default=10.0,
        description="Seconds to wait for session_welcome after the transport is open.",
    )

    # Keepalive
    keepalive_grace_factor: PositiveFloat = Field(
        default=1.5,
        description="Multiplier applied to the advertised keepalive timeout before the watchdog fires.",
    )

    # Reconnect policy
    reconnect_base_delay_seconds: PositiveFloat = Field(
        default=1.0,
        description="Base delay for reconnection backoff.",
    )
    reconnect_max_delay_seconds: PositiveFloat = Field(
        default=30.0,
        description="Maximum delay for reconnection backoff.",
    )
    reconnect_jitter: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Jitter factor applied to reconnection backoff (0.0-1.0).",
    )
    max_reconnect_attempts: PositiveInt = Field(
        default=8,
        description="Consecutive failed connection attempts tolerated before giving up.",
    )
    stable_session_seconds: PositiveFloat = Field(
        default=30.0,
        description="A session lost sooner than this after its welcome is redialled with backoff.",
    )

    # Delivery
    dedupe_window_size: NonNegativeInt = Field(
        default=0,
        description="Number of recent notification message ids remembered for de-duplication (0 disables).",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level for the client process.",
    )
    config_path: Optional[Path] = Field(
        default=None,
        description="Config file the settings were read from, if any.",
        exclude=True,
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @property
    def default_endpoint(self) -> str:
        return str(self.default_url)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[Any, ...]:
        # File values sit between explicit kwargs and the environment.
        return init_settings, config_file_source, env_settings, dotenv_settings, file_secret_settings


def _config_candidates() -> Iterator[Path]:
    explicit = os.getenv(CONFIG_FILE_ENV)
    if explicit:
        yield Path(explicit).expanduser()
    yield from DEFAULT_CONFIG_LOCATIONS


def read_config_file(path: Path) -> Optional[Dict[str, Any]]:
    """Parse one YAML or JSON config file.

    Returns ``None`` when ``path`` is missing or has an unsupported suffix and
    an empty mapping for an empty file. Unreadable or invalid files raise.
    """

    loader = _LOADERS.get(path.suffix.lower())
    if loader is None or not path.is_file():
        return None
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RuntimeError(f"Cannot read EventSub config {path}") from exc
    try:
        content = loader(text)
    except (yaml.YAMLError, ValueError) as exc:
        raise ValueError(f"EventSub config {path} is not valid {path.suffix[1:]}") from exc
    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ValueError(f"EventSub config {path} must be a mapping, got {type(content).__name__}")
    return content


def config_file_source() -> Dict[str, Any]:
    """Settings source yielding the first config file found, tagged with its path."""

    for candidate in _config_candidates():
        content = read_config_file(candidate)
        if content is not None:
            return {"config_path": candidate, **content}
    return {}


_LOADERS: Dict[str, Callable[[str], Any]] = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json.loads,
}


@lru_cache(maxsize=1)
def get_settings() -> EventSubSettings:
    """Process-wide settings, read once."""

    return EventSubSettings()
