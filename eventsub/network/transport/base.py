"""Transport abstractions for EventSub streams."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Union

Frame = Union[str, bytes]


class TransportNotReady(RuntimeError):
    """Raised when stream IO is invoked without an established connection."""


class BaseTransport(ABC):
    """One physical, receive-only message stream to ``url``.

    Instances are single use: the client builds a fresh transport for every
    connection generation and closes it when that generation ends.
    """

    def __init__(self, url: str) -> None:
        self.url = url

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def receive(self) -> Frame:
        """Return the next complete frame, raising once the stream is gone."""

    @abstractmethod
    async def close(self) -> None:
        ...
