import asyncio
from typing import List, Optional

from eventsub.config import EventSubSettings
from eventsub.network.client import EventSubClient
from eventsub.network.transport.dummy import DummyTransport, welcome_frame

DEFAULT_URL = "wss://eventsub.test/ws"


class _RefusingTransport(DummyTransport):
    async def connect(self) -> None:
        raise OSError("connection refused")


class TransportRecorder:
    """Transport factory that remembers every stream the client opens.

    ``session_ids`` greets the next streams with a welcome, in order.
    ``refuse_connects`` makes that many connection attempts fail first.
    """

    def __init__(
        self,
        session_ids: Optional[List[str]] = None,
        *,
        keepalive_timeout_seconds: int = 10,
        refuse_connects: int = 0,
    ) -> None:
        self.session_ids = list(session_ids or [])
        self.keepalive_timeout_seconds = keepalive_timeout_seconds
        self.refuse_connects = refuse_connects
        self.created: List[DummyTransport] = []

    @property
    def urls(self) -> List[str]:
        return [transport.url for transport in self.created]

    def __call__(self, settings: EventSubSettings, url: str) -> DummyTransport:
        if self.refuse_connects > 0:
            self.refuse_connects -= 1
            transport: DummyTransport = _RefusingTransport(settings, url)
        else:
            transport = DummyTransport(settings, url)
            if self.session_ids:
                transport.feed(welcome_frame(self.session_ids.pop(0), self.keepalive_timeout_seconds))
        self.created.append(transport)
        return transport


async def wait_for(predicate, *, timeout: float = 1.0, interval: float = 0.005) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


def make_settings(**overrides) -> EventSubSettings:
    values = dict(
        default_url=DEFAULT_URL,
        reconnect_base_delay_seconds=0.01,
        reconnect_max_delay_seconds=0.02,
        reconnect_jitter=0.0,
        welcome_timeout_seconds=1.0,
        connect_timeout_seconds=1.0,
        max_reconnect_attempts=3,
    )
    values.update(overrides)
    return EventSubSettings(**values)


def make_client(recorder: TransportRecorder, **overrides) -> EventSubClient:
    return EventSubClient(settings=make_settings(**overrides), transport_factory=recorder)
