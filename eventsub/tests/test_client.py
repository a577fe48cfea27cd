import asyncio
import json

import pytest

from eventsub.network.client import EventSubClient
from eventsub.network.session_state import ConnectionState
from eventsub.network.transport.dummy import build_frame
from eventsub.tests.support import DEFAULT_URL, TransportRecorder, make_client, make_settings, wait_for


def _notification_frame(message_id: str, subscription_type: str = "channel.follow") -> str:
    return build_frame(
        "notification",
        {"subscription": {"id": "sub-1", "type": subscription_type}, "event": {"user_name": "viewer"}},
        message_id=message_id,
        subscription_type=subscription_type,
    )


def _reconnect_frame(url) -> str:
    return build_frame("reconnect", {"session": {"id": "s-1", "status": "reconnecting", "reconnect_url": url}})


class _Recorded:
    def __init__(self, client) -> None:
        self.welcomes = []
        self.notifications = []
        self.revocations = []
        self.disconnects = 0
        client.add_session_welcome_listener(self.welcomes.append)
        client.add_notification_listener(lambda n: self.notifications.append(n.message_id))
        client.add_revocation_listener(self.revocations.append)
        client.add_disconnected_listener(self._on_disconnected)

    def _on_disconnected(self) -> None:
        self.disconnects += 1


@pytest.mark.asyncio
async def test_connect_reaches_live_session():
    recorder = TransportRecorder(["s-1"])
    client = make_client(recorder)
    seen = _Recorded(client)
    try:
        assert await client.connect() is True

        assert client.state is ConnectionState.LIVE
        assert client.session_id == "s-1"
        assert client.is_connected is True
        assert client.keepalive_timeout_seconds == 10
        assert client.last_keepalive_time is not None
        assert client.connection_generation == 1
        assert recorder.urls == [DEFAULT_URL]
        assert seen.welcomes == ["s-1"]
        assert seen.disconnects == 0
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_connect_while_live_is_ignored():
    recorder = TransportRecorder(["s-1", "s-2"])
    client = make_client(recorder)
    try:
        assert await client.connect()
        assert await client.connect()

        assert len(recorder.created) == 1
        assert client.session_id == "s-1"
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_notifications_reach_listeners_in_order():
    recorder = TransportRecorder(["s-1"])
    client = make_client(recorder)
    order = []

    def failing(notification):
        order.append(("failing", notification.message_id))
        raise RuntimeError("listener bug")

    async def async_listener(notification):
        order.append(("async", notification.message_id))

    client.add_notification_listener(failing)
    client.add_notification_listener(async_listener)
    try:
        await client.connect()
        stream = recorder.created[0]
        stream.feed(_notification_frame("m-1"))
        stream.feed(_notification_frame("m-2"))

        assert await wait_for(lambda: len(order) == 4)
        assert order == [("failing", "m-1"), ("async", "m-1"), ("failing", "m-2"), ("async", "m-2")]
        assert client.state is ConnectionState.LIVE
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_removed_listener_is_not_called():
    recorder = TransportRecorder(["s-1"])
    client = make_client(recorder)
    seen = []
    client.add_notification_listener(seen.append)
    client.remove_notification_listener(seen.append)
    client.remove_notification_listener(seen.append)
    marker = _Recorded(client)
    try:
        await client.connect()
        recorder.created[0].feed(_notification_frame("m-1"))

        assert await wait_for(lambda: marker.notifications == ["m-1"])
        assert seen == []
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_unparseable_frames_are_skipped():
    recorder = TransportRecorder(["s-1"])
    client = make_client(recorder)
    seen = _Recorded(client)
    try:
        await client.connect()
        stream = recorder.created[0]
        stream.feed("not json")
        stream.feed(json.dumps({"metadata": {"message_type": "bogus"}}))
        stream.feed(_notification_frame("m-1"))

        assert await wait_for(lambda: seen.notifications == ["m-1"])
        assert client.session_id == "s-1"
        assert client.state is ConnectionState.LIVE
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_revocation_is_delivered():
    recorder = TransportRecorder(["s-1"])
    client = make_client(recorder)
    seen = _Recorded(client)
    try:
        await client.connect()
        recorder.created[0].feed(
            build_frame(
                "revocation",
                {"subscription": {"id": "sub-7", "status": "user_removed", "type": "channel.follow"}},
            )
        )

        assert await wait_for(lambda: len(seen.revocations) == 1)
        assert seen.revocations[0].subscription_id == "sub-7"
        assert seen.revocations[0].status == "user_removed"
        assert client.is_connected is True
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_server_reconnect_swaps_to_new_url():
    recorder = TransportRecorder(["s-1", "s-2"])
    client = make_client(recorder)
    seen = _Recorded(client)
    try:
        await client.connect()
        old = recorder.created[0]
        old.feed(_reconnect_frame("wss://eventsub.test/reconnect"))

        assert await wait_for(lambda: client.session_id == "s-2")
        assert await wait_for(lambda: client.state is ConnectionState.LIVE)
        assert recorder.urls == [DEFAULT_URL, "wss://eventsub.test/reconnect"]
        assert old.closed is True
        assert seen.welcomes == ["s-1", "s-2"]
        assert seen.disconnects == 0

        old.feed(_notification_frame("m-old"))
        recorder.created[1].feed(_notification_frame("m-new"))

        assert await wait_for(lambda: seen.notifications == ["m-new"])
        await asyncio.sleep(0.02)
        assert seen.notifications == ["m-new"]
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_old_stream_keeps_delivering_until_replacement_welcomes():
    recorder = TransportRecorder(["s-1"])
    client = make_client(recorder)
    seen = _Recorded(client)
    try:
        await client.connect()
        old = recorder.created[0]
        old.feed(_reconnect_frame("wss://eventsub.test/reconnect"))
        assert await wait_for(lambda: len(recorder.created) == 2)

        old.feed(_notification_frame("m-during-swap"))

        assert await wait_for(lambda: seen.notifications == ["m-during-swap"])
        assert client.session_id == "s-1"
        assert client.state is ConnectionState.RECONNECTING
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_silent_stream_triggers_reconnect_to_default_url():
    recorder = TransportRecorder(["s-1", "s-2"], keepalive_timeout_seconds=1)
    client = make_client(recorder, keepalive_grace_factor=0.2)
    seen = _Recorded(client)
    try:
        await client.connect()

        assert await wait_for(lambda: seen.welcomes == ["s-1", "s-2"])
        assert recorder.urls[:2] == [DEFAULT_URL, DEFAULT_URL]
        assert recorder.created[0].closed is True
        assert seen.disconnects == 0
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_keepalives_hold_the_session_open():
    recorder = TransportRecorder(["s-1", "s-2"], keepalive_timeout_seconds=1)
    client = make_client(recorder, keepalive_grace_factor=0.3)
    try:
        await client.connect()
        stream = recorder.created[0]
        for _ in range(6):
            stream.feed(build_frame("session_keepalive"))
            await asyncio.sleep(0.03)

        assert len(recorder.created) == 1
        assert client.session_id == "s-1"
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_read_error_reconnects():
    recorder = TransportRecorder(["s-1", "s-2"])
    client = make_client(recorder)
    seen = _Recorded(client)
    try:
        await client.connect()
        recorder.created[0].fail(ConnectionResetError("peer went away"))

        assert await wait_for(lambda: client.session_id == "s-2")
        assert recorder.urls == [DEFAULT_URL, DEFAULT_URL]
        assert seen.disconnects == 0
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_refused_connects_are_retried():
    recorder = TransportRecorder(["s-1"], refuse_connects=2)
    client = make_client(recorder)
    try:
        assert await client.connect() is True

        assert len(recorder.created) == 3
        assert client.session_id == "s-1"
        assert client.status().consecutive_failures == 0
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_retry_exhaustion_closes_session():
    recorder = TransportRecorder(refuse_connects=10)
    client = make_client(recorder, max_reconnect_attempts=3)
    seen = _Recorded(client)
    try:
        assert await client.connect() is False

        assert len(recorder.created) == 3
        assert client.state is ConnectionState.CLOSED
        assert client.is_connected is False
        assert seen.disconnects == 1
    finally:
        await client.disconnect()
    assert seen.disconnects == 1


@pytest.mark.asyncio
async def test_missing_welcome_counts_as_failed_attempt():
    recorder = TransportRecorder()
    client = make_client(recorder, welcome_timeout_seconds=0.05, max_reconnect_attempts=2)
    seen = _Recorded(client)
    try:
        assert await client.connect() is False

        assert len(recorder.created) == 2
        assert all(transport.closed for transport in recorder.created)
        assert seen.disconnects == 1
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_disconnect_is_idempotent():
    recorder = TransportRecorder(["s-1"])
    client = make_client(recorder)
    seen = _Recorded(client)
    await client.connect()

    await client.disconnect()
    await client.disconnect()

    assert client.state is ConnectionState.CLOSED
    assert client.session_id is None
    assert client.is_connected is False
    assert recorder.created[0].closed is True
    assert seen.disconnects == 1


@pytest.mark.asyncio
async def test_disconnect_from_listener():
    recorder = TransportRecorder(["s-1"])
    client = make_client(recorder)
    seen = _Recorded(client)

    async def stop_on_first(notification):
        await client.disconnect()

    client.add_notification_listener(stop_on_first)
    try:
        await client.connect()
        recorder.created[0].feed(_notification_frame("m-1"))

        assert await wait_for(lambda: client.state is ConnectionState.CLOSED)
        assert seen.disconnects == 1
        assert recorder.created[0].closed is True
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_reconnect_after_disconnect():
    recorder = TransportRecorder(["s-1", "s-2"])
    client = make_client(recorder)
    try:
        await client.connect()
        await client.disconnect()

        assert await client.connect() is True
        assert client.session_id == "s-2"
        assert client.connection_generation == 2
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_force_reconnect_builds_fresh_session():
    recorder = TransportRecorder(["s-1", "s-2"])
    client = make_client(recorder)
    seen = _Recorded(client)
    try:
        await client.connect()

        assert await client.force_reconnect() is True

        assert client.session_id == "s-2"
        assert recorder.created[0].closed is True
        assert seen.welcomes == ["s-1", "s-2"]
        assert seen.disconnects == 1
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_duplicate_notifications_dropped_when_enabled():
    recorder = TransportRecorder(["s-1"])
    client = make_client(recorder, dedupe_window_size=2)
    seen = _Recorded(client)
    try:
        await client.connect()
        stream = recorder.created[0]
        for message_id in ("m-1", "m-1", "m-2", "m-3", "m-1"):
            stream.feed(_notification_frame(message_id))

        assert await wait_for(lambda: len(seen.notifications) == 4)
        await asyncio.sleep(0.02)
        assert seen.notifications == ["m-1", "m-2", "m-3", "m-1"]
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_duplicates_pass_through_by_default():
    recorder = TransportRecorder(["s-1"])
    client = make_client(recorder)
    seen = _Recorded(client)
    try:
        await client.connect()
        stream = recorder.created[0]
        stream.feed(_notification_frame("m-1"))
        stream.feed(_notification_frame("m-1"))

        assert await wait_for(lambda: seen.notifications == ["m-1", "m-1"])
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_status_reports_keepalive_age():
    recorder = TransportRecorder(["s-1"])
    client = make_client(recorder)
    try:
        await client.connect()
        await asyncio.sleep(0.02)

        status = client.status()

        assert status.state is ConnectionState.LIVE
        assert status.session_id == "s-1"
        assert status.is_connected is True
        assert status.active_generation == 1
        assert status.pending_generation is None
        assert status.keepalive_age_seconds is not None
        assert status.keepalive_age_seconds >= 0.01
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_wait_until_connected():
    recorder = TransportRecorder(["s-1"])
    client = make_client(recorder)
    try:
        assert await client.wait_until_connected(timeout=0.01) is False

        await client.connect()

        assert await client.wait_until_connected(timeout=0.01) is True
    finally:
        await client.disconnect()
    assert await client.wait_until_connected(timeout=0.01) is False


@pytest.mark.asyncio
async def test_refused_reconnect_retries_supplied_url():
    recorder = TransportRecorder(["s-1", "s-2"])
    client = make_client(recorder)
    seen = _Recorded(client)
    try:
        await client.connect()
        recorder.refuse_connects = 1
        recorder.created[0].feed(_reconnect_frame("wss://eventsub.test/reconnect"))

        assert await wait_for(lambda: client.session_id == "s-2")
        assert recorder.urls == [DEFAULT_URL, "wss://eventsub.test/reconnect", "wss://eventsub.test/reconnect"]
        assert recorder.created[0].closed is True
        assert seen.disconnects == 0
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_blank_keepalive_timeout_still_welcomes():
    recorder = TransportRecorder()

    def factory(settings, url):
        transport = recorder(settings, url)
        transport.feed(
            build_frame(
                "session_welcome",
                {"session": {"id": "s-blank", "keepalive_timeout_seconds": "", "connected_at": ""}},
            )
        )
        return transport

    client = EventSubClient(settings=make_settings(), transport_factory=factory)
    try:
        assert await client.connect() is True
        assert client.session_id == "s-blank"
        assert client.keepalive_timeout_seconds is None
    finally:
        await client.disconnect()
