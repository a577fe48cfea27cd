import pytest

from eventsub.network.backoff import ReconnectPolicy
from eventsub.tests.support import make_settings


def test_first_attempt_has_no_delay():
    assert ReconnectPolicy(base_delay=1.0, max_delay=30.0, jitter=0.0).delay(0) == 0.0


def test_delay_doubles_until_capped():
    policy = ReconnectPolicy(base_delay=1.0, max_delay=5.0, jitter=0.0)

    assert [policy.delay(attempt) for attempt in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_jitter_stays_within_bounds():
    policy = ReconnectPolicy(base_delay=2.0, max_delay=30.0, jitter=0.5)

    delays = [policy.delay(2) for _ in range(50)]

    assert all(2.0 <= delay <= 6.0 for delay in delays)


def test_jitter_never_exceeds_cap():
    policy = ReconnectPolicy(base_delay=10.0, max_delay=10.0, jitter=1.0)

    assert all(0.0 <= policy.delay(3) <= 10.0 for _ in range(50))


def test_policy_from_settings():
    policy = ReconnectPolicy.from_settings(
        make_settings(reconnect_base_delay_seconds=0.5, reconnect_max_delay_seconds=4.0, reconnect_jitter=0.1)
    )

    assert policy == ReconnectPolicy(base_delay=0.5, max_delay=4.0, jitter=0.1)
    assert policy.delay(1) == pytest.approx(0.5, rel=0.11)
