import time
from unittest.mock import patch

from reelstream.utils.rate_limiter import LoginThrottle


def fail(throttle, key, times):
    for _ in range(times):
        throttle.record_failure(key)


def test_under_limit():
    throttle = LoginThrottle(max_attempts=5, window_seconds=60)
    fail(throttle, "a@b.com", 4)
    assert throttle.is_blocked("a@b.com") is False


def test_at_limit():
    throttle = LoginThrottle(max_attempts=5, window_seconds=60)
    fail(throttle, "a@b.com", 5)
    assert throttle.is_blocked("a@b.com") is True


def test_independent_keys():
    throttle = LoginThrottle(max_attempts=2, window_seconds=60)
    fail(throttle, "a@b.com", 2)
    assert throttle.is_blocked("a@b.com") is True
    assert throttle.is_blocked("c@d.com") is False


def test_window_expiry():
    throttle = LoginThrottle(max_attempts=3, window_seconds=60)
    base = time.monotonic()

    with patch("reelstream.utils.rate_limiter.time") as mock_time:
        mock_time.monotonic.return_value = base
        fail(throttle, "a@b.com", 3)
        assert throttle.is_blocked("a@b.com") is True

        # Advance past the 60s window
        mock_time.monotonic.return_value = base + 61
        assert throttle.is_blocked("a@b.com") is False


def test_failures_slide_out_one_by_one():
    throttle = LoginThrottle(max_attempts=2, window_seconds=60)
    base = time.monotonic()

    with patch("reelstream.utils.rate_limiter.time") as mock_time:
        mock_time.monotonic.return_value = base
        throttle.record_failure("a@b.com")
        mock_time.monotonic.return_value = base + 30
        throttle.record_failure("a@b.com")
        assert throttle.is_blocked("a@b.com") is True

        mock_time.monotonic.return_value = base + 61
        assert throttle.is_blocked("a@b.com") is False
        throttle.record_failure("a@b.com")
        assert throttle.is_blocked("a@b.com") is True


def test_clear():
    throttle = LoginThrottle(max_attempts=2, window_seconds=60)
    fail(throttle, "a@b.com", 2)
    throttle.clear("a@b.com")
    assert throttle.is_blocked("a@b.com") is False


def test_reset():
    throttle = LoginThrottle(max_attempts=2, window_seconds=60)
    fail(throttle, "a@b.com", 2)
    fail(throttle, "c@d.com", 2)
    throttle.reset()
    assert throttle.is_blocked("a@b.com") is False
    assert throttle.is_blocked("c@d.com") is False
