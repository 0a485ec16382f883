import pytest

from dayflow_tools.workspace.errors import RateLimitExceededError
from dayflow_tools.workspace.ratelimit import RateLimiter


class _Monotonic:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_window_allows_up_to_limit_then_blocks():
    clock = _Monotonic()
    limiter = RateLimiter(window_seconds=60, max_requests=3, clock=clock)

    decisions = [limiter.check("user-1") for _ in range(3)]
    assert [d.remaining for d in decisions] == [2, 1, 0]
    assert all(d.allowed for d in decisions)

    with pytest.raises(RateLimitExceededError) as exc:
        limiter.enforce("user-1")
    assert exc.value.retry_after == pytest.approx(60)

    # Other keys have their own window.
    assert limiter.enforce("10.0.0.1").allowed


def test_window_resets_after_expiry_and_prune_drops_stale_keys():
    clock = _Monotonic()
    limiter = RateLimiter(window_seconds=10, max_requests=1, clock=clock)

    limiter.enforce("a")
    limiter.enforce("b")
    with pytest.raises(RateLimitExceededError):
        limiter.enforce("a")

    clock.now += 10
    assert limiter.enforce("a").allowed
    assert len(limiter) == 2

    assert limiter.prune() == 1
    assert len(limiter) == 1
