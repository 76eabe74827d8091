import threading

import pytest

from limiter import UserRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_cap_then_reject():
    limiter = UserRateLimiter(cap=3, window=3600, clock=FakeClock())
    results = [limiter.check("alice") for _ in range(4)]
    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]


def test_window_reset():
    clock = FakeClock()
    limiter = UserRateLimiter(cap=2, window=3600, clock=clock)
    limiter.check("alice")
    limiter.check("alice")
    assert not limiter.check("alice").allowed
    clock.now += 3599
    assert not limiter.check("alice").allowed
    clock.now += 1
    result = limiter.check("alice")
    assert result.allowed
    assert result.remaining == 1


def test_users_are_independent():
    limiter = UserRateLimiter(cap=1, clock=FakeClock())
    assert limiter.check("alice").allowed
    assert not limiter.check("alice").allowed
    assert limiter.check("bob").allowed


def test_peek_does_not_consume():
    limiter = UserRateLimiter(cap=2, clock=FakeClock())
    assert limiter.peek("alice").remaining == 2
    limiter.check("alice")
    assert limiter.peek("alice").remaining == 1
    assert limiter.peek("alice").remaining == 1
    limiter.reset("alice")
    assert limiter.peek("alice").remaining == 2


def test_purge_expired():
    clock = FakeClock()
    limiter = UserRateLimiter(cap=5, window=60, clock=clock)
    limiter.check("alice")
    clock.now += 30
    limiter.check("bob")
    clock.now += 30
    assert limiter.purge_expired() == 1
    assert limiter.peek("bob").remaining == 4


def test_concurrent_checks_never_exceed_cap():
    limiter = UserRateLimiter(cap=10)
    allowed = []
    barrier = threading.Barrier(50)

    def worker():
        barrier.wait()
        allowed.append(limiter.check("alice").allowed)

    threads = [threading.Thread(target=worker) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert allowed.count(True) == 10


@pytest.mark.parametrize("cap, window", [(0, 3600), (5, 0)])
def test_invalid_configuration(cap, window):
    with pytest.raises(ValueError):
        UserRateLimiter(cap=cap, window=window)
