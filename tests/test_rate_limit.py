import asyncio

from medverify.core.rate_limit import InMemoryRateLimitStore, SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


async def test_fourth_request_in_window_is_rejected():
    limiter = SlidingWindowRateLimiter(InMemoryRateLimitStore(clock=FakeClock()), limit=3, window_seconds=60)

    results = [await limiter.hit("otp:+911234567890") for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert results[3].count == 3
    assert 1 <= results[3].retry_after <= 60


async def test_window_slides_instead_of_locking_out():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(InMemoryRateLimitStore(clock=clock), limit=3, window_seconds=60)

    await limiter.hit("k")
    clock.now += 30
    await limiter.hit("k")
    await limiter.hit("k")
    assert not (await limiter.hit("k")).allowed

    # First hit ages out, one slot frees up
    clock.now += 31
    assert (await limiter.hit("k")).allowed
    assert not (await limiter.hit("k")).allowed


async def test_rejected_hits_do_not_extend_the_window():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(InMemoryRateLimitStore(clock=clock), limit=1, window_seconds=60)

    await limiter.hit("k")
    for _ in range(5):
        clock.now += 10
        assert not (await limiter.hit("k")).allowed

    clock.now += 11
    assert (await limiter.hit("k")).allowed


async def test_keys_are_independent():
    limiter = SlidingWindowRateLimiter(InMemoryRateLimitStore(clock=FakeClock()), limit=1, window_seconds=60)

    assert (await limiter.hit("otp:+911111111111")).allowed
    assert (await limiter.hit("otp:+912222222222")).allowed
    assert not (await limiter.hit("otp:+911111111111")).allowed


async def test_concurrent_hits_never_exceed_limit():
    limiter = SlidingWindowRateLimiter(InMemoryRateLimitStore(), limit=3, window_seconds=60)

    results = await asyncio.gather(*(limiter.hit("burst") for _ in range(10)))

    assert sum(r.allowed for r in results) == 3


async def test_reset_clears_counters():
    store = InMemoryRateLimitStore(clock=FakeClock())
    limiter = SlidingWindowRateLimiter(store, limit=1, window_seconds=60)
    await limiter.hit("k")

    store.reset("k")

    assert (await limiter.hit("k")).allowed


async def test_prune_forgets_drained_keys_only():
    clock = FakeClock()
    store = InMemoryRateLimitStore(clock=clock)
    limiter = SlidingWindowRateLimiter(store, limit=3, window_seconds=60)
    await limiter.hit("otp:+911111111111")
    clock.now += 30
    await limiter.hit("otp:+912222222222")

    clock.now += 31
    assert store.prune() == 1

    assert set(store._windows) == {"otp:+912222222222"}
    assert set(store._locks) == {"otp:+912222222222"}
    assert (await limiter.hit("otp:+912222222222")).count == 2
    assert (await limiter.hit("otp:+911111111111")).count == 1
