from artisan_booking.core.rate_limiter import BookingRateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_attempts_over_the_limit_wait_for_the_oldest_to_expire():
    clock = FakeClock()
    limiter = BookingRateLimiter(clock=clock)

    assert limiter.hit("create:1", limit=2, window_seconds=60) == 0
    clock.now += 10
    assert limiter.hit("create:1", limit=2, window_seconds=60) == 0
    clock.now += 10
    assert limiter.hit("create:1", limit=2, window_seconds=60) == 40

    clock.now += 41
    assert limiter.hit("create:1", limit=2, window_seconds=60) == 0


def test_expired_callers_are_dropped_from_memory():
    clock = FakeClock()
    limiter = BookingRateLimiter(clock=clock)
    for user_id in range(50):
        limiter.hit(f"create:{user_id}", limit=5, window_seconds=60)
    assert len(limiter._windows) == 50

    clock.now += 61
    limiter.hit("create:late", limit=5, window_seconds=60)

    assert list(limiter._windows) == ["create:late"]


def test_reset_forgets_every_window():
    limiter = BookingRateLimiter(clock=FakeClock())
    limiter.hit("create:1", limit=1, window_seconds=60)

    limiter.reset()

    assert limiter.hit("create:1", limit=1, window_seconds=60) == 0


def test_unreachable_redis_falls_back_to_local_windows():
    limiter = BookingRateLimiter(redis_url="redis://127.0.0.1:1/0", clock=FakeClock())

    assert limiter.hit("create:1", limit=1, window_seconds=60) == 0
    assert limiter.hit("create:1", limit=1, window_seconds=60) == 60
    limiter.reset()
