"""Fixed-window rate limiter tests."""

import time

from storyjobs.services.rate_limiter import RateLimiter


def test_allows_up_to_limit_per_window():
    limiter = RateLimiter(max_requests=3, window_seconds=60)

    assert all(limiter.check("cron:GitHub Actions").allowed for _ in range(3))

    decision = limiter.check("cron:GitHub Actions")
    assert decision.allowed is False
    assert 0 < decision.retry_after <= 60


def test_window_resets_after_expiry():
    limiter = RateLimiter(max_requests=1, window_seconds=1)
    limiter.check("key")

    blocked = limiter.check("key")
    assert blocked.allowed is False
    assert blocked.retry_after == 1

    time.sleep(1.1)
    assert limiter.check("key").allowed is True


def test_keys_are_independent():
    limiter = RateLimiter(max_requests=1, window_seconds=60)

    assert limiter.check("cron:Vercel Cron").allowed
    assert limiter.check("cron:External Cron").allowed
    assert not limiter.check("cron:Vercel Cron").allowed


def test_instances_do_not_share_counts():
    first = RateLimiter(max_requests=1, window_seconds=60)
    second = RateLimiter(max_requests=1, window_seconds=60)
    first.check("key")

    assert second.check("key").allowed


def test_reset_clears_all_windows():
    limiter = RateLimiter(max_requests=1, window_seconds=60)
    limiter.check("key")

    limiter.reset()

    assert limiter.check("key").allowed
