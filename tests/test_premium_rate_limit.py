from __future__ import annotations

from premium import MemoryTokenBuckets, PremiumRateLimiter, payment_subject


def test_memory_bucket_denies_after_capacity() -> None:
    limiter = PremiumRateLimiter(disabled=True)

    results = [limiter.allow(subject="payments:127.0.0.1:alice", limit_rpm=3) for _ in range(3)]
    assert all(item.allowed for item in results)
    assert [item.remaining for item in results] == [2, 1, 0]

    denied = limiter.allow(subject="payments:127.0.0.1:alice", limit_rpm=3)
    assert denied.allowed is False
    assert denied.limit_rpm == 3
    assert denied.retry_after_seconds >= 1

    other = limiter.allow(subject="payments:127.0.0.1:bob", limit_rpm=3)
    assert other.allowed is True

    limiter.reset()
    assert limiter.allow(subject="payments:127.0.0.1:alice", limit_rpm=3).allowed is True


def test_memory_url_skips_redis() -> None:
    limiter = PremiumRateLimiter(redis_url="memory://", disabled=False)
    assert limiter.allow(subject="s", limit_rpm=1).allowed is True
    assert limiter.allow(subject="s", limit_rpm=1).allowed is False


def test_payment_subject_defaults() -> None:
    assert payment_subject("10.0.0.1", "alice") == "payments:10.0.0.1:alice"
    assert payment_subject(None, None) == "payments:unknown:anonymous"
    assert payment_subject(" ", " ") == "payments:unknown:anonymous"


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_memory_buckets_sweep_refilled_subjects_past_threshold() -> None:
    clock = FakeClock()
    buckets = MemoryTokenBuckets(sweep_threshold=3, clock=clock)
    for index in range(3):
        assert buckets.take(f"k{index}", capacity=60, cost=60).allowed is True
    assert len(buckets) == 3

    # Half a minute refills half of a drained 60 rpm bucket, so nothing is dropped yet.
    clock.now += 30
    buckets.take("k3", capacity=60, cost=1)
    assert len(buckets) == 4

    clock.now += 60
    buckets.take("k4", capacity=60, cost=1)
    assert len(buckets) == 1


def test_sweep_keeps_buckets_that_are_still_draining() -> None:
    clock = FakeClock()
    buckets = MemoryTokenBuckets(sweep_threshold=2, clock=clock)
    for _ in range(2):
        buckets.take("busy", capacity=2, cost=1)
    buckets.take("idle", capacity=2, cost=1)

    clock.now += 40
    buckets.take("new", capacity=2, cost=1)
    assert len(buckets) == 2
    # 40s at one token per 30s restored one token; the second call is still refused.
    assert buckets.take("busy", capacity=2, cost=1).allowed is True
    assert buckets.take("busy", capacity=2, cost=1).allowed is False


def test_limiter_uses_injected_clock_for_refill() -> None:
    clock = FakeClock()
    limiter = PremiumRateLimiter(disabled=True, clock=clock)
    assert limiter.allow(subject="s", limit_rpm=1).allowed is True
    denied = limiter.allow(subject="s", limit_rpm=1)
    assert denied.allowed is False
    assert denied.retry_after_seconds == 60

    clock.now += 60
    assert limiter.allow(subject="s", limit_rpm=1).allowed is True
