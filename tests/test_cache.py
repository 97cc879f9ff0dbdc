from unittest.mock import MagicMock

from cache import TTLCache


def test_value_is_reused_within_ttl(fake_clock) -> None:
    cache = TTLCache(ttl_seconds=60, clock=fake_clock)
    compute = MagicMock(return_value={"total": 3})

    first = cache.get_or_compute("trends:week", compute)
    fake_clock.now += 59
    second = cache.get_or_compute("trends:week", compute)

    assert first is second
    compute.assert_called_once()


def test_value_is_recomputed_after_expiry(fake_clock) -> None:
    cache = TTLCache(ttl_seconds=60, clock=fake_clock)
    compute = MagicMock(side_effect=[1, 2])

    cache.get_or_compute("k", compute)
    fake_clock.now += 60

    assert cache.get_or_compute("k", compute) == 2


def test_per_call_ttl_overrides_default(fake_clock) -> None:
    cache = TTLCache(ttl_seconds=3600, clock=fake_clock)
    compute = MagicMock(side_effect=[1, 2])

    cache.get_or_compute("insights", compute, ttl_seconds=10)
    fake_clock.now += 11

    assert cache.get_or_compute("insights", compute, ttl_seconds=10) == 2


def test_invalidate_single_key_and_all(fake_clock) -> None:
    cache = TTLCache(ttl_seconds=60, clock=fake_clock)
    cache.get_or_compute("a", lambda: 1)
    cache.get_or_compute("b", lambda: 2)

    cache.invalidate("a")
    assert len(cache) == 1

    cache.invalidate()
    assert len(cache) == 0
