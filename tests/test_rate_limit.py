"""Tests for the persisted sliding-window rate limiter."""

from pathlib import Path

import pytest

from autovault.rate_limit import RateLimiter
from autovault.store import JsonStore


class FakeClock:
    def __init__(self, t: float = 1_700_000_000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t


@pytest.fixture
def store(tmp_path: Path) -> JsonStore:
    return JsonStore(str(tmp_path))


def test_admit_until_cap(store: JsonStore) -> None:
    """After exactly M admitted actions, the (M+1)-th admit is denied."""
    clock = FakeClock()
    limiter = RateLimiter(store, clock=clock)

    for _ in range(50):
        assert limiter.admit() is True
        limiter.record()
        clock.t += 1

    assert limiter.admit() is False
    assert limiter.count_in_window() == 50
    assert limiter.headroom() == 0


def test_oldest_ages_out_without_reset(store: JsonStore) -> None:
    clock = FakeClock()
    limiter = RateLimiter(store, max_actions=3, window_sec=3600, clock=clock)

    start = clock.t
    for _ in range(3):
        limiter.record()
        clock.t += 10
    assert limiter.admit() is False

    # First action exactly one window old: outside
    clock.t = start + 3600
    assert limiter.count_in_window() == 2
    assert limiter.admit() is True


def test_window_persists_across_instances(store: JsonStore) -> None:
    clock = FakeClock()
    RateLimiter(store, clock=clock).record()
    RateLimiter(store, clock=clock).record()
    assert RateLimiter(store, clock=clock).count_in_window() == 2


def test_admit_persists_pruned_window(store: JsonStore) -> None:
    clock = FakeClock()
    store.save("vault_rate_limit", [int((clock.t - 7200) * 1000), int(clock.t * 1000)])
    limiter = RateLimiter(store, clock=clock)

    assert limiter.admit() is True
    assert store.load("vault_rate_limit") == [int(clock.t * 1000)]


def test_malformed_window_treated_as_empty(store: JsonStore, tmp_path: Path) -> None:
    (tmp_path / "vault_rate_limit.json").write_text("{not json")
    limiter = RateLimiter(store, clock=FakeClock())
    assert limiter.count_in_window() == 0
    assert limiter.admit() is True
    # Corrupt record overwritten by the admit
    assert store.load("vault_rate_limit") == []


def test_non_list_window_treated_as_empty(store: JsonStore) -> None:
    store.save("vault_rate_limit", {"oops": 1})
    assert RateLimiter(store, clock=FakeClock()).count_in_window() == 0


def test_stats(store: JsonStore) -> None:
    limiter = RateLimiter(store, max_actions=5, clock=FakeClock())
    limiter.record()
    stats = limiter.stats
    assert stats["actions_in_window"] == 1
    assert stats["headroom"] == 4
    assert stats["max_actions"] == 5


def test_invalid_cap_rejected(store: JsonStore) -> None:
    with pytest.raises(ValueError):
        RateLimiter(store, max_actions=0)
