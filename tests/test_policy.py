"""Tests for the policy record: validation and persistence."""

from pathlib import Path

import pytest

from autovault.policy import Policy, PolicyError, load_policy, save_policy
from autovault.store import JsonStore


def test_defaults() -> None:
    policy = Policy()
    policy.validate()
    assert policy.save_rate == 0.04
    assert policy.big_win_threshold == 5
    assert policy.big_win_multiplier == 10
    assert policy.poll_interval_ms == 90_000


def test_record_shape() -> None:
    assert Policy().to_dict() == {
        "saveRate": 0.04,
        "bigWinThreshold": 5.0,
        "bigWinMultiplier": 10.0,
        "pollIntervalMs": 90_000,
    }


def test_from_dict_ignores_unknown_keys() -> None:
    policy = Policy.from_dict({"saveRate": 0.1, "theme": "dark"})
    assert policy.save_rate == 0.1
    assert policy.poll_interval_ms == 90_000


def test_updated_accepts_both_key_styles() -> None:
    policy = Policy().updated({"save_rate": 0.2, "pollIntervalMs": 20_000})
    assert policy.save_rate == 0.2
    assert policy.poll_interval_ms == 20_000


def test_updated_does_not_mutate_original() -> None:
    original = Policy()
    original.updated({"save_rate": 0.5})
    assert original.save_rate == 0.04


@pytest.mark.parametrize("partial", [
    {"save_rate": 1.5},
    {"save_rate": -0.1},
    {"big_win_threshold": 0.5},
    {"big_win_multiplier": 0},
    {"poll_interval_ms": 9_999},
    {"poll_interval_ms": 10_000.5},
    {"save_rate": "lots"},
    {"save_rate": True},
    {"colour": "red"},
])
def test_invalid_updates_rejected(partial) -> None:
    with pytest.raises(PolicyError):
        Policy().updated(partial)


def test_policy_error_is_value_error() -> None:
    assert issubclass(PolicyError, ValueError)


def test_load_missing_returns_defaults(tmp_path: Path) -> None:
    assert load_policy(JsonStore(str(tmp_path))) == Policy()


def test_load_corrupt_returns_defaults(tmp_path: Path) -> None:
    (tmp_path / "policy.json").write_text("][")
    assert load_policy(JsonStore(str(tmp_path))) == Policy()


def test_load_out_of_range_returns_defaults(tmp_path: Path) -> None:
    store = JsonStore(str(tmp_path))
    store.save("policy", {"saveRate": 7})
    assert load_policy(store) == Policy()


def test_save_then_load(tmp_path: Path) -> None:
    store = JsonStore(str(tmp_path))
    policy = Policy(save_rate=0.1, big_win_threshold=3, big_win_multiplier=2, poll_interval_ms=15_000)
    save_policy(store, policy)

    assert store.load("policy") == policy.to_dict()
    assert load_policy(store) == policy
