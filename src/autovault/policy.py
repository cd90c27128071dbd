"""User policy: how much of each win goes to the vault, and how often to look.

Persisted record shape (rewritten in full on every change)::

    {"saveRate": 0.04, "bigWinThreshold": 5, "bigWinMultiplier": 10,
     "pollIntervalMs": 90000}
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict

from autovault.constants import (
    DEFAULT_BIG_WIN_MULTIPLIER,
    DEFAULT_BIG_WIN_THRESHOLD,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_SAVE_RATE,
    MIN_POLL_INTERVAL_MS,
    POLICY_KEY,
)
from autovault.store import JsonStore

logger = logging.getLogger(__name__)

# snake_case attribute -> persisted camelCase key
_FIELDS = {
    "save_rate": "saveRate",
    "big_win_threshold": "bigWinThreshold",
    "big_win_multiplier": "bigWinMultiplier",
    "poll_interval_ms": "pollIntervalMs",
}
_ALIASES = {attr: attr for attr in _FIELDS}
_ALIASES.update({camel: attr for attr, camel in _FIELDS.items()})


class PolicyError(ValueError):
    """Raised when a policy value is out of range."""


def _number(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise PolicyError("{} must be a number, got {!r}".format(name, value))
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise PolicyError("{} must be a number, got {!r}".format(name, value)) from None
    if not math.isfinite(number):
        raise PolicyError("{} must be finite".format(name))
    return number


class Policy:
    """Mutable skim policy owned by the engine."""

    def __init__(
        self,
        save_rate: float = DEFAULT_SAVE_RATE,
        big_win_threshold: float = DEFAULT_BIG_WIN_THRESHOLD,
        big_win_multiplier: float = DEFAULT_BIG_WIN_MULTIPLIER,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    ) -> None:
        self.save_rate = save_rate
        self.big_win_threshold = big_win_threshold
        self.big_win_multiplier = big_win_multiplier
        self.poll_interval_ms = poll_interval_ms

    def validate(self) -> None:
        """Coerce and range-check every field. Raises PolicyError."""
        save_rate = _number("save_rate", self.save_rate)
        if not 0.0 <= save_rate <= 1.0:
            raise PolicyError("save_rate must be in [0, 1], got {}".format(save_rate))

        threshold = _number("big_win_threshold", self.big_win_threshold)
        if threshold < 1:
            raise PolicyError("big_win_threshold must be >= 1, got {}".format(threshold))

        multiplier = _number("big_win_multiplier", self.big_win_multiplier)
        if multiplier < 1:
            raise PolicyError("big_win_multiplier must be >= 1, got {}".format(multiplier))

        interval = _number("poll_interval_ms", self.poll_interval_ms)
        if interval != int(interval):
            raise PolicyError("poll_interval_ms must be an integer, got {}".format(interval))
        if interval < MIN_POLL_INTERVAL_MS:
            raise PolicyError(
                "poll_interval_ms must be >= {}, got {}".format(MIN_POLL_INTERVAL_MS, int(interval))
            )

        self.save_rate = save_rate
        self.big_win_threshold = threshold
        self.big_win_multiplier = multiplier
        self.poll_interval_ms = int(interval)

    @property
    def poll_interval_sec(self) -> float:
        return self.poll_interval_ms / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        """Persisted record (camelCase keys)."""
        return {camel: getattr(self, attr) for attr, camel in _FIELDS.items()}

    def as_params(self) -> Dict[str, Any]:
        """snake_case view for the operator surface."""
        return {attr: getattr(self, attr) for attr in _FIELDS}

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> Policy:
        """Build from a persisted record; unknown keys are ignored."""
        kwargs = {}  # type: Dict[str, Any]
        for key, value in record.items():
            attr = _ALIASES.get(key)
            if attr in _FIELDS:
                kwargs[attr] = value
        policy = cls(**kwargs)
        policy.validate()
        return policy

    def updated(self, partial: Dict[str, Any]) -> Policy:
        """Validated copy with `partial` applied (snake_case or camelCase keys)."""
        values = self.as_params()
        for key, value in partial.items():
            attr = _ALIASES.get(key)
            if attr not in _FIELDS:
                raise PolicyError("Unknown policy field: {}".format(key))
            values[attr] = value
        policy = Policy(**values)
        policy.validate()
        return policy

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Policy):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return "Policy({})".format(
            ", ".join("{}={}".format(k, v) for k, v in self.as_params().items())
        )


def load_policy(store: JsonStore) -> Policy:
    """Read the persisted policy; defaults when absent or invalid."""
    record = store.load(POLICY_KEY)
    if record is None:
        return Policy()
    if not isinstance(record, dict):
        logger.warning("Persisted policy is not an object, using defaults")
        return Policy()
    try:
        return Policy.from_dict(record)
    except PolicyError as e:
        logger.warning("Persisted policy invalid (%s), using defaults", e)
        return Policy()


def save_policy(store: JsonStore, policy: Policy) -> None:
    policy.validate()
    store.save(POLICY_KEY, policy.to_dict())
    logger.info("Policy saved: %s", policy)
