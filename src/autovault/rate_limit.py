"""Persisted sliding-window limiter for vault deposits.

The platform enforces its own quota; this only avoids calls that would
fail anyway. The window is a list of epoch-millisecond timestamps, pruned
lazily on every access so it self-corrects after the process sleeps.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List

from autovault.constants import (
    RATE_LIMIT_KEY,
    RATE_LIMIT_MAX_ACTIONS,
    RATE_LIMIT_WINDOW_SEC,
)
from autovault.store import JsonStore

logger = logging.getLogger(__name__)


class RateLimiter:
    """At most `max_actions` vault actions per trailing `window_sec`."""

    def __init__(
        self,
        store: JsonStore,
        max_actions: int = RATE_LIMIT_MAX_ACTIONS,
        window_sec: float = RATE_LIMIT_WINDOW_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_actions < 1:
            raise ValueError("max_actions must be >= 1")
        self.store = store
        self.max_actions = max_actions
        self.window_sec = window_sec
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _load(self) -> List[int]:
        raw = self.store.load(RATE_LIMIT_KEY, [])
        if not isinstance(raw, list):
            logger.warning("Rate-limit window is not a list, treating as empty")
            return []
        window = []  # type: List[int]
        for ts in raw:
            if isinstance(ts, bool) or not isinstance(ts, (int, float)):
                logger.warning("Rate-limit window has a bad entry, treating as empty")
                return []
            window.append(int(ts))
        return window

    def _pruned(self) -> List[int]:
        cutoff = self._now_ms() - int(self.window_sec * 1000)
        return [ts for ts in self._load() if ts > cutoff]

    def admit(self) -> bool:
        """Prune, persist, and report whether another action fits."""
        window = self._pruned()
        self.store.save(RATE_LIMIT_KEY, window)
        allowed = len(window) < self.max_actions
        if not allowed:
            logger.debug(
                "Rate limit: %d/%d actions in the last %ds",
                len(window), self.max_actions, int(self.window_sec),
            )
        return allowed

    def record(self) -> None:
        window = self._pruned()
        window.append(self._now_ms())
        self.store.save(RATE_LIMIT_KEY, window)

    def count_in_window(self) -> int:
        return len(self._pruned())

    def headroom(self) -> int:
        return max(0, self.max_actions - self.count_in_window())

    @property
    def stats(self) -> dict:
        count = self.count_in_window()
        return {
            "actions_in_window": count,
            "max_actions": self.max_actions,
            "window_sec": self.window_sec,
            "headroom": max(0, self.max_actions - count),
        }
