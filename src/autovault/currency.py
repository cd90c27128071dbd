"""Currency Resolver — which denomination is the user playing in.

Resolution order: explicit active-currency signal, then the currency the
balance widget is rendering, then the platform default. Results are cached
for CURRENCY_CACHE_TTL_SEC.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from autovault.constants import (
    CURRENCY_CACHE_TTL_SEC,
    DEFAULT_CURRENCY,
    DEFAULT_US_CURRENCY,
    is_us_host,
)
from autovault.display import Display

logger = logging.getLogger(__name__)


def default_currency_for_host(host: str) -> str:
    return DEFAULT_US_CURRENCY if is_us_host(host) else DEFAULT_CURRENCY


def _clean(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    code = str(code).strip().lower()
    return code or None


class CurrencyResolver:
    """TTL-cached currency lookup. Never fails."""

    def __init__(
        self,
        display: Display,
        default_currency: str = DEFAULT_CURRENCY,
        ttl_sec: float = CURRENCY_CACHE_TTL_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.display = display
        self.default_currency = _clean(default_currency) or DEFAULT_CURRENCY
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._cached = None  # type: Optional[str]
        self._cached_at = 0.0

    def _signal(self, lookup: Callable[[], Optional[str]]) -> Optional[str]:
        try:
            return _clean(lookup())
        except Exception as e:
            logger.debug("Currency signal %s raised: %s", getattr(lookup, "__name__", lookup), e)
            return None

    def resolve(self) -> str:
        now = self._clock()
        if self._cached is not None and now - self._cached_at < self.ttl_sec:
            return self._cached

        code = self._signal(self.display.active_currency)
        source = "active"
        if code is None:
            code = self._signal(self.display.displayed_currency)
            source = "displayed"
        if code is None:
            code = self.default_currency
            source = "default"

        if code != self._cached:
            logger.debug("Currency resolved: %s (source=%s)", code, source)
        self._cached = code
        self._cached_at = now
        return code

    def invalidate(self) -> None:
        self._cached = None
        self._cached_at = 0.0
