"""Balance Oracle — best-effort current balance for a currency.

Tries the display selectors in order (remembering the last one that
worked), then degrades to the last good read, then to the out-of-band
snapshot from the vault client, then to 0. Never raises.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, Optional, Tuple

from autovault.constants import BALANCE_SELECTORS
from autovault.display import Display
from autovault.parsing import parse_amount
from autovault.vault_client import CurrencyBalance

logger = logging.getLogger(__name__)


def _usable(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value >= 0


class BalanceOracle:
    """Reads the balance for the active currency from the best signal."""

    def __init__(
        self,
        display: Display,
        selectors: Iterable[str] = BALANCE_SELECTORS,
    ) -> None:
        self.display = display
        self.selectors = tuple(selectors)
        self.working_selector = None  # type: Optional[str]
        self._last_values = {}  # type: Dict[str, float]
        self._snapshot = {}  # type: Dict[str, float]
        self._fallback_warned = False

    def update_snapshot(self, balances: Dict[str, CurrencyBalance]) -> None:
        """Store the latest out-of-band available balances."""
        for code, bal in balances.items():
            if _usable(bal.available):
                self._snapshot[code.lower()] = bal.available

    def snapshot_balance(self, currency: str) -> Optional[float]:
        return self._snapshot.get(currency.lower())

    def _try_selector(self, selector: str) -> Optional[float]:
        try:
            raw = self.display.text(selector)
        except Exception as e:
            logger.debug("Selector %s raised: %s", selector, e)
            return None
        value = parse_amount(raw)
        return value if _usable(value) else None

    def _read_display(self) -> Tuple[Optional[float], Optional[str]]:
        if self.working_selector is not None:
            value = self._try_selector(self.working_selector)
            if value is not None:
                return value, self.working_selector

        for selector in self.selectors:
            if selector == self.working_selector:
                continue
            value = self._try_selector(selector)
            if value is not None:
                return value, selector
        return None, None

    def _display_mismatch(self, currency: str) -> bool:
        try:
            shown = self.display.displayed_currency()
        except Exception:
            return False
        return bool(shown) and shown.strip().lower() != currency

    def read(self, currency: str) -> float:
        currency = currency.lower()
        snapshot = self._snapshot.get(currency)

        # Display is rendering another denomination: its number is wrong for us
        if snapshot is not None and self._display_mismatch(currency):
            return snapshot

        value, selector = self._read_display()
        if value is not None:
            if selector != self.working_selector:
                logger.debug("Working balance selector: %s", selector)
                self.working_selector = selector
            self._last_values[currency] = value
            return value

        self.working_selector = None
        if not self._fallback_warned:
            logger.warning(
                "Balance display unreadable for %s, falling back to %s",
                currency,
                "last known value" if currency in self._last_values
                else "out-of-band snapshot" if snapshot is not None
                else "zero",
            )
            self._fallback_warned = True

        if currency in self._last_values:
            return self._last_values[currency]
        if snapshot is not None:
            return snapshot
        return 0.0
