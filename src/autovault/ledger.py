"""Session Ledger — amount vaulted this session, per currency.

The persisted record ({currency: amount}) lives in the session store and
is cleared when the session ends. The displayed amount can be reset on
stop without touching what was persisted.
"""

from __future__ import annotations

import logging
import math
from typing import Dict

from autovault.constants import SESSION_LEDGER_KEY
from autovault.store import JsonStore

logger = logging.getLogger(__name__)


def _valid_amount(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value >= 0
    )


class SessionLedger:
    """Per-currency running total of skims confirmed this session."""

    def __init__(self, store: JsonStore, currency: str) -> None:
        self.store = store
        self._currency = currency.lower()
        self._amount = self._persisted().get(self._currency, 0.0)

    def _persisted(self) -> Dict[str, float]:
        raw = self.store.load(SESSION_LEDGER_KEY, {})
        if not isinstance(raw, dict):
            logger.warning("Session ledger record is not an object, ignoring it")
            return {}
        return {
            str(code): float(amount)
            for code, amount in raw.items()
            if _valid_amount(amount)
        }

    @property
    def currency(self) -> str:
        return self._currency

    def get(self) -> float:
        return self._amount

    def add(self, amount: float) -> None:
        if not isinstance(amount, (int, float)) or not math.isfinite(amount) or amount <= 0:
            return
        # Displayed total counts the skim even if the write below fails
        self._amount += amount
        record = self._persisted()
        record[self._currency] = record.get(self._currency, 0.0) + amount
        self.store.save(SESSION_LEDGER_KEY, record)
        logger.debug("Ledger %s: +%.8f -> %.8f", self._currency, amount, self._amount)

    def reset(self) -> None:
        """Zero the displayed total; the persisted value is kept."""
        self._amount = 0.0

    def set_currency(self, code: str) -> None:
        """Switch currency and show that currency's persisted total."""
        self._currency = code.lower()
        self._amount = self._persisted().get(self._currency, 0.0)

    def clear(self) -> None:
        """Forget every currency's persisted total (session end)."""
        self.store.delete(SESSION_LEDGER_KEY)
        self._amount = 0.0
