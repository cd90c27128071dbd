"""Deposit detection from notification text.

Best effort: a deposit is inferred when an amount appears next to
deposit-like wording in a recent notification. The engine only trusts it
when the balance actually rose by roughly that much.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Sequence

from autovault.constants import DEPOSIT_KEYWORDS
from autovault.parsing import find_amounts


class DepositDetector(ABC):
    """Classifier interface: return the deposited amount, or None."""

    @abstractmethod
    def classify(self, texts: Iterable[str]) -> Optional[float]:
        raise NotImplementedError


class KeywordDepositDetector(DepositDetector):
    """Matches whole-word deposit keywords; first positive amount wins."""

    def __init__(self, keywords: Sequence[str] = DEPOSIT_KEYWORDS) -> None:
        if not keywords:
            raise ValueError("At least one keyword is required")
        self.keywords = tuple(k.lower() for k in keywords)
        self._pattern = re.compile(
            r"\b(?:{})\b".format("|".join(re.escape(k) for k in self.keywords)),
            re.IGNORECASE,
        )

    def classify(self, texts: Iterable[str]) -> Optional[float]:
        for text in texts:
            if not text or not self._pattern.search(text):
                continue
            for amount in find_amounts(text):
                if amount > 0:
                    return amount
        return None
