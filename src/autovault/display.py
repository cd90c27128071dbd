"""Live display surfaces read by the balance oracle and currency resolver.

A display exposes raw text by selector plus a few currency signals. The
engine never scrapes a page itself: a bridge (browser extension, headless
scraper) writes what it sees, and these classes read it back.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class Display(ABC):
    """Read-only view of the platform's balance widget."""

    @abstractmethod
    def text(self, selector: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def active_currency(self) -> Optional[str]:
        """Explicit currency signal (the widget's active-currency attribute)."""
        raise NotImplementedError

    @abstractmethod
    def displayed_currency(self) -> Optional[str]:
        """Denomination the balance widget is currently rendering."""
        raise NotImplementedError

    @abstractmethod
    def notifications(self) -> List[str]:
        """Recent notification / transaction texts, newest first."""
        raise NotImplementedError


class StaticDisplay(Display):
    """In-memory display.

    Used when no bridge is configured, in which case the oracle lives off
    the out-of-band balance snapshot.
    """

    def __init__(
        self,
        texts: Optional[Dict[str, str]] = None,
        active: Optional[str] = None,
        shown: Optional[str] = None,
        notes: Optional[List[str]] = None,
    ) -> None:
        self.texts = dict(texts or {})
        self.active = active
        self.shown = shown
        self.notes = list(notes or [])

    def text(self, selector: str) -> Optional[str]:
        return self.texts.get(selector)

    def active_currency(self) -> Optional[str]:
        return self.active

    def displayed_currency(self) -> Optional[str]:
        return self.shown

    def notifications(self) -> List[str]:
        return list(self.notes)


class FileDisplay(Display):
    """Display backed by a JSON document written by an external bridge.

    Expected shape::

        {
          "selectors": {"[data-testid=\\"user-balance\\"]": "0.01234567"},
          "activeCurrency": "btc",
          "displayedCurrency": "btc",
          "notifications": ["Deposit of 0.5 BTC received"]
        }

    A missing or malformed file behaves as an empty display.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._warned = False

    def _document(self) -> Dict[str, Any]:
        if not self.path.is_file():
            return {}
        try:
            doc = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            if not self._warned:
                logger.warning("Display file %s unreadable: %s", self.path, e)
                self._warned = True
            return {}
        if not isinstance(doc, dict):
            return {}
        self._warned = False
        return doc

    def text(self, selector: str) -> Optional[str]:
        selectors = self._document().get("selectors")
        if not isinstance(selectors, dict):
            return None
        value = selectors.get(selector)
        return None if value is None else str(value)

    def active_currency(self) -> Optional[str]:
        value = self._document().get("activeCurrency")
        return str(value) if value else None

    def displayed_currency(self) -> Optional[str]:
        value = self._document().get("displayedCurrency")
        return str(value) if value else None

    def notifications(self) -> List[str]:
        notes = self._document().get("notifications")
        if not isinstance(notes, list):
            return []
        return [str(n) for n in notes if n is not None]
