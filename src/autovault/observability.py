"""Observability — canonical event log + skim outcome reasons.

Local throttling and remote failure have distinct reason codes so the
operator can tell "we held back" from "the platform said no".
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from autovault.vault_client import (
    FAILURE_HTTP_STATUS,
    FAILURE_MALFORMED,
    FAILURE_NETWORK,
    FAILURE_REJECTED,
    FAILURE_TIMEOUT,
)

logger = logging.getLogger(__name__)

# ── Event types ───────────────────────────────────────────────────────────────
EVENT_ENGINE_STARTED = "ENGINE_STARTED"
EVENT_ENGINE_STOPPED = "ENGINE_STOPPED"
EVENT_CURRENCY_CHANGED = "CURRENCY_CHANGED"
EVENT_TICK = "TICK"
EVENT_SKIM = "SKIM"

# ── Skim outcome reason codes ────────────────────────────────────────────────
SKIM_OK = "OK"
SKIM_BELOW_MINIMUM = "BELOW_MINIMUM"
SKIM_DEPOSIT_IN_FLIGHT = "DEPOSIT_IN_FLIGHT"
SKIM_LOCAL_RATE_LIMITED = "LOCAL_RATE_LIMITED"
SKIM_NETWORK = "NETWORK"
SKIM_HTTP_STATUS = "HTTP_STATUS"
SKIM_MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
SKIM_REMOTE_REJECTED = "REMOTE_REJECTED"
SKIM_TIMEOUT = "TIMEOUT"
SKIM_STORE_WRITE_FAILED = "STORE_WRITE_FAILED"
SKIM_OK_NOT_PERSISTED = "OK_NOT_PERSISTED"

SKIM_REASONS = frozenset({
    SKIM_OK,
    # Never reached the remote service
    SKIM_BELOW_MINIMUM,
    SKIM_DEPOSIT_IN_FLIGHT,
    SKIM_LOCAL_RATE_LIMITED,
    SKIM_STORE_WRITE_FAILED,
    # Confirmed remotely, local bookkeeping not persisted
    SKIM_OK_NOT_PERSISTED,
    # Remote failures (skim forfeited)
    SKIM_NETWORK,
    SKIM_HTTP_STATUS,
    SKIM_MALFORMED_RESPONSE,
    SKIM_REMOTE_REJECTED,
    SKIM_TIMEOUT,
})

REMOTE_FAILURE_REASONS = frozenset({
    SKIM_NETWORK,
    SKIM_HTTP_STATUS,
    SKIM_MALFORMED_RESPONSE,
    SKIM_REMOTE_REJECTED,
    SKIM_TIMEOUT,
})

# vault_client failure kind -> skim reason
FAILURE_TO_REASON = {
    FAILURE_NETWORK: SKIM_NETWORK,
    FAILURE_HTTP_STATUS: SKIM_HTTP_STATUS,
    FAILURE_MALFORMED: SKIM_MALFORMED_RESPONSE,
    FAILURE_REJECTED: SKIM_REMOTE_REJECTED,
    FAILURE_TIMEOUT: SKIM_TIMEOUT,
}


class EventLog:
    """Canonical event log."""

    def __init__(self, max_events: int = 1000) -> None:
        self.max_events = max_events
        self._events = []  # type: List[Dict[str, Any]]
        self._reason_counts = {}  # type: Dict[str, int]
        self._event_counts = {}  # type: Dict[str, int]

    def log_event(
        self,
        event_type: str,
        currency: Optional[str] = None,
        amount: Optional[float] = None,
        reason_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a canonical event."""
        event = {
            "ts": time.time(),
            "event_type": event_type,
            "currency": currency,
            "amount": amount,
            "reason_code": reason_code,
            "details": details or {},
        }
        self._events.append(event)
        if len(self._events) > self.max_events:
            del self._events[: len(self._events) - self.max_events]

        self._event_counts[event_type] = self._event_counts.get(event_type, 0) + 1
        if reason_code:
            self._reason_counts[reason_code] = self._reason_counts.get(reason_code, 0) + 1

        logger.debug(
            "Event: type=%s currency=%s amount=%s reason=%s",
            event_type, currency or "-",
            "-" if amount is None else "{:.8f}".format(amount),
            reason_code or "-",
        )

    @property
    def reason_stats(self) -> Dict[str, int]:
        return dict(self._reason_counts)

    @property
    def recent_events(self) -> List[Dict[str, Any]]:
        """Last 100 events."""
        return self._events[-100:]

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "total_events": len(self._events),
            "by_type": dict(self._event_counts),
            "by_reason": self.reason_stats,
            "remote_failures": sum(
                n for r, n in self._reason_counts.items() if r in REMOTE_FAILURE_REASONS
            ),
        }
