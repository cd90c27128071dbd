"""Tests for the balance oracle: selector fallback, snapshot fallback, never raising."""

import logging
from typing import List, Optional

from autovault.display import Display, StaticDisplay
from autovault.oracle import BalanceOracle
from autovault.vault_client import CurrencyBalance

SEL_A = '[data-testid="user-balance"]'
SEL_B = ".balance-value"


def _oracle(texts=None, shown=None) -> BalanceOracle:
    return BalanceOracle(StaticDisplay(texts=texts, shown=shown), [SEL_A, SEL_B])


class ExplodingDisplay(Display):
    def text(self, selector: str) -> Optional[str]:
        raise RuntimeError("widget gone")

    def active_currency(self) -> Optional[str]:
        return None

    def displayed_currency(self) -> Optional[str]:
        raise RuntimeError("widget gone")

    def notifications(self) -> List[str]:
        return []


# ── Display reads ────────────────────────────────────────────────────────────

def test_read_first_selector() -> None:
    oracle = _oracle({SEL_A: "1,234.5"})
    assert oracle.read("btc") == 1234.5
    assert oracle.working_selector == SEL_A


def test_read_skips_unparseable_selector() -> None:
    oracle = _oracle({SEL_A: "—", SEL_B: "12.5"})
    assert oracle.read("btc") == 12.5
    assert oracle.working_selector == SEL_B


def test_read_rejects_negative() -> None:
    oracle = _oracle({SEL_A: "-5", SEL_B: "3"})
    assert oracle.read("btc") == 3.0


def test_working_selector_fast_path_recovers() -> None:
    """When the remembered selector stops working, the full list is retried."""
    oracle = _oracle({SEL_B: "7"})
    assert oracle.read("btc") == 7.0
    oracle.display.texts = {SEL_A: "8"}
    assert oracle.read("btc") == 8.0
    assert oracle.working_selector == SEL_A


# ── Fallbacks ────────────────────────────────────────────────────────────────

def test_fallback_last_value() -> None:
    oracle = _oracle({SEL_A: "10"})
    assert oracle.read("btc") == 10.0
    oracle.display.texts = {}
    assert oracle.read("btc") == 10.0


def test_fallback_snapshot_when_never_read() -> None:
    oracle = _oracle()
    oracle.update_snapshot({"btc": CurrencyBalance("btc", 2.0, 1.0)})
    assert oracle.read("BTC") == 2.0


def test_fallback_zero() -> None:
    assert _oracle().read("btc") == 0.0


def test_last_value_preferred_over_snapshot() -> None:
    oracle = _oracle({SEL_A: "10"})
    oracle.read("btc")
    oracle.display.texts = {}
    oracle.update_snapshot({"btc": CurrencyBalance("btc", 2.0, 0.0)})
    assert oracle.read("btc") == 10.0


def test_currency_mismatch_prefers_snapshot() -> None:
    """Display rendering ETH must not be read as the BTC balance."""
    oracle = _oracle({SEL_A: "100"}, shown="eth")
    oracle.update_snapshot({"btc": CurrencyBalance("btc", 2.0, 0.0)})
    assert oracle.read("btc") == 2.0
    assert oracle.read("eth") == 100.0


def test_currency_mismatch_without_snapshot_uses_display() -> None:
    oracle = _oracle({SEL_A: "100"}, shown="eth")
    assert oracle.read("btc") == 100.0


def test_read_never_raises() -> None:
    oracle = BalanceOracle(ExplodingDisplay(), [SEL_A])
    assert oracle.read("btc") == 0.0


def test_fallback_warning_logged_once(caplog) -> None:
    caplog.set_level(logging.WARNING, logger="autovault.oracle")
    oracle = _oracle()
    oracle.read("btc")
    oracle.read("btc")
    oracle.read("btc")
    warnings = [r for r in caplog.records if "unreadable" in r.getMessage()]
    assert len(warnings) == 1
