"""Tests for balance text parsing."""

from autovault.parsing import find_amounts, parse_amount


# ── Separators ────────────────────────────────────────────────────────────────

def test_parse_plain_decimal() -> None:
    assert parse_amount("0.00012345") == 0.00012345


def test_parse_thousands_comma() -> None:
    assert parse_amount("1,234.56") == 1234.56
    assert parse_amount("1,000") == 1000.0


def test_parse_decimal_comma_locale() -> None:
    assert parse_amount("1.234,56") == 1234.56
    assert parse_amount("0,00012345 BTC") == 0.00012345
    assert parse_amount("1,5") == 1.5


def test_parse_leading_zero_comma_is_decimal() -> None:
    """'0,005' can only be a decimal comma."""
    assert parse_amount("0,005") == 0.005


def test_parse_repeated_dots_are_grouping() -> None:
    assert parse_amount("1.234.567") == 1234567.0


def test_parse_space_and_apostrophe_grouping() -> None:
    assert parse_amount("12 345,6") == 12345.6
    assert parse_amount("12 345,60") == 12345.6
    assert parse_amount("1'234.5") == 1234.5


# ── Suffixes and symbols ──────────────────────────────────────────────────────

def test_parse_magnitude_suffixes() -> None:
    assert parse_amount("$1.5k") == 1500.0
    assert parse_amount("2.5M") == 2500000.0
    assert parse_amount("3b") == 3e9
    assert parse_amount("1T") == 1e12


def test_parse_currency_code_is_not_a_suffix() -> None:
    """'5 btc' is five, not five billion."""
    assert parse_amount("5 btc") == 5.0
    assert parse_amount("5 BTC") == 5.0


def test_parse_negative() -> None:
    assert parse_amount("-3.5") == -3.5


# ── Failed reads ──────────────────────────────────────────────────────────────

def test_parse_placeholders_return_none() -> None:
    for text in ("", None, "—", "Loading...", "N/A", "   "):
        assert parse_amount(text) is None


# ── find_amounts ──────────────────────────────────────────────────────────────

def test_find_amounts_in_order() -> None:
    assert find_amounts("Deposit of 0.5 BTC received, balance 12.3") == [0.5, 12.3]


def test_find_amounts_empty() -> None:
    assert find_amounts("no numbers here") == []
    assert find_amounts(None) == []


def test_find_amounts_space_only_groups_thousands() -> None:
    assert find_amounts("25 3 minutes ago") == [25.0, 3.0]
    assert find_amounts("credited 10 000 sc") == [10000.0]
    assert find_amounts("1234 567") == [1234.0, 567.0]
