"""Balance text parsing.

Displayed balances come in many shapes: "1,234.56", "1.234,56",
"0,00012 BTC", "$1.5k", "12 345,6". Everything here returns None for
content that is not a number and never raises.
"""

from __future__ import annotations

import math
import re
import unicodedata
from typing import List, Optional

_SUFFIXES = {
    "k": 1e3,
    "m": 1e6,
    "b": 1e9,
    "t": 1e12,
}

# Either 1-3 digits followed by three-digit groups (space, apostrophe, dot
# or comma separated) with an optional fraction, or a plain digit run with
# an optional fraction. A lone space never joins two numbers ("25 3 minutes").
# The magnitude suffix must not start a longer word ("5 btc" is five).
_NUMBER_RE = re.compile(
    r"(?P<sign>-)?"
    r"(?P<body>\d{1,3}(?:[ '.,]\d{3})+(?:[.,]\d+)?(?!\d)|\d+(?:[.,]\d+)?)"
    r"(?:\s*(?P<suffix>[kmbt])(?![a-z]))?",
    re.IGNORECASE,
)


def _normalise(text: str) -> str:
    """NFKC (folds NBSP and thin spaces), collapse whitespace."""
    text = unicodedata.normalize("NFKC", text)
    return " ".join(text.split())


def _to_float(body: str) -> Optional[float]:
    """Resolve grouping vs decimal separators in a digit run."""
    body = body.strip().replace(" ", "").replace("'", "")
    body = body.rstrip(".,")
    if not body:
        return None

    has_comma = "," in body
    has_dot = "." in body

    if has_comma and has_dot:
        # The separator that appears last is the decimal point
        if body.rfind(",") > body.rfind("."):
            body = body.replace(".", "").replace(",", ".")
        else:
            body = body.replace(",", "")
    elif has_comma:
        head, _, tail = body.rpartition(",")
        if body.count(",") > 1:
            body = body.replace(",", "")
        elif len(tail) == 3 and head not in ("", "0"):
            body = head + tail
        else:
            body = head + "." + tail
    elif has_dot and body.count(".") > 1:
        body = body.replace(".", "")

    try:
        value = float(body)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _match_value(match: "re.Match[str]") -> Optional[float]:
    value = _to_float(match.group("body"))
    if value is None:
        return None
    suffix = match.group("suffix")
    if suffix:
        value *= _SUFFIXES[suffix.lower()]
    if match.group("sign"):
        value = -value
    return value if math.isfinite(value) else None


def parse_amount(text: Optional[str]) -> Optional[float]:
    """Parse the first number found in a balance display text."""
    if not text:
        return None
    match = _NUMBER_RE.search(_normalise(text))
    if match is None:
        return None
    return _match_value(match)


def find_amounts(text: Optional[str]) -> List[float]:
    """All numbers in free text, in order of appearance."""
    if not text:
        return []
    amounts = []  # type: List[float]
    for match in _NUMBER_RE.finditer(_normalise(text)):
        value = _match_value(match)
        if value is not None:
            amounts.append(value)
    return amounts
