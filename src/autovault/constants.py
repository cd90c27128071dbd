"""Locked defaults for the AutoVault engine.

Every tunable of the balance watcher lives here. The user-editable subset
(the policy) can be overridden through the persisted policy record only.
"""

from __future__ import annotations

# ── Policy defaults ───────────────────────────────────────────────────────────
DEFAULT_SAVE_RATE = 0.04
DEFAULT_BIG_WIN_THRESHOLD = 5.0
DEFAULT_BIG_WIN_MULTIPLIER = 10.0
DEFAULT_POLL_INTERVAL_MS = 90_000
MIN_POLL_INTERVAL_MS = 10_000

# ── Currency resolution ──────────────────────────────────────────────────────
CURRENCY_CACHE_TTL_SEC = 5.0
DEFAULT_CURRENCY = "bnb"
DEFAULT_US_CURRENCY = "sc"

# ── Skim procedure ───────────────────────────────────────────────────────────
MIN_SKIM_AMOUNT = 1e-8
DEPOSIT_TIMEOUT_SEC = 30.0

# ── Rate limiting ────────────────────────────────────────────────────────────
RATE_LIMIT_WINDOW_SEC = 3600
RATE_LIMIT_MAX_ACTIONS = 50

# ── Initialization ───────────────────────────────────────────────────────────
INIT_INTERVAL_SEC = 1.0
INIT_MAX_TRIES = 5
INIT_POSITIVE_READS_REQUIRED = 2

# ── Deposit detection ────────────────────────────────────────────────────────
DEPOSIT_COVERAGE_RATIO = 0.95
DEPOSIT_KEYWORDS = ("deposit", "deposited", "received", "credited")

# ── Out-of-band balance refresh ──────────────────────────────────────────────
SNAPSHOT_REFRESH_SEC = 30.0

# ── Balance display selectors (ordered, first match wins) ────────────────────
BALANCE_SELECTORS = (
    '[data-testid="user-balance"]',
    ".balance-value",
    ".navigation .balance-toggle .currency span.content span",
)
US_BALANCE_SELECTORS = (
    '[data-testid="user-balance"] .numeric',
    ".numeric.variant-highlighted",
)

# ── Persisted record keys ────────────────────────────────────────────────────
POLICY_KEY = "policy"
RATE_LIMIT_KEY = "vault_rate_limit"
SESSION_LEDGER_KEY = "session_vaulted"


def is_us_host(host: str) -> bool:
    """stake.us runs on sweepstakes coins and a different balance widget."""
    return host.lower().rstrip(".").endswith(".us")


def balance_selectors_for_host(host: str) -> tuple:
    return US_BALANCE_SELECTORS if is_us_host(host) else BALANCE_SELECTORS
