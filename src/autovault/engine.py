"""Deposit Decision Engine — watches the balance and skims wins into the vault.

States: STOPPED -> INITIALIZING -> MONITORING. A currency switch drops
back to INITIALIZING. While MONITORING, each tick classifies the balance
movement since the baseline:

- deposit:  a notification names an amount the balance grew by (>= 95%)
- profit:   balance above baseline (big win when above baseline * threshold)
- loss:     balance below baseline, re-baseline only
- no change

Profit and deposit ticks schedule a skim. At most one vault deposit is in
flight; a skim arriving meanwhile is dropped, not queued. Failed or
throttled skims are forfeited: the baseline has already moved, and the
next tick starts from the current balance.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Dict, List, Optional, Set

from autovault.constants import (
    DEPOSIT_COVERAGE_RATIO,
    DEPOSIT_TIMEOUT_SEC,
    INIT_INTERVAL_SEC,
    INIT_MAX_TRIES,
    INIT_POSITIVE_READS_REQUIRED,
    MIN_SKIM_AMOUNT,
)
from autovault.currency import CurrencyResolver
from autovault.detector import DepositDetector
from autovault.display import Display
from autovault.ledger import SessionLedger
from autovault.observability import (
    EVENT_CURRENCY_CHANGED,
    EVENT_ENGINE_STARTED,
    EVENT_ENGINE_STOPPED,
    EVENT_SKIM,
    EVENT_TICK,
    FAILURE_TO_REASON,
    SKIM_BELOW_MINIMUM,
    SKIM_DEPOSIT_IN_FLIGHT,
    SKIM_LOCAL_RATE_LIMITED,
    SKIM_OK,
    SKIM_OK_NOT_PERSISTED,
    SKIM_REMOTE_REJECTED,
    SKIM_STORE_WRITE_FAILED,
    EventLog,
)
from autovault.oracle import BalanceOracle
from autovault.policy import Policy, save_policy
from autovault.rate_limit import RateLimiter
from autovault.store import JsonStore, StoreWriteError
from autovault.vault_client import FAILURE_NETWORK, FAILURE_TIMEOUT, VaultClient, VaultResult

logger = logging.getLogger(__name__)

# Engine states
STATE_STOPPED = "STOPPED"
STATE_INITIALIZING = "INITIALIZING"
STATE_MONITORING = "MONITORING"

# Tick classifications
TICK_NOT_MONITORING = "NOT_MONITORING"
TICK_CURRENCY_CHANGED = "CURRENCY_CHANGED"
TICK_DEPOSIT = "DEPOSIT"
TICK_PROFIT = "PROFIT"
TICK_BIG_WIN = "BIG_WIN"
TICK_LOSS = "LOSS"
TICK_NO_CHANGE = "NO_CHANGE"
TICK_REBASELINE = "REBASELINE"

# Skim kinds
KIND_PROFIT = "profit"
KIND_DEPOSIT = "deposit"


class DepositEngine:
    """Balance-watching skim loop.

    The policy object is held by reference: set_params() updates it in
    place so every holder sees the new values on the next tick.
    """

    def __init__(
        self,
        policy: Policy,
        resolver: CurrencyResolver,
        oracle: BalanceOracle,
        limiter: RateLimiter,
        ledger: SessionLedger,
        client: VaultClient,
        detector: Optional[DepositDetector] = None,
        display: Optional[Display] = None,
        policy_store: Optional[JsonStore] = None,
        event_log: Optional[EventLog] = None,
        init_interval_sec: float = INIT_INTERVAL_SEC,
        init_max_tries: int = INIT_MAX_TRIES,
        deposit_timeout_sec: float = DEPOSIT_TIMEOUT_SEC,
        snapshot_refresh_sec: Optional[float] = None,
    ) -> None:
        policy.validate()
        self.policy = policy
        self.resolver = resolver
        self.oracle = oracle
        self.limiter = limiter
        self.ledger = ledger
        self.client = client
        self.detector = detector
        self.display = display if display is not None else oracle.display
        self.policy_store = policy_store
        self.event_log = event_log if event_log is not None else EventLog()
        self.init_interval_sec = init_interval_sec
        self.init_max_tries = max(1, init_max_tries)
        self.deposit_timeout_sec = deposit_timeout_sec
        self.snapshot_refresh_sec = snapshot_refresh_sec

        self.state = STATE_STOPPED
        self.active_currency = ledger.currency
        self.baseline = None  # type: Optional[float]
        self.init_counter = 0
        self.deposit_in_flight = False

        self._running = False
        self._last_read = 0.0
        self._last_tick_balance = None  # type: Optional[float]
        self._consumed_deposits = set()  # type: Set[float]

        self._poll_task = None  # type: Optional[asyncio.Future]
        self._init_task = None  # type: Optional[asyncio.Future]
        self._refresh_task = None  # type: Optional[asyncio.Future]
        self._pending_skims = set()  # type: Set[asyncio.Future]

    # ── Operator surface ──────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def vault_total(self) -> float:
        """Amount vaulted this session in the active currency."""
        return self.ledger.get()

    @property
    def rate_limit_headroom(self) -> int:
        return self.limiter.headroom()

    def get_params(self) -> Dict[str, Any]:
        return self.policy.as_params()

    def set_params(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Validate, persist in full, and apply a partial policy update.

        Raises PolicyError and leaves the policy untouched on bad input.
        """
        new_policy = self.policy.updated(partial)
        if self.policy_store is not None:
            save_policy(self.policy_store, new_policy)
        for attr, value in new_policy.as_params().items():
            setattr(self.policy, attr, value)
        logger.info("Policy updated: %s", self.policy)
        return self.get_params()

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "running": self._running,
            "currency": self.active_currency,
            "baseline": self.baseline,
            "vault_total": self.vault_total,
            "rate_limit_headroom": self.rate_limit_headroom,
            "deposit_in_flight": self.deposit_in_flight,
            "params": self.get_params(),
        }

    async def start(self) -> None:
        """Begin initializing, then monitoring. No-op when already running."""
        if self._running:
            return
        self._running = True

        self.resolver.invalidate()
        self.active_currency = self.resolver.resolve()
        self.ledger.set_currency(self.active_currency)

        logger.info(
            "Engine starting: currency=%s policy=%s", self.active_currency, self.policy,
        )
        self.event_log.log_event(EVENT_ENGINE_STARTED, currency=self.active_currency)

        if self.snapshot_refresh_sec:
            self._refresh_task = asyncio.ensure_future(self._refresh_loop())
        self._begin_initializing()
        self._poll_task = asyncio.ensure_future(self._poll_loop())

    async def stop(self) -> None:
        """Stop timers, reset the ledger display, release the deposit flag.

        An in-flight vault call is not cancelled; its result still lands.
        """
        if not self._running and self.state == STATE_STOPPED:
            return
        self._running = False

        tasks = [t for t in (self._poll_task, self._init_task, self._refresh_task) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_task = self._init_task = self._refresh_task = None

        self.state = STATE_STOPPED
        self.ledger.reset()
        self.deposit_in_flight = False
        self.event_log.log_event(EVENT_ENGINE_STOPPED, currency=self.active_currency)
        logger.info("Engine stopped")

    async def drain(self) -> None:
        """Wait for every scheduled skim to finish."""
        while self._pending_skims:
            await asyncio.gather(*list(self._pending_skims), return_exceptions=True)

    # ── Initialization ────────────────────────────────────────────────────────

    def _begin_initializing(self) -> None:
        self.state = STATE_INITIALIZING
        self.baseline = None
        self.init_counter = 0
        self._last_tick_balance = None
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        self._init_task = asyncio.ensure_future(self.initialize())

    def _observe_initial_balance(self) -> bool:
        """One initialization read. True once the baseline is trusted."""
        cur = self.oracle.read(self.active_currency)
        self._last_read = cur
        if cur > 0:
            self.init_counter += 1
        else:
            self.init_counter = 0

        if self.init_counter >= INIT_POSITIVE_READS_REQUIRED:
            self._enter_monitoring(cur)
            return True
        return False

    def _enter_monitoring(self, balance: float) -> None:
        self.baseline = balance
        self._last_tick_balance = balance
        self.state = STATE_MONITORING
        logger.info("Initial balance: %.8f %s", balance, self.active_currency)

    async def initialize(self) -> Optional[float]:
        """Read the balance on a short cadence until two positive reads agree.

        Falls through to MONITORING with the last read (possibly 0) after
        init_max_tries reads so a dead display cannot stall the engine.
        """
        self.state = STATE_INITIALIZING
        self.baseline = None
        self.init_counter = 0

        for attempt in range(self.init_max_tries):
            if attempt:
                await asyncio.sleep(self.init_interval_sec)
            if self._observe_initial_balance():
                return self.baseline

        logger.warning(
            "Unable to confirm starting balance after %d reads, using %.8f %s",
            self.init_max_tries, self._last_read, self.active_currency,
        )
        self._enter_monitoring(self._last_read)
        return self.baseline

    # ── Main tick ─────────────────────────────────────────────────────────────

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.policy.poll_interval_sec)
            if not self._running:
                break
            try:
                await self.tick()
            except Exception:
                logger.exception("Tick failed; retrying next interval")

    def _switch_currency(self, currency: str) -> None:
        logger.info("Currency changed: %s -> %s", self.active_currency, currency)
        self.event_log.log_event(
            EVENT_CURRENCY_CHANGED,
            currency=currency,
            details={"previous": self.active_currency},
        )
        self.active_currency = currency
        self.resolver.invalidate()
        self.ledger.set_currency(currency)
        self._consumed_deposits.clear()
        self._begin_initializing()

    def _detect_deposit(self) -> Optional[float]:
        if self.detector is None:
            return None
        try:
            return self.detector.classify(self.display.notifications())
        except Exception as e:
            logger.debug("Deposit detector failed: %s", e)
            return None

    async def tick(self) -> str:
        """Run one poll tick. Returns the tick classification."""
        if self.state != STATE_MONITORING:
            return TICK_NOT_MONITORING

        currency = self.resolver.resolve()
        if currency != self.active_currency:
            self._switch_currency(currency)
            return TICK_CURRENCY_CHANGED

        cur = self.oracle.read(currency)
        previous = self._last_tick_balance
        if previous is None:
            previous = self.baseline
        self._last_tick_balance = cur

        result = self._classify(cur, previous)
        self.event_log.log_event(
            EVENT_TICK,
            currency=currency,
            amount=cur,
            details={"classification": result, "baseline": self.baseline},
        )
        return result

    def _classify(self, cur: float, previous: float) -> str:
        baseline = self.baseline

        deposit = self._detect_deposit()
        if deposit is not None:
            key = round(deposit, 8)
            if key not in self._consumed_deposits and cur - previous >= DEPOSIT_COVERAGE_RATIO * deposit:
                self._consumed_deposits.add(key)
                self.baseline = cur
                logger.info("Deposit detected: %.8f %s", deposit, self.active_currency)
                self._schedule_skim(deposit * self.policy.save_rate, False, KIND_DEPOSIT)
                return TICK_DEPOSIT

        if cur > baseline:
            if baseline <= 0:
                # Never saw a positive start balance: nothing to measure profit against
                self.baseline = cur
                logger.info("Baseline established at %.8f %s", cur, self.active_currency)
                return TICK_REBASELINE

            profit = cur - baseline
            big_win = cur > baseline * self.policy.big_win_threshold
            multiplier = self.policy.big_win_multiplier if big_win else 1
            amount = profit * self.policy.save_rate * multiplier
            # Advance before the deposit resolves so an overlapping tick can't re-skim
            self.baseline = cur
            self._schedule_skim(amount, big_win, KIND_PROFIT)
            return TICK_BIG_WIN if big_win else TICK_PROFIT

        if cur < baseline:
            self.baseline = cur
            return TICK_LOSS

        return TICK_NO_CHANGE

    # ── Skim procedure ────────────────────────────────────────────────────────

    def _schedule_skim(self, amount: float, big_win: bool, kind: str) -> None:
        task = asyncio.ensure_future(self.skim(amount, big_win=big_win, kind=kind))
        self._pending_skims.add(task)
        task.add_done_callback(self._skim_done)

    def _skim_done(self, task: asyncio.Future) -> None:
        self._pending_skims.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Skim task failed: %r", task.exception())

    def _skim_outcome(
        self,
        reason: str,
        currency: str,
        amount: float,
        kind: str,
        detail: str = "",
    ) -> str:
        self.event_log.log_event(
            EVENT_SKIM,
            currency=currency,
            amount=amount,
            reason_code=reason,
            details={"kind": kind, "detail": detail} if detail else {"kind": kind},
        )
        return reason

    async def skim(self, amount: float, big_win: bool = False, kind: str = KIND_PROFIT) -> str:
        """Move `amount` of the active currency into the vault.

        Returns the skim reason code (SKIM_OK on confirmed success).
        """
        currency = self.active_currency

        if not isinstance(amount, (int, float)) or not math.isfinite(amount) or amount < MIN_SKIM_AMOUNT:
            logger.debug("Skim of %r %s below minimum, ignored", amount, currency)
            return self._skim_outcome(SKIM_BELOW_MINIMUM, currency, amount, kind)

        if self.deposit_in_flight:
            logger.info(
                "Vault deposit already in flight, dropping skim of %.8f %s", amount, currency,
            )
            return self._skim_outcome(SKIM_DEPOSIT_IN_FLIGHT, currency, amount, kind)

        try:
            admitted = self.limiter.admit()
        except StoreWriteError as e:
            logger.error(
                "Skim of %.8f %s skipped, rate-limit window not writable: %s", amount, currency, e,
            )
            return self._skim_outcome(SKIM_STORE_WRITE_FAILED, currency, amount, kind, str(e))
        if not admitted:
            logger.warning(
                "Skim of %.8f %s held back by local rate limit (%d/%d in window)",
                amount, currency, self.limiter.count_in_window(), self.limiter.max_actions,
            )
            return self._skim_outcome(SKIM_LOCAL_RATE_LIMITED, currency, amount, kind)

        if kind == KIND_DEPOSIT:
            logger.info("Deposit! Saving %.8f %s", amount, currency)
        elif big_win:
            logger.info(
                "BIG WIN! Saving %.0f%% of profit: %.8f %s",
                self.policy.save_rate * self.policy.big_win_multiplier * 100, amount, currency,
            )
        else:
            logger.info(
                "Win! Saving %.0f%% of profit: %.8f %s",
                self.policy.save_rate * 100, amount, currency,
            )

        self.deposit_in_flight = True
        try:
            result = await asyncio.wait_for(
                self.client.deposit(currency, amount), timeout=self.deposit_timeout_sec,
            )
        except asyncio.TimeoutError:
            result = VaultResult.failed(
                FAILURE_TIMEOUT, "no response after {}s".format(self.deposit_timeout_sec),
            )
        except Exception as e:
            logger.exception("Vault deposit raised")
            result = VaultResult.failed(FAILURE_NETWORK, str(e) or type(e).__name__)
        finally:
            self.deposit_in_flight = False

        if not result.ok:
            reason = FAILURE_TO_REASON.get(result.failure, SKIM_REMOTE_REJECTED)
            logger.warning(
                "Vault deposit of %.8f %s failed (%s): %s; skim forfeited",
                amount, currency, result.failure, result.detail,
            )
            return self._skim_outcome(reason, currency, amount, kind, result.detail)

        # The deposit happened: bookkeeping failures must not lose the resync
        write_errors = []  # type: List[str]
        try:
            self.limiter.record()
        except StoreWriteError as e:
            write_errors.append(str(e))
        if self.ledger.currency == currency:
            try:
                self.ledger.add(amount)
            except StoreWriteError as e:
                write_errors.append(str(e))
        else:
            logger.info(
                "Deposit of %.8f %s confirmed after switching to %s; not shown in session total",
                amount, currency, self.ledger.currency,
            )
        if result.balances:
            self.oracle.update_snapshot(result.balances)
        self.resync_baseline()

        if write_errors:
            detail = "; ".join(write_errors)
            logger.error(
                "Saved %.8f %s to vault but local records were not persisted: %s",
                amount, currency, detail,
            )
            return self._skim_outcome(SKIM_OK_NOT_PERSISTED, currency, amount, kind, detail)

        logger.info("Saved %.8f %s to vault", amount, currency)
        return self._skim_outcome(SKIM_OK, currency, amount, kind)

    def resync_baseline(self) -> Optional[float]:
        """Re-read the balance and adopt it as the baseline.

        Corrects drift accumulated while a deposit was in flight. Skipped
        while re-initializing after a currency switch.
        """
        if self.state == STATE_INITIALIZING:
            return self.baseline
        cur = self.oracle.read(self.active_currency)
        if cur != self.baseline:
            logger.debug("Baseline resync: %s -> %.8f", self.baseline, cur)
        self.baseline = cur
        self._last_tick_balance = cur
        return cur

    # ── Out-of-band balance snapshot ──────────────────────────────────────────

    async def refresh_snapshot(self) -> bool:
        """Fetch balances from the API and hand them to the oracle."""
        result = await self.client.fetch_balances()
        if not result.ok:
            logger.debug("Balance snapshot refresh failed: %s", result.failure)
            return False
        self.oracle.update_snapshot(result.balances)
        return True

    async def _refresh_loop(self) -> None:
        while self._running:
            try:
                await self.refresh_snapshot()
            except Exception:
                logger.exception("Balance snapshot refresh raised")
            await asyncio.sleep(self.snapshot_refresh_sec)
