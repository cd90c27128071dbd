"""AutoVault CLI entrypoint.

Commands:
  run                 watch the balance and skim wins into the vault
  config show | set   inspect or change the persisted policy
  limiter status      vault actions in the current rate-limit window
  balances            available and vaulted amounts per currency
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

import click

from autovault.constants import SESSION_LEDGER_KEY, SNAPSHOT_REFRESH_SEC

# ─── Logging setup ────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger("autovault")

DEFAULT_STATE_DIR = "data"
DEFAULT_HOST = "stake.com"


def _run(coro: Any) -> Any:
    """Run an async coroutine from sync Click context."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _durable_store(state_dir: str) -> Any:
    from autovault.store import JsonStore

    return JsonStore(state_dir)


# ─── Root CLI ─────────────────────────────────────────────────────────────────

@click.group()
@click.version_option(version="0.6.1", prog_name="autovault")
@click.option("--verbose", is_flag=True, help="Debug logging")
@click.option(
    "--state-dir", default=lambda: os.environ.get("AUTOVAULT_STATE_DIR", DEFAULT_STATE_DIR),
    show_default="data or $AUTOVAULT_STATE_DIR", help="Directory for persisted records",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, state_dir: str) -> None:
    """AutoVault — send a share of every win to the Stake vault."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    ctx.ensure_object(dict)
    ctx.obj["state_dir"] = state_dir


# ═══════════════════════════════════════════════════════════════════════════════
# RUN
# ═══════════════════════════════════════════════════════════════════════════════

@cli.command("run")
@click.option(
    "--host", default=lambda: os.environ.get("AUTOVAULT_HOST", DEFAULT_HOST),
    show_default="stake.com or $AUTOVAULT_HOST", help="Platform host (stake.com mirror or stake.us)",
)
@click.option("--token-file", default=None, help="File holding the session token")
@click.option(
    "--display-file", default=None,
    help="JSON file written by a page bridge; without it balances come from the API",
)
@click.option(
    "--refresh-sec", default=SNAPSHOT_REFRESH_SEC, type=float, show_default=True,
    help="Out-of-band balance refresh interval (0 disables)",
)
@click.option("--duration", default=None, type=float, help="Stop after N seconds")
@click.pass_context
def run_cmd(
    ctx: click.Context,
    host: str,
    token_file: Optional[str],
    display_file: Optional[str],
    refresh_sec: float,
    duration: Optional[float],
) -> None:
    """Watch the balance and skim wins into the vault."""
    from autovault.constants import balance_selectors_for_host
    from autovault.currency import CurrencyResolver, default_currency_for_host
    from autovault.detector import KeywordDepositDetector
    from autovault.display import FileDisplay, StaticDisplay
    from autovault.engine import DepositEngine
    from autovault.ledger import SessionLedger
    from autovault.observability import EventLog
    from autovault.oracle import BalanceOracle
    from autovault.policy import load_policy
    from autovault.rate_limit import RateLimiter
    from autovault.secrets import InsecureSecretsError, load_access_token
    from autovault.store import JsonStore
    from autovault.vault_client import VaultClient, api_url_for_host

    try:
        token = load_access_token(token_file)
    except InsecureSecretsError as e:
        click.echo("✗ {}".format(e), err=True)
        sys.exit(1)

    if not display_file and not refresh_sec:
        click.echo("✗ Without --display-file the balance refresh must be enabled", err=True)
        sys.exit(1)

    state_dir = ctx.obj["state_dir"]
    durable = _durable_store(state_dir)
    session_id = uuid.uuid4().hex[:12]
    session_store = JsonStore(str(Path(state_dir) / "sessions" / session_id))

    display = FileDisplay(display_file) if display_file else StaticDisplay()
    resolver = CurrencyResolver(display, default_currency_for_host(host))
    event_log = EventLog()

    async def _run_engine() -> Dict[str, Any]:
        async with VaultClient(api_url_for_host(host), token) as client:
            engine = DepositEngine(
                policy=load_policy(durable),
                resolver=resolver,
                oracle=BalanceOracle(display, balance_selectors_for_host(host)),
                limiter=RateLimiter(durable),
                ledger=SessionLedger(session_store, resolver.resolve()),
                client=client,
                detector=KeywordDepositDetector(),
                display=display,
                policy_store=durable,
                event_log=event_log,
                snapshot_refresh_sec=refresh_sec or None,
            )
            await engine.start()
            try:
                if duration:
                    await asyncio.sleep(duration)
                else:
                    await asyncio.Event().wait()
            finally:
                await engine.stop()
                await engine.drain()
            return engine.status()

    click.echo("AutoVault on {} (session {})".format(host, session_id))
    status = None  # type: Optional[Dict[str, Any]]
    try:
        status = _run(_run_engine())
    except KeyboardInterrupt:
        click.echo("Interrupted.")
    finally:
        persisted = session_store.load(SESSION_LEDGER_KEY, {})
        session_store.clear()

    click.echo("Vaulted this session:")
    if isinstance(persisted, dict) and persisted:
        for code, amount in sorted(persisted.items()):
            click.echo("  {}: {:.8f}".format(code, amount))
    else:
        click.echo("  nothing")
    if status is not None:
        click.echo("Rate-limit headroom: {}".format(status["rate_limit_headroom"]))
    for reason, count in sorted(event_log.reason_stats.items()):
        click.echo("  {}: {}".format(reason, count))


# ═══════════════════════════════════════════════════════════════════════════════
# CONFIG commands
# ═══════════════════════════════════════════════════════════════════════════════

@cli.group()
def config() -> None:
    """Persisted skim policy."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Print the active policy."""
    from autovault.policy import load_policy

    policy = load_policy(_durable_store(ctx.obj["state_dir"]))
    for key, value in policy.as_params().items():
        click.echo("{:<20} {}".format(key, value))


@config.command("set")
@click.option("--save-rate", type=float, default=None, help="Fraction of profit to vault [0-1]")
@click.option("--big-win-threshold", type=float, default=None, help="Balance multiple that counts as a big win")
@click.option("--big-win-multiplier", type=float, default=None, help="Skim multiplier on a big win")
@click.option("--poll-interval-ms", type=int, default=None, help="Tick interval (>= 10000)")
@click.pass_context
def config_set(
    ctx: click.Context,
    save_rate: Optional[float],
    big_win_threshold: Optional[float],
    big_win_multiplier: Optional[float],
    poll_interval_ms: Optional[int],
) -> None:
    """Change one or more policy values."""
    from autovault.policy import PolicyError, load_policy, save_policy

    partial = {
        k: v for k, v in {
            "save_rate": save_rate,
            "big_win_threshold": big_win_threshold,
            "big_win_multiplier": big_win_multiplier,
            "poll_interval_ms": poll_interval_ms,
        }.items() if v is not None
    }
    if not partial:
        click.echo("Nothing to change.", err=True)
        sys.exit(1)

    store = _durable_store(ctx.obj["state_dir"])
    try:
        policy = load_policy(store).updated(partial)
        save_policy(store, policy)
    except PolicyError as e:
        click.echo("✗ {}".format(e), err=True)
        sys.exit(1)
    click.echo("✓ Policy saved")
    for key, value in policy.as_params().items():
        click.echo("{:<20} {}".format(key, value))


# ═══════════════════════════════════════════════════════════════════════════════
# LIMITER commands
# ═══════════════════════════════════════════════════════════════════════════════

@cli.group()
def limiter() -> None:
    """Vault deposit rate limiter."""
    pass


@limiter.command("status")
@click.pass_context
def limiter_status(ctx: click.Context) -> None:
    """Print actions in the current window and remaining headroom."""
    from autovault.rate_limit import RateLimiter

    stats = RateLimiter(_durable_store(ctx.obj["state_dir"])).stats
    click.echo("Actions in window: {}/{}".format(stats["actions_in_window"], stats["max_actions"]))
    click.echo("Window:            {}s".format(int(stats["window_sec"])))
    click.echo("Headroom:          {}".format(stats["headroom"]))


# ═══════════════════════════════════════════════════════════════════════════════
# BALANCES
# ═══════════════════════════════════════════════════════════════════════════════

@cli.command("balances")
@click.option(
    "--host", default=lambda: os.environ.get("AUTOVAULT_HOST", DEFAULT_HOST),
    show_default="stake.com or $AUTOVAULT_HOST", help="Platform host",
)
@click.option("--token-file", default=None, help="File holding the session token")
def balances_cmd(host: str, token_file: Optional[str]) -> None:
    """Fetch available and vaulted amounts per currency."""
    from autovault.secrets import InsecureSecretsError, load_access_token
    from autovault.vault_client import VaultClient, api_url_for_host

    try:
        token = load_access_token(token_file)
    except InsecureSecretsError as e:
        click.echo("✗ {}".format(e), err=True)
        sys.exit(1)

    async def _fetch() -> Any:
        async with VaultClient(api_url_for_host(host), token) as client:
            return await client.fetch_balances()

    result = _run(_fetch())
    if not result.ok:
        click.echo("✗ Balance fetch failed ({}): {}".format(result.failure, result.detail), err=True)
        sys.exit(1)

    click.echo("{:<10} {:>20} {:>20}".format("currency", "available", "vault"))
    for code in sorted(result.balances):
        bal = result.balances[code]
        click.echo("{:<10} {:>20.8f} {:>20.8f}".format(code, bal.available, bal.vault))


if __name__ == "__main__":
    cli()
