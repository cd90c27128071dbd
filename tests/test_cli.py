"""Tests for the click CLI."""

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from click.testing import CliRunner

from autovault.cli import cli
from autovault.secrets import TOKEN_ENV_VAR
from autovault.vault_client import FAILURE_HTTP_STATUS, CurrencyBalance, VaultClient, VaultResult


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def state_dir(tmp_path: Path) -> str:
    return str(tmp_path / "state")


# ── config ───────────────────────────────────────────────────────────────────

def test_config_show_defaults(runner: CliRunner, state_dir: str) -> None:
    result = runner.invoke(cli, ["--state-dir", state_dir, "config", "show"])
    assert result.exit_code == 0
    assert "save_rate" in result.output
    assert "0.04" in result.output
    assert "90000" in result.output


def test_config_set_persists(runner: CliRunner, state_dir: str) -> None:
    result = runner.invoke(
        cli, ["--state-dir", state_dir, "config", "set", "--save-rate", "0.1", "--poll-interval-ms", "15000"],
    )
    assert result.exit_code == 0
    assert "Policy saved" in result.output

    record = json.loads((Path(state_dir) / "policy.json").read_text())
    assert record == {
        "saveRate": 0.1,
        "bigWinThreshold": 5.0,
        "bigWinMultiplier": 10.0,
        "pollIntervalMs": 15000,
    }

    shown = runner.invoke(cli, ["--state-dir", state_dir, "config", "show"])
    assert "0.1" in shown.output
    assert "15000" in shown.output


def test_config_set_rejects_out_of_range(runner: CliRunner, state_dir: str) -> None:
    result = runner.invoke(cli, ["--state-dir", state_dir, "config", "set", "--save-rate", "2"])
    assert result.exit_code == 1
    assert not (Path(state_dir) / "policy.json").exists()


def test_config_set_nothing(runner: CliRunner, state_dir: str) -> None:
    result = runner.invoke(cli, ["--state-dir", state_dir, "config", "set"])
    assert result.exit_code == 1


def test_state_dir_from_environment(runner: CliRunner, state_dir: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTOVAULT_STATE_DIR", state_dir)
    result = runner.invoke(cli, ["config", "set", "--big-win-threshold", "3"])
    assert result.exit_code == 0
    assert (Path(state_dir) / "policy.json").exists()


# ── limiter ──────────────────────────────────────────────────────────────────

def test_limiter_status(runner: CliRunner, state_dir: str) -> None:
    result = runner.invoke(cli, ["--state-dir", state_dir, "limiter", "status"])
    assert result.exit_code == 0
    assert "Actions in window: 0/50" in result.output
    assert "Headroom:          50" in result.output


# ── balances ─────────────────────────────────────────────────────────────────

def test_balances_table(runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(TOKEN_ENV_VAR, "tok")
    monkeypatch.setattr(VaultClient, "fetch_balances", AsyncMock(return_value=VaultResult(
        ok=True, balances={"btc": CurrencyBalance("btc", 1.5, 0.25)},
    )))

    result = runner.invoke(cli, ["balances"])

    assert result.exit_code == 0
    assert "btc" in result.output
    assert "1.50000000" in result.output
    assert "0.25000000" in result.output


def test_balances_failure(runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(TOKEN_ENV_VAR, "tok")
    monkeypatch.setattr(VaultClient, "fetch_balances", AsyncMock(
        return_value=VaultResult.failed(FAILURE_HTTP_STATUS, "HTTP 403"),
    ))
    result = runner.invoke(cli, ["balances"])
    assert result.exit_code == 1


# ── run ──────────────────────────────────────────────────────────────────────

def test_run_refuses_without_token(runner: CliRunner, state_dir: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(TOKEN_ENV_VAR, raising=False)
    result = runner.invoke(cli, ["--state-dir", state_dir, "run", "--duration", "0.01"])
    assert result.exit_code == 1


def test_run_requires_a_balance_source(runner: CliRunner, state_dir: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(TOKEN_ENV_VAR, "tok")
    result = runner.invoke(cli, ["--state-dir", state_dir, "run", "--refresh-sec", "0"])
    assert result.exit_code == 1


def test_run_for_duration(
    runner: CliRunner, state_dir: str, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv(TOKEN_ENV_VAR, "tok")
    deposit = AsyncMock()
    monkeypatch.setattr(VaultClient, "deposit", deposit)
    display_file = tmp_path / "display.json"
    display_file.write_text(json.dumps({
        "selectors": {'[data-testid="user-balance"]': "1.0"},
        "activeCurrency": "btc",
    }))

    result = runner.invoke(cli, [
        "--state-dir", state_dir, "run",
        "--display-file", str(display_file), "--refresh-sec", "0", "--duration", "0.05",
    ])

    assert result.exit_code == 0, result.output
    assert "Vaulted this session:" in result.output
    assert "nothing" in result.output
    assert "Rate-limit headroom: 50" in result.output
    deposit.assert_not_awaited()
    # Session records do not outlive the run
    assert list((Path(state_dir) / "sessions").glob("*/*.json")) == []
