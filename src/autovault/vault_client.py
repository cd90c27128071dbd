"""Vault Client — Stake GraphQL balance reads and vault deposits.

Two operations:
- fetch_balances(): per-currency available + vault amounts
- deposit(currency, amount): createVaultDeposit mutation

Neither raises on remote trouble. Every outcome is a VaultResult; anything
without a confirmation payload is a failure, never a partial success.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from typing import Any, Dict, Optional, Tuple

import aiohttp

logger = logging.getLogger(__name__)

# Failure kinds
FAILURE_NETWORK = "network"
FAILURE_HTTP_STATUS = "http-status"
FAILURE_MALFORMED = "malformed-response"
FAILURE_REJECTED = "remote-rejected"
FAILURE_TIMEOUT = "timeout"

FAILURE_KINDS = frozenset({
    FAILURE_NETWORK,
    FAILURE_HTTP_STATUS,
    FAILURE_MALFORMED,
    FAILURE_REJECTED,
    FAILURE_TIMEOUT,
})

REQUEST_TIMEOUT_SEC = 30

BALANCES_QUERY = """query UserBalances {
  user {
    id
    balances {
      available { amount currency }
      vault { amount currency }
    }
  }
}"""

DEPOSIT_MUTATION = """mutation CreateVaultDeposit($currency: CurrencyEnum!, $amount: Float!) {
  createVaultDeposit(currency: $currency, amount: $amount) {
    id
    amount
    currency
    user {
      id
      balances {
        available { amount currency }
        vault { amount currency }
      }
    }
    __typename
  }
}"""


def api_url_for_host(host: str) -> str:
    return "https://{}/_api/graphql".format(host.strip().rstrip("/"))


class CurrencyBalance:
    """Available and vaulted amount for one currency."""

    def __init__(self, currency: str, available: float, vault: float) -> None:
        self.currency = currency
        self.available = available
        self.vault = vault

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "available": self.available,
            "vault": self.vault,
        }

    def __repr__(self) -> str:
        return "CurrencyBalance({!r}, available={}, vault={})".format(
            self.currency, self.available, self.vault,
        )


class VaultResult:
    """Outcome of a remote call: confirmed success or a classified failure."""

    def __init__(
        self,
        ok: bool,
        failure: Optional[str] = None,
        detail: str = "",
        balances: Optional[Dict[str, CurrencyBalance]] = None,
        confirmation: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not ok and failure not in FAILURE_KINDS:
            raise ValueError("Unknown failure kind: {}".format(failure))
        self.ok = ok
        self.failure = failure
        self.detail = detail
        self.balances = balances or {}
        self.confirmation = confirmation

    @classmethod
    def failed(cls, failure: str, detail: str = "") -> VaultResult:
        return cls(ok=False, failure=failure, detail=detail)

    def __repr__(self) -> str:
        if self.ok:
            return "VaultResult(ok, balances={})".format(len(self.balances))
        return "VaultResult(failure={}, detail={!r})".format(self.failure, self.detail)


def _amount(value: Any) -> Optional[float]:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return amount if math.isfinite(amount) else None


def _parse_balance_list(raw: Any) -> Optional[Dict[str, CurrencyBalance]]:
    """Turn the GraphQL balances list into {currency: CurrencyBalance}."""
    if not isinstance(raw, list):
        return None
    balances = {}  # type: Dict[str, CurrencyBalance]
    for entry in raw:
        if not isinstance(entry, dict):
            return None
        available = entry.get("available") or {}
        vault = entry.get("vault") or {}
        if not isinstance(available, dict) or not isinstance(vault, dict):
            return None
        currency = available.get("currency") or vault.get("currency")
        avail_amt = _amount(available.get("amount", 0))
        vault_amt = _amount(vault.get("amount", 0))
        if not currency or avail_amt is None or vault_amt is None:
            return None
        code = str(currency).lower()
        balances[code] = CurrencyBalance(code, avail_amt, vault_amt)
    return balances


def _graphql_error_detail(payload: Dict[str, Any]) -> str:
    errors = payload.get("errors")
    if isinstance(errors, list) and errors:
        messages = [
            str(e.get("message", e)) if isinstance(e, dict) else str(e)
            for e in errors
        ]
        return "; ".join(messages)
    return "no confirmation in response"


def parse_balances_payload(payload: Any) -> VaultResult:
    """Classify a decoded UserBalances response body."""
    if not isinstance(payload, dict):
        return VaultResult.failed(FAILURE_MALFORMED, "response is not a JSON object")

    data = payload.get("data")
    if data is None and payload.get("errors"):
        return VaultResult.failed(FAILURE_REJECTED, _graphql_error_detail(payload))
    if not isinstance(data, dict) or not isinstance(data.get("user"), dict):
        return VaultResult.failed(FAILURE_MALFORMED, "missing data.user")

    balances = _parse_balance_list(data["user"].get("balances"))
    if balances is None:
        return VaultResult.failed(FAILURE_MALFORMED, "unparseable balances list")
    return VaultResult(ok=True, balances=balances)


def parse_deposit_payload(payload: Any) -> VaultResult:
    """Classify a decoded CreateVaultDeposit response body.

    A structurally valid response with a null/empty confirmation is a
    remote rejection.
    """
    if not isinstance(payload, dict):
        return VaultResult.failed(FAILURE_MALFORMED, "response is not a JSON object")

    data = payload.get("data")
    if data is not None and not isinstance(data, dict):
        return VaultResult.failed(FAILURE_MALFORMED, "data is not an object")

    confirmation = (data or {}).get("createVaultDeposit")
    if not confirmation:
        return VaultResult.failed(FAILURE_REJECTED, _graphql_error_detail(payload))
    if not isinstance(confirmation, dict):
        return VaultResult.failed(FAILURE_MALFORMED, "confirmation is not an object")

    balances = {}  # type: Dict[str, CurrencyBalance]
    user = confirmation.get("user")
    if isinstance(user, dict):
        balances = _parse_balance_list(user.get("balances")) or {}
    return VaultResult(ok=True, balances=balances, confirmation=confirmation)


class VaultClient:
    """Async GraphQL client for the vault endpoints.

    Owns its aiohttp session unless one is passed in.
    """

    def __init__(
        self,
        api_url: str,
        access_token: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_sec: float = REQUEST_TIMEOUT_SEC,
    ) -> None:
        self.api_url = api_url
        self._access_token = access_token
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_sec)

    def _headers(self, op_name: str) -> Dict[str, str]:
        return {
            "content-type": "application/json",
            "x-access-token": self._access_token,
            "x-language": "en",
            "x-operation-name": op_name,
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> VaultClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def _post(self, op_name: str, body: Dict[str, Any]) -> Tuple[int, str]:
        """POST one GraphQL document. Returns (status, raw body text)."""
        session = await self._get_session()
        async with session.post(
            self.api_url,
            data=json.dumps(body),
            headers=self._headers(op_name),
        ) as resp:
            return resp.status, await resp.text()

    async def _call(self, op_name: str, body: Dict[str, Any]) -> Tuple[Optional[Any], Optional[VaultResult]]:
        """Run the transport and decode JSON.

        Returns (payload, None) or (None, failure).
        """
        try:
            status, text = await self._post(op_name, body)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            logger.warning("%s: network failure: %s", op_name, e)
            return None, VaultResult.failed(FAILURE_NETWORK, str(e) or type(e).__name__)

        if not 200 <= status < 300:
            logger.warning("%s: HTTP %d", op_name, status)
            return None, VaultResult.failed(FAILURE_HTTP_STATUS, "HTTP {}".format(status))

        try:
            return json.loads(text), None
        except ValueError as e:
            logger.warning("%s: non-JSON response: %s", op_name, e)
            return None, VaultResult.failed(FAILURE_MALFORMED, "non-JSON body")

    async def fetch_balances(self) -> VaultResult:
        payload, failure = await self._call(
            "UserBalances", {"query": BALANCES_QUERY, "variables": {}},
        )
        if failure is not None:
            return failure
        result = parse_balances_payload(payload)
        if not result.ok:
            logger.warning("UserBalances: %s (%s)", result.failure, result.detail)
        return result

    async def deposit(self, currency: str, amount: float) -> VaultResult:
        payload, failure = await self._call(
            "CreateVaultDeposit",
            {
                "query": DEPOSIT_MUTATION,
                "variables": {"currency": currency, "amount": amount},
            },
        )
        if failure is not None:
            return failure
        result = parse_deposit_payload(payload)
        if result.ok:
            logger.debug(
                "CreateVaultDeposit confirmed: id=%s currency=%s amount=%.8f",
                result.confirmation.get("id"), currency, amount,
            )
        return result
