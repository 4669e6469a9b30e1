"""
JSON-RPC ledger gateway and the per-run ledger context.

Responsibility:
    ``JsonRpcLedgerGateway`` implements ``LedgerGateway`` over JSON-RPC 2.0
    on an ``httpx.Client``.  ``read_with_retry`` applies the bounded read
    retry policy with tenacity.  ``build_ledger_context`` assembles the
    ``LedgerContext`` a run passes into every engine operation.

Architecture position:
    Services -- the network boundary to the ledger relay.  Nothing else in
    the codebase speaks HTTP to the ledger.

Invariants enforced:
    - Every read is bounded by ``read_timeout_seconds``.
    - Read failures surface as LedgerReadError, write failures as
      LedgerWriteError; raw httpx exceptions never escape this module.
    - close_campaign waits for a receipt no longer than its timeout and
      never resubmits the transaction.

Failure modes:
    - Transport errors, timeouts, HTTP 429 / 5xx and JSON-RPC error
      objects map to LedgerReadError (reads) or LedgerWriteError (writes).
    - A reverted close transaction raises LedgerWriteError carrying tx_id.
    - A close transaction with no receipt before the timeout returns
      ``CloseReceipt(confirmed=False)``.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

import httpx
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_fixed,
)

from campaign_config.schema import ConsistencyConfig
from campaign_kernel.domain.dtos import CloseReceipt, OnChainCampaign
from campaign_kernel.domain.ledger import LedgerContext, LedgerGateway, RetryPolicy
from campaign_kernel.exceptions import LedgerReadError, LedgerWriteError
from campaign_kernel.logging_config import get_logger

logger = get_logger("services.ledger_client")

T = TypeVar("T")

_SUCCESS_STATUSES = frozenset({1, "0x1", "1", "success"})


def _to_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{field}: boolean is not an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.lower().startswith("0x") else int(value)
    raise ValueError(f"{field}: cannot read {value!r} as an integer")


def parse_projection(campaign_id: int, raw: dict[str, Any]) -> OnChainCampaign:
    """Convert a ``ledger_getCampaign`` result into an OnChainCampaign."""
    return OnChainCampaign(
        campaign_id=campaign_id,
        base_uri=str(raw.get("baseURI") or ""),
        active=bool(raw.get("active", False)),
        closed=bool(raw.get("closed", False)),
        editions_minted=_to_int(raw.get("editionsMinted", 0), "editionsMinted"),
        max_editions=_to_int(raw.get("maxEditions", 0), "maxEditions"),
    )


class _RpcFailure(Exception):
    """Internal: a JSON-RPC call failed; mapped to a ledger error by the caller."""


class JsonRpcLedgerGateway(LedgerGateway):
    """
    LedgerGateway over JSON-RPC 2.0.

    Contract:
        One gateway per process; share it through LedgerContext.  Reads are
        thread-safe (httpx.Client is thread-safe).

    Guarantees:
        - get_campaign_projections issues one batched HTTP request per call
          and maps each id to its projection or to a LedgerReadError.

    Non-goals:
        - No retries here; see read_with_retry.
    """

    supports_batch = True

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        *,
        read_timeout_seconds: float = 10.0,
        confirmation_poll_seconds: float = 2.0,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.confirmation_poll_seconds = confirmation_poll_seconds
        self._client = client or httpx.Client(timeout=httpx.Timeout(read_timeout_seconds))
        self._owns_client = client is None
        self._sleep = sleep
        self._ids = itertools.count(1)
        self._ids_lock = threading.Lock()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> JsonRpcLedgerGateway:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -----------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------

    def _next_id(self) -> int:
        with self._ids_lock:
            return next(self._ids)

    def _request(self, method: str, params: list[Any]) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params,
        }

    def _post(self, payload: Any) -> Any:
        try:
            response = self._client.post(self.rpc_url, json=payload)
        except httpx.TimeoutException as exc:
            raise _RpcFailure(f"timeout: {exc}") from exc
        except httpx.TransportError as exc:
            raise _RpcFailure(f"transport error: {exc}") from exc

        if response.status_code == 429:
            raise _RpcFailure("rate limited (HTTP 429)")
        if response.status_code >= 500:
            raise _RpcFailure(f"node error (HTTP {response.status_code})")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise _RpcFailure(f"HTTP {exc.response.status_code}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise _RpcFailure("response is not JSON") from exc

    @staticmethod
    def _result(envelope: Any) -> Any:
        if not isinstance(envelope, dict):
            raise _RpcFailure("malformed JSON-RPC response")
        error = envelope.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            raise _RpcFailure(f"rpc error {code}: {message}")
        return envelope.get("result")

    def _call(self, method: str, params: list[Any]) -> Any:
        return self._result(self._post(self._request(method, params)))

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    def get_campaign_count(self) -> int:
        try:
            result = self._call("ledger_getCampaignCount", [self.contract_address])
            return _to_int(result, "campaignCount")
        except (_RpcFailure, ValueError) as exc:
            raise LedgerReadError("get_campaign_count", str(exc)) from exc

    def get_campaign_projection(self, campaign_id: int) -> OnChainCampaign:
        try:
            result = self._call("ledger_getCampaign", [self.contract_address, campaign_id])
        except _RpcFailure as exc:
            raise LedgerReadError("get_campaign", str(exc), campaign_id) from exc
        return self._projection_or_error(campaign_id, result)

    def _projection_or_error(self, campaign_id: int, result: Any) -> OnChainCampaign:
        if not isinstance(result, dict):
            raise LedgerReadError("get_campaign", "campaign slot not populated", campaign_id)
        try:
            return parse_projection(campaign_id, result)
        except ValueError as exc:
            raise LedgerReadError("get_campaign", str(exc), campaign_id) from exc

    def get_campaign_projections(
        self, campaign_ids: Iterable[int]
    ) -> dict[int, OnChainCampaign | Exception]:
        ids = list(campaign_ids)
        if not ids:
            return {}

        requests = [
            self._request("ledger_getCampaign", [self.contract_address, cid])
            for cid in ids
        ]
        request_to_campaign = {req["id"]: cid for req, cid in zip(requests, ids)}

        try:
            envelopes = self._post(requests)
        except _RpcFailure as exc:
            return {
                cid: LedgerReadError("get_campaign", str(exc), cid) for cid in ids
            }

        if isinstance(envelopes, dict):
            # Relay rejected the whole batch with a single error object
            envelopes = [envelopes]

        results: dict[int, OnChainCampaign | Exception] = {}
        for envelope in envelopes if isinstance(envelopes, list) else []:
            cid = request_to_campaign.get(envelope.get("id")) if isinstance(envelope, dict) else None
            if cid is None:
                continue
            try:
                results[cid] = self._projection_or_error(cid, self._result(envelope))
            except _RpcFailure as exc:
                results[cid] = LedgerReadError("get_campaign", str(exc), cid)
            except LedgerReadError as exc:
                results[cid] = exc

        for cid in ids:
            results.setdefault(
                cid, LedgerReadError("get_campaign", "missing from batch response", cid)
            )
        return results

    # -----------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------

    def close_campaign(self, campaign_id: int, timeout: float) -> CloseReceipt:
        try:
            tx_id = self._call("ledger_closeCampaign", [self.contract_address, campaign_id])
        except _RpcFailure as exc:
            raise LedgerWriteError(campaign_id, str(exc)) from exc
        if not tx_id:
            raise LedgerWriteError(campaign_id, "relay returned no transaction id")

        tx_id = str(tx_id)
        logger.info(
            "ledger_close_submitted",
            extra={"campaign_id": campaign_id, "tx_id": tx_id},
        )

        receipt = self._wait_for_receipt(tx_id, timeout)
        if receipt is None:
            logger.warning(
                "ledger_close_unconfirmed",
                extra={"campaign_id": campaign_id, "tx_id": tx_id, "timeout": timeout},
            )
            return CloseReceipt(tx_id=tx_id, confirmed=False)

        if receipt.get("status") not in _SUCCESS_STATUSES:
            raise LedgerWriteError(
                campaign_id,
                f"transaction reverted (status {receipt.get('status')!r})",
                tx_id=tx_id,
            )
        return CloseReceipt(tx_id=tx_id, confirmed=True)

    def _get_receipt(self, tx_id: str) -> dict[str, Any] | None:
        try:
            result = self._call("ledger_getTransactionReceipt", [tx_id])
        except _RpcFailure as exc:
            raise LedgerReadError("get_transaction_receipt", str(exc)) from exc
        return result if isinstance(result, dict) else None

    def _wait_for_receipt(self, tx_id: str, timeout: float) -> dict[str, Any] | None:
        """Poll for a receipt; None when none arrived within ``timeout`` seconds."""
        retrying = Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(self.confirmation_poll_seconds),
            retry=(
                retry_if_result(lambda receipt: receipt is None)
                | retry_if_exception_type(LedgerReadError)
            ),
            sleep=self._sleep,
        )
        try:
            return retrying(self._get_receipt, tx_id)
        except RetryError:
            return None


# ---------------------------------------------------------------------------
# Read retry policy
# ---------------------------------------------------------------------------


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "ledger_read_retry",
        extra={
            "attempt": retry_state.attempt_number,
            "campaign_id": getattr(exc, "campaign_id", None),
            "reason": getattr(exc, "reason", str(exc)),
        },
    )


def read_with_retry(
    policy: RetryPolicy,
    fn: Callable[..., T],
    *args: Any,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call a ledger read under the bounded retry policy.

    Only LedgerReadError is retried.  After ``policy.max_attempts`` the last
    LedgerReadError is re-raised unchanged.
    """
    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.backoff_initial_seconds,
            max=policy.backoff_max_seconds,
        ),
        retry=retry_if_exception_type(LedgerReadError),
        before_sleep=_log_retry,
        reraise=True,
        sleep=sleep,
    )
    return retrying(fn, *args)


# ---------------------------------------------------------------------------
# Context construction
# ---------------------------------------------------------------------------


def build_ledger_context(
    config: ConsistencyConfig,
    gateway: LedgerGateway | None = None,
) -> LedgerContext:
    """
    Build the per-run LedgerContext from configuration.

    Args:
        config: Active configuration.
        gateway: Gateway to use; defaults to a JsonRpcLedgerGateway on
            ``config.ledger.rpc_url``.
    """
    ledger = config.ledger
    indexing = config.indexing
    if gateway is None:
        gateway = JsonRpcLedgerGateway(
            ledger.rpc_url,
            ledger.contract_address,
            read_timeout_seconds=ledger.read_timeout_seconds,
            confirmation_poll_seconds=ledger.confirmation_poll_seconds,
        )

    return LedgerContext(
        gateway=gateway,
        contract_address=ledger.contract_address,
        chain_id=ledger.chain_id,
        contract_version=ledger.contract_version,
        read_timeout_seconds=ledger.read_timeout_seconds,
        confirmation_timeout_seconds=ledger.confirmation_timeout_seconds,
        retry=RetryPolicy(
            max_attempts=indexing.max_attempts,
            backoff_initial_seconds=indexing.backoff_initial_seconds,
            backoff_max_seconds=indexing.backoff_max_seconds,
        ),
        max_concurrency=indexing.max_concurrency,
        batch_size=indexing.batch_size,
    )
