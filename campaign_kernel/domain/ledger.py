"""
Ledger -- the consumed on-chain surface and the per-run ledger context.

Responsibility:
    Declares ``LedgerGateway`` (the read/write surface of the campaign
    contract this core consumes), ``RetryPolicy`` (bounded retry budget for
    ledger reads), and ``LedgerContext`` (gateway + timeouts + chain
    configuration + retry policy) that is constructed once per run or
    process and passed explicitly into every engine operation.

Architecture position:
    Kernel > Domain -- interface definitions only, zero I/O.  The concrete
    JSON-RPC gateway lives in ``campaign_services.ledger_client``; the test
    gateway lives in ``tests/conftest.py``.

Invariants enforced:
    - No module-level ledger client: every operation receives its
      LedgerContext as an argument.
    - get_campaign_projections() returns one entry per requested id; a
      failed id maps to the exception that caused it instead of raising.

Failure modes:
    - get_campaign_count / get_campaign_projection raise LedgerReadError.
    - close_campaign raises LedgerWriteError when the transaction is
      rejected or cannot be submitted.  An unconfirmed transaction is
      returned as ``CloseReceipt(confirmed=False)``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field

from campaign_kernel.domain.dtos import CloseReceipt, OnChainCampaign
from campaign_kernel.exceptions import LedgerReadError


class LedgerGateway(ABC):
    """
    Consumed ledger surface.

    Contract:
        Implementations are safe to share across threads for reads.

    Non-goals:
        - No retry logic: retries are applied by the caller under the
          context's RetryPolicy.
        - No reopen capability: a closed campaign stays closed.
    """

    supports_batch: bool = False

    @abstractmethod
    def get_campaign_count(self) -> int:
        """Number of campaign ids ever assigned (ids are 0..n-1)."""
        ...

    @abstractmethod
    def get_campaign_projection(self, campaign_id: int) -> OnChainCampaign:
        """Read one campaign.  Raises LedgerReadError on failure."""
        ...

    def get_campaign_projections(
        self, campaign_ids: Iterable[int]
    ) -> dict[int, OnChainCampaign | Exception]:
        """
        Read several campaigns.

        The default reads one id at a time.  Gateways that set
        ``supports_batch`` override this with a single batched round-trip.
        """
        results: dict[int, OnChainCampaign | Exception] = {}
        for campaign_id in campaign_ids:
            try:
                results[campaign_id] = self.get_campaign_projection(campaign_id)
            except LedgerReadError as exc:
                results[campaign_id] = exc
        return results

    @abstractmethod
    def close_campaign(self, campaign_id: int, timeout: float) -> CloseReceipt:
        """Submit a close transaction and wait up to ``timeout`` seconds."""
        ...


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry budget for ledger reads.

    Guarantees:
        - At most ``max_attempts`` calls per read.
        - Exponential backoff starting at ``backoff_initial_seconds`` and
          capped at ``backoff_max_seconds``.
    """

    max_attempts: int = 3
    backoff_initial_seconds: float = 0.5
    backoff_max_seconds: float = 8.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_initial_seconds < 0 or self.backoff_max_seconds < 0:
            raise ValueError("backoff seconds must be non-negative")


@dataclass(frozen=True)
class LedgerContext:
    """
    Per-run ledger handle.

    Contract:
        Constructed once per run/process (see
        ``campaign_services.ledger_client.build_ledger_context``) and
        passed into every engine operation.

    Guarantees:
        Immutable; safe to share across worker threads.
    """

    gateway: LedgerGateway
    contract_address: str
    chain_id: int
    contract_version: str | None = None
    read_timeout_seconds: float = 10.0
    confirmation_timeout_seconds: float = 120.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    max_concurrency: int = 8
    batch_size: int = 50
