"""
LedgerIndexer -- read-only snapshot of the on-chain campaign registry.

Responsibility:
    Reads the campaign count n, then the projections of ids 0..n-1, and
    builds a LedgerSnapshot: a CampaignIndex multimap (base_uri ->
    campaigns) plus the ids that could not be read.

Architecture position:
    Services -- imperative shell over the LedgerGateway.  Consumed by
    ReconciliationService and ConsistencyDiagnostics.

Invariants enforced:
    - Never aborts on a single id: a read that still fails after the retry
      budget is skipped and reported in ``snapshot.skipped``.
    - Empty base URIs are unpopulated slots and are not indexed.
    - Duplicate base URIs are kept and reported as collisions.
    - No writes; safe to re-run at any time.

Failure modes:
    - LedgerReadError if the campaign count itself cannot be read within
      the retry budget (nothing can be scanned).
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

from campaign_engines.reconciliation.domain import (
    CampaignIndex,
    LedgerSnapshot,
    SkippedRead,
)
from campaign_kernel.domain.clock import Clock, SystemClock
from campaign_kernel.domain.dtos import OnChainCampaign
from campaign_kernel.domain.ledger import LedgerContext
from campaign_kernel.exceptions import LedgerReadError
from campaign_kernel.logging_config import get_logger
from campaign_services.ledger_client import read_with_retry

logger = get_logger("services.ledger_indexer")


def _chunks(ids: Sequence[int], size: int) -> list[Sequence[int]]:
    return [ids[i:i + size] for i in range(0, len(ids), size)]


class LedgerIndexer:
    """
    Builds LedgerSnapshots.

    Contract:
        ``snapshot(ctx)`` reads the whole registry through ``ctx.gateway``
        with at most ``ctx.max_concurrency`` chunks in flight.

    Guarantees:
        - Every id in 0..n-1 ends up either indexed, dropped as an empty
          slot, or listed in ``skipped``.

    Non-goals:
        - No caching between snapshots.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._clock = clock or SystemClock()
        self._sleep = sleep

    def snapshot(self, ctx: LedgerContext) -> LedgerSnapshot:
        count = read_with_retry(ctx.retry, ctx.gateway.get_campaign_count, sleep=self._sleep)
        ids = list(range(count))

        campaigns: list[OnChainCampaign] = []
        skipped: list[SkippedRead] = []

        chunks = _chunks(ids, ctx.batch_size)
        if chunks:
            workers = max(1, min(ctx.max_concurrency, len(chunks)))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                for chunk_campaigns, chunk_skipped in pool.map(
                    lambda chunk: self._read_chunk(ctx, chunk), chunks
                ):
                    campaigns.extend(chunk_campaigns)
                    skipped.extend(chunk_skipped)

        index = CampaignIndex(campaigns)
        snapshot = LedgerSnapshot(
            index=index,
            campaign_count=count,
            skipped=tuple(sorted(skipped, key=lambda s: s.campaign_id)),
            taken_at=self._clock.now(),
        )

        for uri, campaign_ids in snapshot.collisions.items():
            logger.warning(
                "ledger_base_uri_collision",
                extra={"base_uri": uri, "campaign_ids": list(campaign_ids)},
            )

        logger.info(
            "ledger_snapshot_built",
            extra={
                "campaign_count": count,
                "indexed": len(index),
                "skipped": len(snapshot.skipped),
                "collisions": len(snapshot.collisions),
            },
        )
        return snapshot

    def _read_chunk(
        self,
        ctx: LedgerContext,
        chunk: Sequence[int],
    ) -> tuple[list[OnChainCampaign], list[SkippedRead]]:
        campaigns: list[OnChainCampaign] = []
        skipped: list[SkippedRead] = []

        if ctx.gateway.supports_batch:
            # One batched round-trip; only failed ids are retried individually
            first_pass = ctx.gateway.get_campaign_projections(chunk)
            pending = []
            batch_errors: dict[int, str] = {}
            for cid in chunk:
                outcome = first_pass.get(cid)
                if isinstance(outcome, OnChainCampaign):
                    campaigns.append(outcome)
                else:
                    pending.append(cid)
                    batch_errors[cid] = getattr(outcome, "reason", str(outcome))
            retry_budget = ctx.retry.max_attempts - 1
        else:
            pending = list(chunk)
            batch_errors = {}
            retry_budget = ctx.retry.max_attempts

        for cid in pending:
            if retry_budget < 1:
                skipped.append(SkippedRead(cid, batch_errors[cid], ctx.retry.max_attempts))
                continue
            try:
                campaigns.append(self.read_one(ctx, cid, attempts=retry_budget))
            except LedgerReadError as exc:
                logger.warning(
                    "ledger_read_skipped",
                    extra={"campaign_id": cid, "reason": exc.reason},
                )
                skipped.append(SkippedRead(cid, exc.reason, ctx.retry.max_attempts))

        return campaigns, skipped

    def read_one(
        self,
        ctx: LedgerContext,
        campaign_id: int,
        attempts: int | None = None,
    ) -> OnChainCampaign:
        """
        Read one projection under the retry policy.

        Raises:
            LedgerReadError: after the retry budget is exhausted.
        """
        policy = ctx.retry
        if attempts is not None and attempts != policy.max_attempts:
            policy = replace(policy, max_attempts=attempts)
        return read_with_retry(
            policy,
            ctx.gateway.get_campaign_projection,
            campaign_id,
            sleep=self._sleep,
        )
