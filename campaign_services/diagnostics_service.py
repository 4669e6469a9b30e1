"""
ConsistencyDiagnostics -- read-only inspection of off-chain / on-chain drift.

Responsibility:
    - check_listing: evaluates the marketplace listing predicate for one
      submission and lists the conditions that do not hold.
    - scan_for_drift: for every minted submission, compares the stored
      campaign id with the campaign the ledger holds at that id.
    - find_unlinked_campaigns: lists on-chain campaigns that no off-chain
      submission references.

Architecture position:
    Services -- imperative shell over the pure checker, the selector, and
    the ledger gateway.

Invariants enforced:
    - No mutation of either store.
    - Per-record ledger read failures (after the retry budget) become that
      entry's anomaly; the scan continues.

Failure modes:
    - check_listing: SubmissionNotFoundError.
    - find_unlinked_campaigns: LedgerReadError when the campaign count
      cannot be read.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from campaign_engines.reconciliation.checker import CampaignReconciliationChecker
from campaign_engines.reconciliation.domain import (
    DriftEntry,
    DriftReport,
    ListingCheck,
    UnlinkedReport,
)
from campaign_kernel.db.engine import session_scope
from campaign_kernel.domain.dtos import SubmissionInfo, SubmissionStatus
from campaign_kernel.domain.ledger import LedgerContext
from campaign_kernel.exceptions import LedgerReadError
from campaign_kernel.logging_config import get_logger
from campaign_kernel.selectors.submission_selector import SubmissionSelector
from campaign_services.ledger_indexer import LedgerIndexer

logger = get_logger("services.diagnostics")


class ConsistencyDiagnostics:
    """Read-only diagnostics over both stores."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        enabled_contracts: Iterable[str] = (),
        indexer: LedgerIndexer | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._enabled_contracts = tuple(enabled_contracts)
        self._indexer = indexer or LedgerIndexer(sleep=sleep)
        self._checker = CampaignReconciliationChecker()

    def check_listing(self, submission_id: UUID) -> ListingCheck:
        """Raises: SubmissionNotFoundError."""
        with session_scope(self._session_factory) as session:
            submission = SubmissionSelector(session).require(submission_id)

        check = self._checker.evaluate_listing(submission, self._enabled_contracts)
        logger.info(
            "listing_checked",
            extra={
                "submission_id": str(submission_id),
                "listable": check.listable,
                "unmet": list(check.unmet),
            },
        )
        return check

    def scan_for_drift(self, ctx: LedgerContext) -> DriftReport:
        with session_scope(self._session_factory) as session:
            minted = SubmissionSelector(session).list_by_status(SubmissionStatus.MINTED)

        workers = max(1, min(ctx.max_concurrency, len(minted) or 1))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            entries = tuple(pool.map(lambda s: self._drift_entry(ctx, s), minted))

        report = DriftReport(entries=entries)
        logger.info(
            "drift_scan_completed",
            extra={"total": report.total, "needs_fix": len(report.needs_fix)},
        )
        return report

    def _drift_entry(self, ctx: LedgerContext, submission: SubmissionInfo) -> DriftEntry:
        if submission.campaign_id is None:
            return self._checker.evaluate_drift(submission)

        try:
            projection = self._indexer.read_one(ctx, submission.campaign_id)
        except LedgerReadError as exc:
            logger.warning(
                "drift_read_failed",
                extra={
                    "submission_id": str(submission.id),
                    "campaign_id": submission.campaign_id,
                    "reason": exc.reason,
                },
            )
            return self._checker.evaluate_drift(submission, error=exc.reason)

        return self._checker.evaluate_drift(submission, projection=projection)

    def find_unlinked_campaigns(self, ctx: LedgerContext) -> UnlinkedReport:
        """Raises: LedgerReadError if the campaign count cannot be read."""
        snapshot = self._indexer.snapshot(ctx)

        with session_scope(self._session_factory) as session:
            referenced = SubmissionSelector(session).referenced_metadata_uris()

        unlinked = self._checker.find_unlinked(snapshot.index, referenced)
        if unlinked:
            logger.warning(
                "unlinked_campaigns_found",
                extra={"campaign_ids": [c.campaign_id for c in unlinked]},
            )
        return UnlinkedReport(
            unlinked=unlinked,
            on_chain_campaigns=snapshot.campaign_count,
            skipped=snapshot.skipped,
            collisions=snapshot.collisions,
        )
