"""
ReconciliationService -- classify and repair drift between submissions and the ledger.

Responsibility:
    Orchestrates the LedgerIndexer snapshot, the pure
    CampaignReconciliationChecker, compare-and-set repairs through
    SubmissionStore, and one audit event per repair.

Architecture position:
    Services -- imperative shell.  Calls the indexer (network), the checker
    (pure), and the store + audit sink (database).

Invariants enforced:
    - Join on metadata_uri: a matched record gets the index's campaign id
      regardless of its stored value.
    - ORPHAN and COLLISION records are never written.
    - Per-record isolation: each repair runs in its own short transaction;
      a failure becomes that record's ERROR result and the run continues.
    - Idempotence: a second run with no ledger change writes nothing.
    - Each repair is guarded on the (status, campaign_id) that was read.
    - No database transaction is open while the ledger is being read.

Failure modes:
    - run_reconciliation: none fatal.  An unreadable campaign count yields
      an empty report carrying ``error``; per-record failures are embedded
      in the results.
    - repair_single: SubmissionNotFoundError, MissingJoinKeyError,
      CampaignNotFoundError, AmbiguousCampaignError, InactiveCampaignError,
      LedgerReadError, WriteConflict.

Audit relevance:
    Every FIXED record and every single-record repair that writes appends
    one ``campaign_repaired`` event in the same transaction as the write.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from campaign_engines.reconciliation.checker import CampaignReconciliationChecker
from campaign_engines.reconciliation.domain import (
    Classification,
    Decision,
    LedgerSnapshot,
    ReconciliationReport,
    ReconciliationResult,
    ReconciliationSummary,
    RepairOutcome,
)
from campaign_kernel.db.engine import session_scope
from campaign_kernel.domain.clock import Clock, SystemClock
from campaign_kernel.domain.dtos import OnChainCampaign, SubmissionInfo, SubmissionStatus
from campaign_kernel.domain.ledger import LedgerContext
from campaign_kernel.exceptions import (
    CampaignKernelError,
    LedgerReadError,
    MissingJoinKeyError,
    WriteConflict,
)
from campaign_kernel.logging_config import LogContext, get_logger
from campaign_kernel.models.audit_event import AuditAction
from campaign_kernel.selectors.submission_selector import SubmissionSelector
from campaign_kernel.services.auditor_service import AuditorService, AuditRecord, AuditSink
from campaign_kernel.services.submission_store import SubmissionStore
from campaign_services.ledger_indexer import LedgerIndexer

logger = get_logger("services.reconciliation")

AuditSinkFactory = Callable[[Session], AuditSink]

SYSTEM_ACTOR = "system:reconciliation"


class ReconciliationService:
    """
    Batch and single-record reconciliation.

    Contract:
        Receives a sessionmaker, not a session: it opens one short
        transaction to read, performs ledger I/O with no transaction open,
        then one short transaction per repair.

    Guarantees:
        - A FIXED result means the write and its audit event committed.
        - Success is never reported for a partial repair.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        indexer: LedgerIndexer | None = None,
        audit_sink_factory: AuditSinkFactory | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._indexer = indexer or LedgerIndexer(clock=self._clock)
        self._checker = CampaignReconciliationChecker()
        self._audit_sink_factory = audit_sink_factory or (
            lambda session: AuditorService(session, self._clock)
        )

    # -----------------------------------------------------------------
    # Batch
    # -----------------------------------------------------------------

    def run_reconciliation(
        self,
        ctx: LedgerContext,
        actor: str = SYSTEM_ACTOR,
    ) -> ReconciliationReport:
        """Classify every minted submission and repair MISMATCH records."""
        t0 = time.monotonic()
        run_id = str(uuid4())

        with LogContext.bind(run_id=run_id, actor=actor):
            logger.info("reconciliation_started")
            try:
                snapshot = self._indexer.snapshot(ctx)
            except LedgerReadError as exc:
                logger.error("reconciliation_aborted", exc_info=True)
                return ReconciliationReport(
                    summary=ReconciliationSummary.from_results(()),
                    results=(),
                    on_chain_campaigns=0,
                    duration_seconds=round(time.monotonic() - t0, 3),
                    error=str(exc),
                )

            with session_scope(self._session_factory) as session:
                minted = SubmissionSelector(session).list_by_status(SubmissionStatus.MINTED)

            decisions = self._checker.classify_all(
                submissions=minted,
                index=snapshot.index,
                skipped_ids=snapshot.skipped_ids,
            )

            results = []
            for submission, decision in decisions:
                with LogContext.bind(submission_id=str(submission.id)):
                    results.append(
                        self._reconcile_one(ctx, snapshot, submission, decision, actor)
                    )

            report = ReconciliationReport(
                summary=ReconciliationSummary.from_results(results),
                results=tuple(results),
                on_chain_campaigns=snapshot.campaign_count,
                skipped=snapshot.skipped,
                collisions=snapshot.collisions,
                duration_seconds=round(time.monotonic() - t0, 3),
            )

            logger.info(
                "reconciliation_completed",
                extra={
                    **report.summary.to_dict(),
                    "on_chain_campaigns": report.on_chain_campaigns,
                    "skipped_ids": list(report.skipped_ids),
                    "duration_seconds": report.duration_seconds,
                },
            )
            return report

    def _reconcile_one(
        self,
        ctx: LedgerContext,
        snapshot: LedgerSnapshot,
        submission: SubmissionInfo,
        decision: Decision,
        actor: str,
    ) -> ReconciliationResult:
        if not decision.needs_write:
            if decision.classification in (Classification.ORPHAN, Classification.COLLISION):
                logger.warning(
                    "reconciliation_unrepairable",
                    extra={
                        "classification": decision.classification.value,
                        "metadata_uri": submission.metadata_uri,
                        "campaign_id": submission.campaign_id,
                        "candidates": list(decision.candidates),
                    },
                )
            return self._result(submission, decision.classification, decision.detail,
                                decision=decision)

        target = decision.target
        try:
            self._write_repair(
                ctx, submission, target, actor,
                changes={
                    "campaign_id": target.campaign_id,
                    "contract_address": ctx.contract_address,
                },
                mode="batch",
            )
        except WriteConflict as exc:
            return self._reclassify_after_conflict(snapshot, submission, exc)
        except (CampaignKernelError, SQLAlchemyError) as exc:
            logger.error(
                "reconciliation_repair_failed",
                extra={"campaign_id": target.campaign_id, "error": str(exc)},
            )
            return self._result(
                submission, Classification.ERROR, f"repair failed: {exc}",
                resolved=target.campaign_id,
            )

        logger.info(
            "reconciliation_record_fixed",
            extra={
                "previous_campaign_id": submission.campaign_id,
                "campaign_id": target.campaign_id,
            },
        )
        return self._result(
            submission,
            Classification.FIXED,
            f"campaign_id {submission.campaign_id} -> {target.campaign_id}",
            resolved=target.campaign_id,
        )

    def _reclassify_after_conflict(
        self,
        snapshot: LedgerSnapshot,
        submission: SubmissionInfo,
        conflict: WriteConflict,
    ) -> ReconciliationResult:
        try:
            with session_scope(self._session_factory) as session:
                fresh = SubmissionSelector(session).get(submission.id)
        except SQLAlchemyError as exc:
            return self._result(
                submission, Classification.ERROR, f"re-read after conflict failed: {exc}"
            )

        if fresh is None:
            return self._result(
                submission, Classification.ERROR, "submission vanished during repair"
            )

        decision = self._checker.classify(fresh, snapshot.index, snapshot.skipped_ids)
        if decision.classification == Classification.VALID:
            logger.info("reconciliation_converged_concurrently")
            return self._result(
                fresh, Classification.VALID, "converged with a concurrent repair",
                decision=decision,
            )

        return self._result(
            fresh,
            Classification.ERROR,
            f"write conflict: {conflict}; now {decision.classification.value}",
            resolved=decision.target.campaign_id if decision.target else None,
            previous=submission.campaign_id,
        )

    @staticmethod
    def _result(
        submission: SubmissionInfo,
        classification: Classification,
        detail: str,
        decision: Decision | None = None,
        resolved: int | None = None,
        previous: int | None = None,
    ) -> ReconciliationResult:
        if decision is not None and decision.target is not None and resolved is None:
            resolved = decision.target.campaign_id
        return ReconciliationResult(
            submission_id=submission.id,
            classification=classification,
            detail=detail,
            title=submission.title,
            metadata_uri=submission.metadata_uri,
            resolved_campaign_id=resolved,
            previous_campaign_id=submission.campaign_id if previous is None else previous,
            candidates=decision.candidates if decision is not None else (),
        )

    # -----------------------------------------------------------------
    # Single record
    # -----------------------------------------------------------------

    def repair_single(
        self,
        ctx: LedgerContext,
        submission_id: UUID,
        actor: str,
    ) -> RepairOutcome:
        """
        Link one submission to the active campaign carrying its metadata URI.

        A submission still in ``approved`` is promoted to ``minted`` and made
        visible.  Status and visibility of closed or deactivated records are
        left alone.

        Raises:
            SubmissionNotFoundError, MissingJoinKeyError, CampaignNotFoundError,
            AmbiguousCampaignError, InactiveCampaignError, LedgerReadError,
            WriteConflict.
        """
        with LogContext.bind(actor=actor, submission_id=str(submission_id), action="repair"):
            with session_scope(self._session_factory) as session:
                submission = SubmissionSelector(session).require(submission_id)

            if not submission.has_join_key:
                raise MissingJoinKeyError(str(submission_id))

            snapshot = self._indexer.snapshot(ctx)
            target = self._checker.resolve_repair_target(
                submission, snapshot.index, searched=snapshot.campaign_count
            )

            if self._is_linked(submission, target):
                logger.info(
                    "repair_already_linked",
                    extra={"campaign_id": target.campaign_id},
                )
                return self._outcome(submission, target, already_linked=True)

            changes: dict = {
                "campaign_id": target.campaign_id,
                "contract_address": ctx.contract_address,
            }
            new_status = submission.status
            if submission.status == SubmissionStatus.APPROVED:
                new_status = SubmissionStatus.MINTED
                changes["status"] = new_status
                changes["visible_on_marketplace"] = True

            try:
                self._write_repair(ctx, submission, target, actor, changes, mode="single",
                                   new_status=new_status)
            except WriteConflict:
                with session_scope(self._session_factory) as session:
                    fresh = SubmissionSelector(session).require(submission_id)
                if self._is_linked(fresh, target):
                    logger.info("repair_converged_concurrently")
                    return self._outcome(fresh, target, already_linked=True)
                raise

            logger.info(
                "repair_applied",
                extra={
                    "previous_campaign_id": submission.campaign_id,
                    "campaign_id": target.campaign_id,
                    "previous_status": submission.status.value,
                    "new_status": new_status.value,
                },
            )
            return RepairOutcome(
                submission_id=submission.id,
                old_campaign_id=submission.campaign_id,
                new_campaign_id=target.campaign_id,
                projection=target,
                already_linked=False,
                previous_status=submission.status.value,
                new_status=new_status.value,
            )

    @staticmethod
    def _is_linked(submission: SubmissionInfo, target: OnChainCampaign) -> bool:
        return (
            submission.campaign_id == target.campaign_id
            and submission.status != SubmissionStatus.APPROVED
        )

    @staticmethod
    def _outcome(
        submission: SubmissionInfo,
        target: OnChainCampaign,
        already_linked: bool,
    ) -> RepairOutcome:
        return RepairOutcome(
            submission_id=submission.id,
            old_campaign_id=submission.campaign_id,
            new_campaign_id=target.campaign_id,
            projection=target,
            already_linked=already_linked,
            previous_status=submission.status.value,
            new_status=submission.status.value,
        )

    # -----------------------------------------------------------------
    # Write path
    # -----------------------------------------------------------------

    def _write_repair(
        self,
        ctx: LedgerContext,
        submission: SubmissionInfo,
        target: OnChainCampaign,
        actor: str,
        changes: dict,
        mode: str,
        new_status: SubmissionStatus | None = None,
    ) -> None:
        """CAS-write the repair and its audit event in one transaction."""
        with session_scope(self._session_factory) as session:
            SubmissionStore(session, self._clock).compare_and_set(
                submission.id,
                expected={
                    "status": submission.status,
                    "campaign_id": submission.campaign_id,
                },
                changes=changes,
            )
            self._audit_sink_factory(session).append(
                AuditRecord(
                    actor=actor,
                    action=AuditAction.CAMPAIGN_REPAIRED,
                    resource_id=submission.id,
                    previous_state=submission.status.value,
                    new_state=(new_status or submission.status).value,
                    details={
                        "mode": mode,
                        "old_campaign_id": submission.campaign_id,
                        "new_campaign_id": target.campaign_id,
                        "metadata_uri": submission.metadata_uri,
                        "contract_address": ctx.contract_address,
                        "on_chain_active": target.active,
                    },
                )
            )
