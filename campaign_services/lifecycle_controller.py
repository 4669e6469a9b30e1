"""
CampaignLifecycleController -- close / deactivate / reactivate transitions.

Responsibility:
    Executes administrative lifecycle transitions on a submission while
    keeping the off-chain store coherent with the ledger under partial
    failure and concurrent administration.

Architecture position:
    Services -- imperative shell.  Reads and writes the off-chain store
    through short transactions and calls the ledger write surface for
    ``close``.

Invariants enforced:
    - Fail-closed close: the off-chain status becomes ``closed`` only after
      the ledger confirmed the close transaction.  Any ledger failure
      leaves the submission untouched.
    - The ledger call is the last step before the off-chain write; every
      off-chain precondition is checked first, and it is never repeated.
    - Read-decide-write is fenced by compare-and-set on the status and
      campaign_id read.  A lost race re-reads and re-decides, up to
      ``cas_max_attempts``.
    - After a confirmed close, a retry only writes while the record is
      still linked to the closed campaign.
    - Exactly one audit event per successful transition, on every branch,
      in the same transaction as the status write.
    - No database transaction is open during the ledger round-trip.

Failure modes:
    - InvalidActionError / InputError: malformed request.
    - SubmissionNotFoundError: unknown submission.
    - MissingCampaignIdError: close on a submission with no campaign_id.
    - LedgerWriteError: close failed, reverted, or was not confirmed.
    - WriteConflict: CAS budget exhausted, or the record was unlinked from
      the campaign after it closed on-chain (carries tx_id after a close).

Audit relevance:
    campaign_closed / campaign_deactivated / campaign_reactivated events
    carry previous and new status, tx_id, reason and any warning.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from campaign_kernel.db.engine import session_scope
from campaign_kernel.domain.clock import Clock, SystemClock
from campaign_kernel.domain.dtos import LifecycleAction, SubmissionInfo, SubmissionStatus
from campaign_kernel.domain.ledger import LedgerContext
from campaign_kernel.exceptions import (
    InputError,
    InvalidActionError,
    LedgerWriteError,
    MissingCampaignIdError,
    WriteConflict,
)
from campaign_kernel.logging_config import LogContext, get_logger
from campaign_kernel.models.audit_event import AuditAction
from campaign_kernel.selectors.submission_selector import SubmissionSelector
from campaign_kernel.services.auditor_service import AuditorService, AuditRecord, AuditSink
from campaign_kernel.services.submission_store import SubmissionStore

logger = get_logger("services.lifecycle")

ON_CHAIN_STILL_CLOSED = "ON_CHAIN_STILL_CLOSED"

_AUDIT_ACTIONS = {
    LifecycleAction.CLOSE: AuditAction.CAMPAIGN_CLOSED,
    LifecycleAction.DEACTIVATE: AuditAction.CAMPAIGN_DEACTIVATED,
    LifecycleAction.REACTIVATE: AuditAction.CAMPAIGN_REACTIVATED,
}


@dataclass(frozen=True)
class TransitionWarning:
    """A deliberate inconsistency the caller must see."""

    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of one committed lifecycle transition."""

    submission_id: UUID
    action: LifecycleAction
    previous_status: SubmissionStatus
    new_status: SubmissionStatus
    tx_id: str | None = None
    warnings: tuple[TransitionWarning, ...] = ()
    attempts: int = 1

    @property
    def warning_codes(self) -> tuple[str, ...]:
        return tuple(w.code for w in self.warnings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "submissionId": str(self.submission_id),
            "action": self.action.value,
            "previousStatus": self.previous_status.value,
            "newStatus": self.new_status.value,
            "txId": self.tx_id,
            "warnings": [w.to_dict() for w in self.warnings],
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class _Plan:
    new_status: SubmissionStatus
    warnings: tuple[TransitionWarning, ...] = ()


def parse_action(action: LifecycleAction | str) -> LifecycleAction:
    """Raises: InvalidActionError for anything but close/deactivate/reactivate."""
    if isinstance(action, LifecycleAction):
        return action
    try:
        return LifecycleAction(str(action).strip().lower())
    except ValueError as exc:
        raise InvalidActionError(str(action), LifecycleAction.values()) from exc


class CampaignLifecycleController:
    """
    Executes lifecycle transitions.

    Contract:
        ``execute`` either commits exactly one status write plus one audit
        event and returns a TransitionResult, or raises and leaves the
        submission as it found it (except that a confirmed on-chain close
        cannot be undone; see WriteConflict.tx_id).

    Non-goals:
        - No on-chain reopen.  Reactivating a closed campaign restores the
          off-chain status only and carries ON_CHAIN_STILL_CLOSED.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        cas_max_attempts: int = 3,
        audit_sink_factory: Callable[[Session], AuditSink] | None = None,
    ):
        if cas_max_attempts < 1:
            raise ValueError("cas_max_attempts must be at least 1")
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._cas_max_attempts = cas_max_attempts
        self._audit_sink_factory = audit_sink_factory or (
            lambda session: AuditorService(session, self._clock)
        )

    def execute(
        self,
        ctx: LedgerContext,
        submission_id: UUID,
        action: LifecycleAction | str,
        actor: str,
        reason: str | None = None,
    ) -> TransitionResult:
        lifecycle_action = parse_action(action)
        if not actor or not actor.strip():
            raise InputError("actor", "is required")

        with LogContext.bind(
            actor=actor,
            submission_id=str(submission_id),
            action=lifecycle_action.value,
        ):
            return self._execute(ctx, submission_id, lifecycle_action, actor, reason)

    def _execute(
        self,
        ctx: LedgerContext,
        submission_id: UUID,
        action: LifecycleAction,
        actor: str,
        reason: str | None,
    ) -> TransitionResult:
        tx_id: str | None = None
        closed_campaign_id: int | None = None
        expected: dict[str, Any] = {}

        for attempt in range(1, self._cas_max_attempts + 1):
            with session_scope(self._session_factory) as session:
                submission = SubmissionSelector(session).require(submission_id)

            expected = {
                "status": submission.status.value,
                "campaign_id": submission.campaign_id,
            }

            if tx_id is not None and submission.campaign_id != closed_campaign_id:
                logger.error(
                    "lifecycle_close_unlinked",
                    extra={
                        "tx_id": tx_id,
                        "closed_campaign_id": closed_campaign_id,
                        "campaign_id": submission.campaign_id,
                        "attempts": attempt,
                    },
                )
                raise WriteConflict(
                    str(submission_id), expected, attempts=attempt, tx_id=tx_id
                )

            plan = self._decide(submission, action)

            if action == LifecycleAction.CLOSE and tx_id is None:
                tx_id = self._close_on_chain(ctx, submission)
                closed_campaign_id = submission.campaign_id

            try:
                self._write(submission, action, plan, actor, reason, tx_id, attempt)
            except WriteConflict:
                logger.warning(
                    "lifecycle_cas_retry",
                    extra={
                        "attempt": attempt,
                        "status_read": submission.status.value,
                        "campaign_id_read": submission.campaign_id,
                        "tx_id": tx_id,
                    },
                )
                continue

            logger.info(
                "lifecycle_transition_applied",
                extra={
                    "previous_status": submission.status.value,
                    "new_status": plan.new_status.value,
                    "tx_id": tx_id,
                    "warnings": [w.code for w in plan.warnings],
                    "attempts": attempt,
                },
            )
            return TransitionResult(
                submission_id=submission.id,
                action=action,
                previous_status=submission.status,
                new_status=plan.new_status,
                tx_id=tx_id,
                warnings=plan.warnings,
                attempts=attempt,
            )

        logger.error(
            "lifecycle_cas_exhausted",
            extra={"attempts": self._cas_max_attempts, "tx_id": tx_id},
        )
        raise WriteConflict(
            str(submission_id),
            expected,
            attempts=self._cas_max_attempts,
            tx_id=tx_id,
        )

    def _decide(self, submission: SubmissionInfo, action: LifecycleAction) -> _Plan:
        if action == LifecycleAction.CLOSE:
            if submission.campaign_id is None:
                raise MissingCampaignIdError(str(submission.id), action.value)
            return _Plan(SubmissionStatus.CLOSED)

        if action == LifecycleAction.DEACTIVATE:
            return _Plan(SubmissionStatus.DEACTIVATED)

        if submission.campaign_id is None:
            return _Plan(SubmissionStatus.APPROVED)

        if submission.status == SubmissionStatus.CLOSED:
            return _Plan(
                SubmissionStatus.MINTED,
                warnings=(
                    TransitionWarning(
                        ON_CHAIN_STILL_CLOSED,
                        f"on-chain campaign {submission.campaign_id} remains closed; "
                        "only the off-chain status was restored",
                    ),
                ),
            )
        return _Plan(SubmissionStatus.MINTED)

    def _close_on_chain(self, ctx: LedgerContext, submission: SubmissionInfo) -> str:
        campaign_id = submission.campaign_id
        logger.info("lifecycle_close_on_chain", extra={"campaign_id": campaign_id})
        try:
            receipt = ctx.gateway.close_campaign(
                campaign_id, ctx.confirmation_timeout_seconds
            )
        except LedgerWriteError:
            logger.error(
                "lifecycle_close_failed",
                extra={"campaign_id": campaign_id},
                exc_info=True,
            )
            raise

        if not receipt.confirmed:
            logger.error(
                "lifecycle_close_unconfirmed",
                extra={"campaign_id": campaign_id, "tx_id": receipt.tx_id},
            )
            raise LedgerWriteError(
                campaign_id,
                f"not confirmed within {ctx.confirmation_timeout_seconds}s",
                tx_id=receipt.tx_id,
            )
        return receipt.tx_id

    def _write(
        self,
        submission: SubmissionInfo,
        action: LifecycleAction,
        plan: _Plan,
        actor: str,
        reason: str | None,
        tx_id: str | None,
        attempt: int,
    ) -> None:
        """CAS-write the status and its audit event in one transaction."""
        with session_scope(self._session_factory) as session:
            SubmissionStore(session, self._clock).compare_and_set(
                submission.id,
                expected={
                    "status": submission.status,
                    "campaign_id": submission.campaign_id,
                },
                changes={"status": plan.new_status},
            )
            self._audit_sink_factory(session).append(
                AuditRecord(
                    actor=actor,
                    action=_AUDIT_ACTIONS[action],
                    resource_id=submission.id,
                    previous_state=submission.status.value,
                    new_state=plan.new_status.value,
                    tx_id=tx_id,
                    reason=reason,
                    details={
                        "campaign_id": submission.campaign_id,
                        "warnings": [w.code for w in plan.warnings],
                        "attempt": attempt,
                    },
                )
            )
