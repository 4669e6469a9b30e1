"""
SubmissionStore -- compare-and-set writes to submission records.

Responsibility:
    The only write path for submission rows in this core.  Every update is
    a single ``UPDATE submissions SET ... WHERE id = :id AND <guards>``
    statement whose guards are the values the caller read before deciding.

Architecture position:
    Kernel > Services -- imperative shell, called by ReconciliationService
    and CampaignLifecycleController inside their own short transactions.

Invariants enforced:
    - No lost updates: a write whose guard values no longer match the
      stored row affects zero rows and raises WriteConflict.
    - updated_at is stamped from the injected clock on every write.

Failure modes:
    - WriteConflict when the guarded row changed (or vanished) since read.
    - InputError when the caller tries to guard on or set an unknown column.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from campaign_kernel.domain.clock import Clock, SystemClock
from campaign_kernel.exceptions import InputError, WriteConflict
from campaign_kernel.logging_config import get_logger
from campaign_kernel.models.submission import Submission
from campaign_kernel.services.base import BaseService

logger = get_logger("services.submission_store")

_GUARDABLE = frozenset({"status", "campaign_id", "contract_address"})
_WRITABLE = frozenset({
    "status",
    "campaign_id",
    "contract_address",
    "contract_version",
    "chain_id",
    "visible_on_marketplace",
})


def _plain(value: Any) -> Any:
    # Enums are stored by value
    return getattr(value, "value", value)


class SubmissionStore(BaseService[Submission]):
    """
    Compare-and-set writer for submissions.

    Contract:
        ``compare_and_set(id, expected, changes)`` applies ``changes`` only
        if every column in ``expected`` still holds the expected value
        (``None`` matches SQL NULL).

    Guarantees:
        - Exactly one row is changed, or WriteConflict is raised and no
          row is changed.
        - Flushes only; the caller commits.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def compare_and_set(
        self,
        submission_id: UUID,
        expected: dict[str, Any],
        changes: dict[str, Any],
    ) -> None:
        unknown = (set(expected) - _GUARDABLE) | (set(changes) - _WRITABLE)
        if unknown:
            raise InputError("columns", f"unsupported {sorted(unknown)}")
        if not changes:
            raise InputError("changes", "nothing to write")

        conditions = [Submission.id == submission_id]
        for column_name, value in expected.items():
            column = getattr(Submission, column_name)
            value = _plain(value)
            conditions.append(column.is_(None) if value is None else column == value)

        values = {name: _plain(v) for name, v in changes.items()}
        values["updated_at"] = self._clock.now()

        result = self.session.execute(
            update(Submission)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            plain_expected = {k: _plain(v) for k, v in expected.items()}
            logger.warning(
                "submission_cas_conflict",
                extra={
                    "submission_id": str(submission_id),
                    "expected": plain_expected,
                },
            )
            raise WriteConflict(str(submission_id), plain_expected)

        self.session.flush()
        logger.debug(
            "submission_cas_applied",
            extra={
                "submission_id": str(submission_id),
                "changes": sorted(changes),
            },
        )
