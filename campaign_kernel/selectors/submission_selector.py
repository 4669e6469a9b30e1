"""
Module: campaign_kernel.selectors.submission_selector
Responsibility: Read-only query access to submission records.  Converts ORM
    models to frozen SubmissionInfo DTOs.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only: No mutations performed on any queried data.
    - Multi-record results are ordered by created_at, then id, so batch
      reports are stable across runs.

Failure modes:
    - get() returns None on absence; require() raises SubmissionNotFoundError.
"""

from uuid import UUID

from sqlalchemy import select

from campaign_kernel.domain.dtos import SubmissionInfo, SubmissionStatus
from campaign_kernel.exceptions import SubmissionNotFoundError
from campaign_kernel.models.submission import Submission
from campaign_kernel.selectors.base import BaseSelector


class SubmissionSelector(BaseSelector[Submission]):
    """Selector for submission queries."""

    def get(self, submission_id: UUID) -> SubmissionInfo | None:
        """Get a submission by ID, or None if it does not exist."""
        model = self.session.execute(
            select(Submission).where(Submission.id == submission_id)
        ).scalar_one_or_none()

        if model is None:
            return None
        return SubmissionInfo.from_model(model)

    def require(self, submission_id: UUID) -> SubmissionInfo:
        """
        Get a submission by ID.

        Raises:
            SubmissionNotFoundError: If no submission has this ID.
        """
        info = self.get(submission_id)
        if info is None:
            raise SubmissionNotFoundError(str(submission_id))
        return info

    def list_by_status(self, status: SubmissionStatus) -> list[SubmissionInfo]:
        """All submissions in the given status, oldest first."""
        models = self.session.execute(
            select(Submission)
            .where(Submission.status == status.value)
            .order_by(Submission.created_at, Submission.id)
        ).scalars().all()

        return [SubmissionInfo.from_model(m) for m in models]

    def referenced_metadata_uris(self) -> frozenset[str]:
        """Every non-empty metadata_uri held by any submission, in any status."""
        rows = self.session.execute(
            select(Submission.metadata_uri)
            .where(Submission.metadata_uri.is_not(None))
            .distinct()
        ).scalars().all()

        return frozenset(uri for uri in rows if uri)
