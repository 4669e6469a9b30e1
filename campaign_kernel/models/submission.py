"""
Module: campaign_kernel.models.submission
Responsibility: ORM persistence for off-chain campaign submission records.
Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions.py only.

Invariants enforced:
    - A minted submission carries the campaign_id whose on-chain base URI
      equals metadata_uri (checked by reconciliation, not by the database).
    - Submissions are never deleted by this core (ORM before_delete listener).
    - status is stored as its string value; SubmissionStatus is the domain
      type.

Failure modes:
    - ImmutabilityViolationError on any ORM DELETE attempt.

Audit relevance:
    Every mutation of status, campaign_id, or contract_address made by this
    core goes through SubmissionStore.compare_and_set and is mirrored by one
    AuditEvent in the same transaction.
"""

from sqlalchemy import Boolean, Index, Integer, String, event
from sqlalchemy.orm import Mapped, mapped_column

from campaign_kernel.db.base import TrackedBase
from campaign_kernel.domain.dtos import SubmissionStatus
from campaign_kernel.exceptions import ImmutabilityViolationError


class Submission(TrackedBase):
    """
    Off-chain campaign submission.

    Contract:
        Created upstream when a proposal is approved.  campaign_id and
        metadata_uri are populated at mint time.  This core mutates rows
        only through compare-and-set updates.

    Non-goals:
        - Does NOT hold funding totals or sold counts; the ledger is
          authoritative for those.
    """

    __tablename__ = "submissions"

    __table_args__ = (
        Index("idx_submission_status", "status"),
        Index("idx_submission_metadata_uri", "metadata_uri"),
        Index("idx_submission_campaign", "campaign_id"),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)

    # Foreign reference into the ledger; null until minted
    campaign_id: Mapped[int | None] = mapped_column(nullable=True)

    # Join key against OnChainCampaign.base_uri
    metadata_uri: Mapped[str | None] = mapped_column(String(512), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SubmissionStatus.PENDING.value,
    )

    contract_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    contract_version: Mapped[str | None] = mapped_column(String(20), nullable=True)
    chain_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    visible_on_marketplace: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    def __repr__(self) -> str:
        return (
            f"<Submission {self.id} status={self.status} "
            f"campaign_id={self.campaign_id}>"
        )


@event.listens_for(Submission, "before_delete")
def prevent_submission_delete(mapper, connection, target):
    """Prevent deletion of Submission records.

    Raises: ImmutabilityViolationError always -- records are deactivated,
        never deleted.
    """
    raise ImmutabilityViolationError(
        entity_type="Submission",
        entity_id=str(target.id),
        reason="Submissions are never deleted - deactivate instead",
    )
