"""
Module: campaign_kernel.models.audit_event
Responsibility: ORM persistence for the append-only audit trail of campaign
    mutations.
Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - payload_hash = SHA-256 of the canonical JSON payload, so a row whose
      payload was edited out-of-band is detectable.

Failure modes:
    - ImmutabilityViolationError on any ORM UPDATE/DELETE attempt.

Audit relevance:
    AuditEvent IS the audit trail.  Every lifecycle transition and every
    reconciliation repair produces exactly one AuditEvent, written in the
    same transaction as the change it records.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from campaign_kernel.db.base import Base, UUIDString
from campaign_kernel.exceptions import ImmutabilityViolationError


class AuditAction(str, Enum):
    """Types of auditable actions.

    Contract: Every member represents one class of mutation that MUST be
    recorded.  Adding a new mutation path requires a new member here.
    """

    # Lifecycle transitions
    CAMPAIGN_CLOSED = "campaign_closed"
    CAMPAIGN_DEACTIVATED = "campaign_deactivated"
    CAMPAIGN_REACTIVATED = "campaign_reactivated"

    # Reconciliation
    CAMPAIGN_REPAIRED = "campaign_repaired"


class AuditEvent(Base):
    """
    Append-only audit event.

    Guarantees:
        - previous_state and new_state capture the status (and, for repairs,
          the campaign id) before and after the mutation.
        - tx_id is set only when the mutation followed a ledger transaction.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    # Type of entity being audited (e.g. "Submission")
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    # Who performed the action (operator email, service name)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    previous_state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    new_state: Mapped[str | None] = mapped_column(String(50), nullable=True)

    tx_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Additional context (JSON)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"


@event.listens_for(AuditEvent, "before_update")
def prevent_audit_update(mapper, connection, target):
    """Raises: ImmutabilityViolationError always -- audit rows are append-only."""
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="Audit events are append-only - cannot modify",
    )


@event.listens_for(AuditEvent, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    """Raises: ImmutabilityViolationError always -- audit rows are append-only."""
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="Audit events are append-only - cannot delete",
    )
