"""
AuditorService -- append-only audit trail for campaign mutations.

Responsibility:
    Implements the ``AuditSink`` write contract: one append-only event per
    mutation performed by the reconciliation engine or the lifecycle
    controller.  Provides per-submission trace queries and payload-hash
    verification for forensic review.

Architecture position:
    Kernel > Services -- imperative shell, called by ReconciliationService
    and CampaignLifecycleController inside the transaction that performs
    the mutation.

Invariants enforced:
    - Append-only: audit events are never modified or deleted (ORM
      listeners on the AuditEvent model).
    - One event per mutation, flushed in the caller's transaction, so the
      event exists if and only if the mutation committed.
    - payload_hash = H(canonical record fields); verify_payload_hashes()
      recomputes it.

Failure modes:
    - IntegrityError / OperationalError from the database propagate; the
      caller's transaction rolls back together with the mutation.

Audit relevance:
    This IS the audit sink.  Other sinks (message bus, external log store)
    implement AuditSink and can be injected instead.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from campaign_kernel.domain.clock import Clock, SystemClock
from campaign_kernel.logging_config import get_logger
from campaign_kernel.models.audit_event import AuditAction, AuditEvent
from campaign_kernel.utils.hashing import hash_payload

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditRecord:
    """
    One mutation, as handed to an AuditSink.

    timestamp is filled in by the sink from its clock when omitted.
    """

    actor: str
    action: AuditAction
    resource_id: UUID
    previous_state: str | None
    new_state: str | None
    resource_type: str = "Submission"
    tx_id: str | None = None
    reason: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None


class AuditSink(ABC):
    """
    Write contract for the audit trail.

    Contract:
        ``append`` records exactly one event.  Implementations that share
        the caller's transaction make the event atomic with the mutation.
    """

    @abstractmethod
    def append(self, record: AuditRecord) -> None:
        ...


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    action: str
    occurred_at: datetime
    actor: str
    previous_state: str | None
    new_state: str | None
    tx_id: str | None
    reason: str | None
    payload: dict[str, Any]


@dataclass(frozen=True)
class AuditTrace:
    """All audit events for one entity, in chronological order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def last_action(self) -> str | None:
        return self.entries[-1].action if self.entries else None


def _hashed_fields(
    entity_type: str,
    entity_id: UUID,
    action: str,
    actor: str,
    previous_state: str | None,
    new_state: str | None,
    tx_id: str | None,
    reason: str | None,
    payload: dict[str, Any] | None,
) -> dict[str, Any]:
    return {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "action": action,
        "actor": actor,
        "previous_state": previous_state,
        "new_state": new_state,
        "tx_id": tx_id,
        "reason": reason,
        "payload": payload or {},
    }


class AuditorService(AuditSink):
    """
    SQL-backed AuditSink.

    Contract:
        Writes ``AuditEvent`` rows into the caller's session.

    Guarantees:
        - Flushes, never commits.
        - occurred_at comes from the record's timestamp or the injected clock.

    Non-goals:
        - No hash chain across events.  Concurrent transitions on different
          submissions append independently; payload_hash covers each row.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()

    def append(self, record: AuditRecord) -> None:
        action = record.action.value
        payload = dict(record.details)
        payload_hash = hash_payload(
            _hashed_fields(
                record.resource_type,
                record.resource_id,
                action,
                record.actor,
                record.previous_state,
                record.new_state,
                record.tx_id,
                record.reason,
                payload,
            )
        )

        audit_event = AuditEvent(
            entity_type=record.resource_type,
            entity_id=record.resource_id,
            action=action,
            actor=record.actor,
            occurred_at=record.timestamp or self._clock.now(),
            previous_state=record.previous_state,
            new_state=record.new_state,
            tx_id=record.tx_id,
            reason=record.reason,
            payload=payload,
            payload_hash=payload_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": record.resource_type,
                "entity_id": str(record.resource_id),
                "audit_action": action,
                "previous_state": record.previous_state,
                "new_state": record.new_state,
                "tx_id": record.tx_id,
            },
        )

    # Trace and query methods

    def get_trace(
        self,
        entity_id: UUID,
        entity_type: str = "Submission",
    ) -> AuditTrace:
        """Get the complete audit trace for an entity, oldest first."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.occurred_at, AuditEvent.id)
        ).scalars().all()

        entries = tuple(
            AuditTraceEntry(
                action=event.action,
                occurred_at=event.occurred_at,
                actor=event.actor,
                previous_state=event.previous_state,
                new_state=event.new_state,
                tx_id=event.tx_id,
                reason=event.reason,
                payload=event.payload or {},
            )
            for event in events
        )

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=entries,
        )

    def count_for(self, entity_id: UUID, action: AuditAction | None = None) -> int:
        """Number of audit events recorded for an entity."""
        query = select(AuditEvent.id).where(AuditEvent.entity_id == entity_id)
        if action is not None:
            query = query.where(AuditEvent.action == action.value)
        return len(self._session.execute(query).scalars().all())

    def verify_payload_hashes(self) -> tuple[UUID, ...]:
        """
        Recompute every event's payload_hash.

        Returns:
            IDs of events whose stored hash no longer matches their fields.
            Empty when the trail is intact.
        """
        events = self._session.execute(select(AuditEvent)).scalars().all()
        tampered = []
        for event in events:
            expected = hash_payload(
                _hashed_fields(
                    event.entity_type,
                    event.entity_id,
                    event.action,
                    event.actor,
                    event.previous_state,
                    event.new_state,
                    event.tx_id,
                    event.reason,
                    event.payload,
                )
            )
            if expected != event.payload_hash:
                tampered.append(event.id)

        if tampered:
            logger.critical(
                "audit_payload_hash_mismatch",
                extra={"event_ids": [str(i) for i in tampered]},
            )
        else:
            logger.info("audit_payload_hashes_valid", extra={"event_count": len(events)})
        return tuple(tampered)
