"""ORM models for the off-chain store."""

from campaign_kernel.models.audit_event import AuditAction, AuditEvent
from campaign_kernel.models.submission import Submission

__all__ = [
    "AuditAction",
    "AuditEvent",
    "Submission",
]
