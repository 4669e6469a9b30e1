"""Kernel write services: audit sink and compare-and-set submission store."""

from campaign_kernel.services.auditor_service import (
    AuditorService,
    AuditRecord,
    AuditSink,
    AuditTrace,
    AuditTraceEntry,
)
from campaign_kernel.services.base import BaseService
from campaign_kernel.services.submission_store import SubmissionStore

__all__ = [
    "AuditorService",
    "AuditRecord",
    "AuditSink",
    "AuditTrace",
    "AuditTraceEntry",
    "BaseService",
    "SubmissionStore",
]
