"""Pure domain types: clock, DTOs, and the ledger surface."""

from campaign_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from campaign_kernel.domain.dtos import (
    CloseReceipt,
    LifecycleAction,
    OnChainCampaign,
    SubmissionInfo,
    SubmissionStatus,
)
from campaign_kernel.domain.ledger import LedgerContext, LedgerGateway, RetryPolicy

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CloseReceipt",
    "LifecycleAction",
    "OnChainCampaign",
    "SubmissionInfo",
    "SubmissionStatus",
    "LedgerContext",
    "LedgerGateway",
    "RetryPolicy",
]
