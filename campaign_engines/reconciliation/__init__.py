"""
Reconciliation - pure domain objects and checker for campaign drift.

The stateful services that read the ledger and write repairs live in
campaign_services (ledger_indexer, reconciliation_service,
diagnostics_service).
"""

from campaign_engines.reconciliation.domain import (
    CampaignIndex,
    Classification,
    Decision,
    DriftEntry,
    DriftReport,
    LedgerSnapshot,
    ListingCheck,
    ReconciliationReport,
    ReconciliationResult,
    ReconciliationSummary,
    RepairOutcome,
    SkippedRead,
    UnlinkedReport,
)
from campaign_engines.reconciliation.checker import (
    LISTING_CONTRACT_NOT_ENABLED,
    LISTING_MISSING_CAMPAIGN_ID,
    LISTING_MISSING_CONTRACT,
    LISTING_NOT_VISIBLE,
    LISTING_STATUS_NOT_MINTED,
    NO_STORED_CAMPAIGN_ID,
    CampaignReconciliationChecker,
)

__all__ = [
    "CampaignIndex",
    "Classification",
    "Decision",
    "DriftEntry",
    "DriftReport",
    "LedgerSnapshot",
    "ListingCheck",
    "ReconciliationReport",
    "ReconciliationResult",
    "ReconciliationSummary",
    "RepairOutcome",
    "SkippedRead",
    "UnlinkedReport",
    "CampaignReconciliationChecker",
    "LISTING_CONTRACT_NOT_ENABLED",
    "LISTING_MISSING_CAMPAIGN_ID",
    "LISTING_MISSING_CONTRACT",
    "LISTING_NOT_VISIBLE",
    "LISTING_STATUS_NOT_MINTED",
    "NO_STORED_CAMPAIGN_ID",
]
