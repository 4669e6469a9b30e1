"""
Campaign services -- imperative shell over the kernel and the pure engines.

    ledger_client          JSON-RPC LedgerGateway, read retry, LedgerContext
    ledger_indexer         LedgerIndexer (on-chain registry snapshot)
    reconciliation_service ReconciliationService (batch + single repair)
    lifecycle_controller   CampaignLifecycleController
    diagnostics_service    ConsistencyDiagnostics
    admin_service          CampaignAdminService (administrative API)
"""

from campaign_services.admin_service import CampaignAdminService, error_response
from campaign_services.diagnostics_service import ConsistencyDiagnostics
from campaign_services.ledger_client import (
    JsonRpcLedgerGateway,
    build_ledger_context,
    read_with_retry,
)
from campaign_services.ledger_indexer import LedgerIndexer
from campaign_services.lifecycle_controller import (
    ON_CHAIN_STILL_CLOSED,
    CampaignLifecycleController,
    TransitionResult,
    TransitionWarning,
)
from campaign_services.reconciliation_service import ReconciliationService

__all__ = [
    "CampaignAdminService",
    "error_response",
    "ConsistencyDiagnostics",
    "JsonRpcLedgerGateway",
    "build_ledger_context",
    "read_with_retry",
    "LedgerIndexer",
    "ON_CHAIN_STILL_CLOSED",
    "CampaignLifecycleController",
    "TransitionResult",
    "TransitionWarning",
    "ReconciliationService",
]
