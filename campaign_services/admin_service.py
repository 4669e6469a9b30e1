"""
CampaignAdminService -- administrative API surface.

Responsibility:
    Validates camelCase request payloads, dispatches to the reconciliation
    service, lifecycle controller, and diagnostics, and renders camelCase
    response payloads.  ``error_response`` renders any CampaignKernelError
    as ``{"error": code, "message": ..., **attributes}``.

Architecture position:
    Services -- outermost service; called by ``scripts.cli`` and by any
    HTTP layer mounted on top.  Authentication and authorization happen
    before this layer.

Failure modes:
    - Single-record operations (lifecycle, repairSingle, checkListing)
      raise typed errors synchronously.
    - Batch operations (runReconciliation, scanForDrift) embed per-record
      errors in their payloads.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from campaign_config.schema import ConsistencyConfig
from campaign_kernel.domain.clock import Clock, SystemClock
from campaign_kernel.domain.ledger import LedgerContext, LedgerGateway
from campaign_kernel.exceptions import CampaignKernelError, InputError
from campaign_kernel.logging_config import get_logger
from campaign_services.diagnostics_service import ConsistencyDiagnostics
from campaign_services.ledger_client import build_ledger_context
from campaign_services.ledger_indexer import LedgerIndexer
from campaign_services.lifecycle_controller import CampaignLifecycleController
from campaign_services.reconciliation_service import SYSTEM_ACTOR, ReconciliationService

logger = get_logger("services.admin")


def parse_submission_id(request: dict[str, Any] | None) -> UUID:
    """Raises: InputError when submissionId is missing or not a UUID."""
    if not isinstance(request, dict):
        raise InputError("request", "must be an object")
    raw = request.get("submissionId")
    if raw is None or raw == "":
        raise InputError("submissionId", "is required")
    try:
        return raw if isinstance(raw, UUID) else UUID(str(raw))
    except ValueError as exc:
        raise InputError("submissionId", f"{raw!r} is not a UUID") from exc


def error_response(exc: CampaignKernelError) -> dict[str, Any]:
    """Render a typed error with its machine-readable code and attributes."""
    body: dict[str, Any] = {"error": exc.code, "message": str(exc)}
    for key, value in vars(exc).items():
        if key.startswith("_"):
            continue
        if isinstance(value, tuple):
            value = list(value)
        elif isinstance(value, UUID):
            value = str(value)
        body[key] = value
    return body


class CampaignAdminService:
    """
    Administrative operations over a single LedgerContext.

    Contract:
        Requests and responses are plain dicts with camelCase keys.
    """

    def __init__(
        self,
        ctx: LedgerContext,
        session_factory: sessionmaker[Session],
        *,
        enabled_contracts: tuple[str, ...] = (),
        cas_max_attempts: int = 3,
        clock: Clock | None = None,
        indexer: LedgerIndexer | None = None,
    ):
        self.ctx = ctx
        clock = clock or SystemClock()
        indexer = indexer or LedgerIndexer(clock=clock)
        self.reconciliation = ReconciliationService(session_factory, clock=clock, indexer=indexer)
        self.lifecycle_controller = CampaignLifecycleController(
            session_factory, clock=clock, cas_max_attempts=cas_max_attempts
        )
        self.diagnostics = ConsistencyDiagnostics(
            session_factory, enabled_contracts=enabled_contracts, indexer=indexer
        )

    @classmethod
    def from_config(
        cls,
        config: ConsistencyConfig,
        session_factory: sessionmaker[Session],
        gateway: LedgerGateway | None = None,
        clock: Clock | None = None,
    ) -> CampaignAdminService:
        return cls(
            build_ledger_context(config, gateway),
            session_factory,
            enabled_contracts=config.marketplace.enabled_contracts,
            cas_max_attempts=config.lifecycle.cas_max_attempts,
            clock=clock,
        )

    def lifecycle(self, request: dict[str, Any], actor: str) -> dict[str, Any]:
        submission_id = parse_submission_id(request)
        action = request.get("action")
        if not action:
            raise InputError("action", "is required")
        reason = request.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise InputError("reason", "must be a string")

        result = self.lifecycle_controller.execute(
            self.ctx, submission_id, action, actor=actor, reason=reason
        )
        return result.to_dict()

    def repair_single(self, request: dict[str, Any], actor: str) -> dict[str, Any]:
        submission_id = parse_submission_id(request)
        return self.reconciliation.repair_single(self.ctx, submission_id, actor).to_dict()

    def run_reconciliation(self, actor: str = SYSTEM_ACTOR) -> dict[str, Any]:
        return self.reconciliation.run_reconciliation(self.ctx, actor=actor).to_dict()

    def scan_for_drift(self) -> dict[str, Any]:
        return self.diagnostics.scan_for_drift(self.ctx).to_dict()

    def check_listing(self, request: dict[str, Any]) -> dict[str, Any]:
        submission_id = parse_submission_id(request)
        return self.diagnostics.check_listing(submission_id).to_dict()

    def find_unlinked_campaigns(self) -> dict[str, Any]:
        return self.diagnostics.find_unlinked_campaigns(self.ctx).to_dict()
