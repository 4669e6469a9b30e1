"""
CampaignReconciliationChecker -- Pure engine for campaign drift analysis.

Compares off-chain submissions against the on-chain campaign index joined
on metadata URI, decides the classification of each record, resolves the
target of a single-record repair, and evaluates the marketplace listing
predicate and stored-id drift.

Architecture: campaign_engines -- pure calculation, zero I/O, zero DB access.
All inputs are frozen dataclasses populated by the service layer.

Invariants enforced:
    - The join key is metadata_uri, never the stored campaign_id.
    - A URI absent from the index is ORPHAN, never repaired.  When some
      campaign reads were skipped the ORPHAN detail says so.
    - A URI carried by several campaigns is COLLISION, never repaired.
    - A single-record repair never targets an inactive campaign.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from campaign_kernel.domain.dtos import OnChainCampaign, SubmissionInfo, SubmissionStatus
from campaign_kernel.exceptions import (
    AmbiguousCampaignError,
    CampaignNotFoundError,
    InactiveCampaignError,
    MissingJoinKeyError,
)
from campaign_kernel.logging_config import get_logger
from campaign_engines.reconciliation.domain import (
    CampaignIndex,
    Classification,
    Decision,
    DriftEntry,
    ListingCheck,
)
from campaign_engines.tracer import traced_engine

logger = get_logger("engines.reconciliation.checker")

# Listing predicate condition codes, in evaluation order
LISTING_STATUS_NOT_MINTED = "status_not_minted"
LISTING_NOT_VISIBLE = "not_visible_on_marketplace"
LISTING_MISSING_CAMPAIGN_ID = "missing_campaign_id"
LISTING_MISSING_CONTRACT = "missing_contract_address"
LISTING_CONTRACT_NOT_ENABLED = "contract_not_enabled"

NO_STORED_CAMPAIGN_ID = "no stored campaign id"


def _orphan_detail(submission: SubmissionInfo, skipped_ids: Sequence[int]) -> str:
    detail = "metadata_uri not found on-chain"
    if not skipped_ids:
        return detail
    if submission.campaign_id in skipped_ids:
        return (
            f"{detail}; stored campaign {submission.campaign_id} could not be read, "
            "so the match may exist"
        )
    return f"{detail} (index incomplete: {len(skipped_ids)} campaign read(s) skipped)"


class CampaignReconciliationChecker:
    """Pure engine for campaign reconciliation.

    Usage:
        checker = CampaignReconciliationChecker()
        decisions = checker.classify_all(submissions=minted, index=snapshot.index)
    """

    # -----------------------------------------------------------------
    # Batch classification
    # -----------------------------------------------------------------

    def classify(
        self,
        submission: SubmissionInfo,
        index: CampaignIndex,
        skipped_ids: Sequence[int] = (),
    ) -> Decision:
        """Classify one submission against the index.

        ``skipped_ids`` are campaign ids the indexer could not read.
        """
        if not submission.has_join_key:
            return Decision(Classification.ERROR, "no join key (metadata_uri missing)")

        matches = index.lookup(submission.metadata_uri)

        if not matches:
            return Decision(Classification.ORPHAN, _orphan_detail(submission, skipped_ids))

        if len(matches) > 1:
            ids = tuple(c.campaign_id for c in matches)
            return Decision(
                Classification.COLLISION,
                f"metadata_uri shared by campaigns {list(ids)}",
                candidates=ids,
            )

        target = matches[0]
        if submission.campaign_id == target.campaign_id:
            return Decision(Classification.VALID, "campaign_id matches", target=target)

        return Decision(
            Classification.MISMATCH,
            f"campaign_id {submission.campaign_id} -> {target.campaign_id}",
            target=target,
        )

    @traced_engine("campaign_reconciliation", "1.0", fingerprint_fields=("submissions",))
    def classify_all(
        self,
        submissions: Sequence[SubmissionInfo],
        index: CampaignIndex,
        skipped_ids: Sequence[int] = (),
    ) -> tuple[tuple[SubmissionInfo, Decision], ...]:
        """Classify every submission; order is preserved."""
        return tuple((s, self.classify(s, index, skipped_ids)) for s in submissions)

    # -----------------------------------------------------------------
    # Single-record repair target
    # -----------------------------------------------------------------

    def resolve_repair_target(
        self,
        submission: SubmissionInfo,
        index: CampaignIndex,
        searched: int,
    ) -> OnChainCampaign:
        """Find the one active campaign a submission should link to.

        Raises:
            MissingJoinKeyError: submission has no metadata_uri.
            CampaignNotFoundError: no campaign carries the URI.
            AmbiguousCampaignError: several campaigns carry the URI.
            InactiveCampaignError: the only match is not active.
        """
        sid = str(submission.id)
        if not submission.has_join_key:
            raise MissingJoinKeyError(sid)

        matches = index.lookup(submission.metadata_uri)
        if not matches:
            raise CampaignNotFoundError(sid, submission.metadata_uri, searched)
        if len(matches) > 1:
            raise AmbiguousCampaignError(
                sid,
                submission.metadata_uri,
                tuple(c.campaign_id for c in matches),
            )

        target = matches[0]
        if not target.active:
            raise InactiveCampaignError(sid, target.campaign_id, target.closed)
        return target

    # -----------------------------------------------------------------
    # Diagnostics
    # -----------------------------------------------------------------

    def evaluate_listing(
        self,
        submission: SubmissionInfo,
        enabled_contracts: Iterable[str],
    ) -> ListingCheck:
        """Conditions of the marketplace listing predicate that do not hold."""
        enabled = {address.lower() for address in enabled_contracts}
        unmet: list[str] = []

        if submission.status != SubmissionStatus.MINTED:
            unmet.append(LISTING_STATUS_NOT_MINTED)
        if not submission.visible_on_marketplace:
            unmet.append(LISTING_NOT_VISIBLE)
        if submission.campaign_id is None:
            unmet.append(LISTING_MISSING_CAMPAIGN_ID)
        if not submission.contract_address:
            unmet.append(LISTING_MISSING_CONTRACT)
        elif submission.contract_address.lower() not in enabled:
            unmet.append(LISTING_CONTRACT_NOT_ENABLED)

        return ListingCheck(submission_id=submission.id, unmet=tuple(unmet))

    def evaluate_drift(
        self,
        submission: SubmissionInfo,
        projection: OnChainCampaign | None = None,
        error: str | None = None,
    ) -> DriftEntry:
        """Compare a submission with the campaign at its stored id.

        ``projection`` is the campaign read at ``submission.campaign_id``;
        ``error`` is the read failure when it could not be read.
        """
        base = dict(
            submission_id=submission.id,
            title=submission.title,
            stored_campaign_id=submission.campaign_id,
            metadata_uri=submission.metadata_uri,
        )

        if submission.campaign_id is None:
            return DriftEntry(**base, needs_fix=True, error=NO_STORED_CAMPAIGN_ID)

        if projection is None:
            return DriftEntry(
                **base,
                needs_fix=True,
                error=f"campaign not readable on-chain: {error or 'unknown error'}",
            )

        uri_matches = projection.base_uri == submission.metadata_uri
        return DriftEntry(
            **base,
            needs_fix=not projection.active or not uri_matches,
            on_chain_active=projection.active,
            uri_matches=uri_matches,
            on_chain_uri=projection.base_uri,
        )

    def find_unlinked(
        self,
        index: CampaignIndex,
        referenced_uris: frozenset[str],
    ) -> tuple[OnChainCampaign, ...]:
        """Indexed campaigns whose base URI no submission references."""
        return tuple(c for c in index.campaigns if c.base_uri not in referenced_uris)
