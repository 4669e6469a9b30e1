"""
Campaign reconciliation domain types.

Pure frozen dataclasses and enums shared by the reconciliation checker
(pure engine) and the reconciliation, diagnostics, and indexing services
(imperative shell).

Architecture: campaign_engines/reconciliation -- pure domain, zero I/O.

Contents:
    CampaignIndex     multimap base_uri -> campaigns, collisions explicit
    LedgerSnapshot    index + what could not be read
    Decision          classifier output for one submission
    ReconciliationResult / ReconciliationSummary / ReconciliationReport
    RepairOutcome     single-record repair result
    ListingCheck      marketplace listing predicate result
    DriftEntry / DriftReport / UnlinkedReport
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

from campaign_kernel.domain.dtos import OnChainCampaign


# =============================================================================
# Enums
# =============================================================================


class Classification(str, Enum):
    """Outcome of comparing one minted submission against the ledger index."""

    VALID = "valid"
    MISMATCH = "mismatch"   # Decided, not yet written
    FIXED = "fixed"         # MISMATCH after a successful repair write
    ORPHAN = "orphan"
    COLLISION = "collision"
    ERROR = "error"


# =============================================================================
# Ledger index
# =============================================================================


class CampaignIndex:
    """Read-only multimap from base URI to the campaigns that carry it.

    Unpopulated slots (empty base URI) are dropped on construction.  A base
    URI shared by several campaigns is kept with all of them, in ascending
    campaign id order, and reported by ``collisions``.
    """

    def __init__(self, campaigns: Iterable[OnChainCampaign] = ()):
        grouped: dict[str, list[OnChainCampaign]] = defaultdict(list)
        count = 0
        for campaign in campaigns:
            if not campaign.is_populated:
                continue
            grouped[campaign.base_uri].append(campaign)
            count += 1

        self._by_uri: Mapping[str, tuple[OnChainCampaign, ...]] = MappingProxyType({
            uri: tuple(sorted(entries, key=lambda c: c.campaign_id))
            for uri, entries in grouped.items()
        })
        self._count = count

    def lookup(self, base_uri: str | None) -> tuple[OnChainCampaign, ...]:
        """All campaigns whose base URI equals ``base_uri`` (empty if none)."""
        if not base_uri:
            return ()
        return self._by_uri.get(base_uri, ())

    def __contains__(self, base_uri: object) -> bool:
        return base_uri in self._by_uri

    def __len__(self) -> int:
        return self._count

    @property
    def base_uris(self) -> frozenset[str]:
        return frozenset(self._by_uri)

    @property
    def campaigns(self) -> tuple[OnChainCampaign, ...]:
        """Every indexed campaign, ordered by campaign id."""
        return tuple(sorted(
            (c for entries in self._by_uri.values() for c in entries),
            key=lambda c: c.campaign_id,
        ))

    @property
    def collisions(self) -> Mapping[str, tuple[int, ...]]:
        """base_uri -> campaign ids, for every URI carried by more than one campaign."""
        return MappingProxyType({
            uri: tuple(c.campaign_id for c in entries)
            for uri, entries in sorted(self._by_uri.items())
            if len(entries) > 1
        })


@dataclass(frozen=True)
class SkippedRead:
    """A campaign id whose projection could not be read within the retry budget."""

    campaign_id: int
    reason: str
    attempts: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "campaignId": self.campaign_id,
            "reason": self.reason,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class LedgerSnapshot:
    """Point-in-time view of the ledger's campaign registry."""

    index: CampaignIndex
    campaign_count: int
    skipped: tuple[SkippedRead, ...] = ()
    taken_at: datetime | None = None

    @property
    def skipped_ids(self) -> tuple[int, ...]:
        return tuple(s.campaign_id for s in self.skipped)

    @property
    def collisions(self) -> Mapping[str, tuple[int, ...]]:
        return self.index.collisions

    @property
    def is_complete(self) -> bool:
        return not self.skipped


# =============================================================================
# Classification
# =============================================================================


@dataclass(frozen=True)
class Decision:
    """Classifier output for one submission; the service decides whether to write."""

    classification: Classification
    detail: str
    target: OnChainCampaign | None = None
    candidates: tuple[int, ...] = ()

    @property
    def needs_write(self) -> bool:
        return self.classification == Classification.MISMATCH


@dataclass(frozen=True)
class ReconciliationResult:
    """Per-submission outcome of a reconciliation run."""

    submission_id: UUID
    classification: Classification
    detail: str
    title: str | None = None
    metadata_uri: str | None = None
    resolved_campaign_id: int | None = None
    previous_campaign_id: int | None = None
    candidates: tuple[int, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "submissionId": str(self.submission_id),
            "title": self.title,
            "classification": self.classification.value,
            "detail": self.detail,
            "metadataURI": self.metadata_uri,
            "previousCampaignId": self.previous_campaign_id,
            "resolvedCampaignId": self.resolved_campaign_id,
        }
        if self.candidates:
            data["candidates"] = list(self.candidates)
        return data


@dataclass(frozen=True)
class ReconciliationSummary:
    """Counts per classification."""

    total: int
    valid: int = 0
    fixed: int = 0
    orphan: int = 0
    collision: int = 0
    error: int = 0

    @classmethod
    def from_results(cls, results: Iterable[ReconciliationResult]) -> ReconciliationSummary:
        counts: dict[Classification, int] = defaultdict(int)
        total = 0
        for result in results:
            counts[result.classification] += 1
            total += 1
        return cls(
            total=total,
            valid=counts[Classification.VALID],
            fixed=counts[Classification.FIXED],
            orphan=counts[Classification.ORPHAN],
            collision=counts[Classification.COLLISION],
            error=counts[Classification.ERROR],
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "valid": self.valid,
            "fixed": self.fixed,
            "orphan": self.orphan,
            "collision": self.collision,
            "error": self.error,
        }


@dataclass(frozen=True)
class ReconciliationReport:
    """Result of one batch reconciliation run."""

    summary: ReconciliationSummary
    results: tuple[ReconciliationResult, ...]
    on_chain_campaigns: int
    skipped: tuple[SkippedRead, ...] = ()
    collisions: Mapping[str, tuple[int, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    duration_seconds: float = 0.0
    # Set when the ledger could not be indexed at all; results are then empty
    error: str | None = None

    @property
    def skipped_ids(self) -> tuple[int, ...]:
        return tuple(s.campaign_id for s in self.skipped)

    def results_by_classification(
        self, classification: Classification
    ) -> tuple[ReconciliationResult, ...]:
        return tuple(r for r in self.results if r.classification == classification)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "results": [r.to_dict() for r in self.results],
            "onChainCampaigns": self.on_chain_campaigns,
            "skipped": [s.to_dict() for s in self.skipped],
            "collisions": {uri: list(ids) for uri, ids in self.collisions.items()},
            "durationSeconds": self.duration_seconds,
            "error": self.error,
        }


@dataclass(frozen=True)
class RepairOutcome:
    """Result of a single-record repair."""

    submission_id: UUID
    old_campaign_id: int | None
    new_campaign_id: int
    projection: OnChainCampaign
    already_linked: bool = False
    previous_status: str | None = None
    new_status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "submissionId": str(self.submission_id),
            "oldCampaignId": self.old_campaign_id,
            "newCampaignId": self.new_campaign_id,
            "projection": self.projection.to_dict(),
            "alreadyLinked": self.already_linked,
            "previousStatus": self.previous_status,
            "newStatus": self.new_status,
        }


# =============================================================================
# Diagnostics
# =============================================================================


@dataclass(frozen=True)
class ListingCheck:
    """Marketplace listing predicate evaluated for one submission."""

    submission_id: UUID
    unmet: tuple[str, ...]

    @property
    def listable(self) -> bool:
        return not self.unmet

    def to_dict(self) -> dict[str, Any]:
        return {
            "submissionId": str(self.submission_id),
            "listable": self.listable,
            "unmetConditions": list(self.unmet),
        }


@dataclass(frozen=True)
class DriftEntry:
    """Stored-vs-on-chain comparison for one minted submission."""

    submission_id: UUID
    title: str
    stored_campaign_id: int | None
    metadata_uri: str | None
    needs_fix: bool
    on_chain_active: bool | None = None
    uri_matches: bool | None = None
    on_chain_uri: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "submissionId": str(self.submission_id),
            "title": self.title,
            "storedCampaignId": self.stored_campaign_id,
            "onChainActive": self.on_chain_active,
            "uriMatches": self.uri_matches,
            "needsFix": self.needs_fix,
            "onChainUri": self.on_chain_uri,
            "storedUri": self.metadata_uri,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class DriftReport:
    """Bulk drift scan result; per-record failures are embedded as entries."""

    entries: tuple[DriftEntry, ...]

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def needs_fix(self) -> tuple[DriftEntry, ...]:
        return tuple(e for e in self.entries if e.needs_fix)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "needsFix": len(self.needs_fix),
            "submissions": [e.to_dict() for e in self.entries],
        }


@dataclass(frozen=True)
class UnlinkedReport:
    """On-chain campaigns whose base URI no off-chain submission references."""

    unlinked: tuple[OnChainCampaign, ...]
    on_chain_campaigns: int
    skipped: tuple[SkippedRead, ...] = ()
    collisions: Mapping[str, tuple[int, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "onChainCampaigns": self.on_chain_campaigns,
            "unlinked": [c.to_dict() for c in self.unlinked],
            "skipped": [s.to_dict() for s in self.skipped],
            "collisions": {uri: list(ids) for uri, ids in self.collisions.items()},
        }
