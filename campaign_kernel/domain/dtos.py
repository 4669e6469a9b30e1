"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the boundary between
    the off-chain store, the ledger gateway, and the engines:
    SubmissionInfo (off-chain record snapshot), OnChainCampaign (read-only
    ledger projection), CloseReceipt (ledger write outcome), plus the
    SubmissionStatus and LifecycleAction enums.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers (never from engine logic).

Invariants enforced:
    - Engines accept and return DTOs, never ORM entities.
    - A minted submission is expected to carry a campaign_id whose on-chain
      base_uri equals its metadata_uri; the reconciliation engine checks
      this, the DTOs only carry the values.

Data flow:
    Submission (ORM) -> SubmissionInfo -> reconciliation classifier
    ledger RPC -> OnChainCampaign -> CampaignIndex
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from campaign_kernel.models.submission import Submission as SubmissionModel


class SubmissionStatus(str, Enum):
    """
    Off-chain status of a campaign submission.

    Contract:
        Lifecycle: PENDING -> APPROVED -> MINTED -> {CLOSED, DEACTIVATED}.
        DEACTIVATED (and CLOSED, off-chain only) can be reactivated to
        MINTED or APPROVED depending on whether a campaign_id is present.
        PENDING and REJECTED are produced and consumed upstream.
    """

    PENDING = "pending"
    APPROVED = "approved"
    MINTED = "minted"
    CLOSED = "closed"
    DEACTIVATED = "deactivated"
    REJECTED = "rejected"


class LifecycleAction(str, Enum):
    """Administrative lifecycle transitions."""

    CLOSE = "close"
    DEACTIVATE = "deactivate"
    REACTIVATE = "reactivate"

    @classmethod
    def values(cls) -> tuple[str, ...]:
        return tuple(member.value for member in cls)


@dataclass(frozen=True)
class SubmissionInfo:
    """
    Immutable snapshot of an off-chain submission record.

    Contract:
        Captures every field the engines need to classify a record and
        every field a compare-and-set update is guarded on (status,
        campaign_id).
    """

    id: UUID
    title: str
    status: SubmissionStatus
    campaign_id: int | None = None
    metadata_uri: str | None = None
    contract_address: str | None = None
    contract_version: str | None = None
    chain_id: int | None = None
    visible_on_marketplace: bool = False
    updated_at: datetime | None = None

    @property
    def has_campaign_id(self) -> bool:
        return self.campaign_id is not None

    @property
    def has_join_key(self) -> bool:
        return bool(self.metadata_uri)

    @classmethod
    def from_model(cls, model: SubmissionModel) -> SubmissionInfo:
        """Create a SubmissionInfo from a Submission ORM model."""
        return cls(
            id=model.id,
            title=model.title,
            status=SubmissionStatus(model.status),
            campaign_id=model.campaign_id,
            metadata_uri=model.metadata_uri,
            contract_address=model.contract_address,
            contract_version=model.contract_version,
            chain_id=model.chain_id,
            visible_on_marketplace=bool(model.visible_on_marketplace),
            updated_at=model.updated_at,
        )


@dataclass(frozen=True)
class OnChainCampaign:
    """
    Read-only projection of one ledger campaign.

    Contract:
        campaign_id is assigned sequentially by the ledger and never
        reused.  base_uri is fixed at creation; an empty base_uri marks an
        unpopulated slot.
    """

    campaign_id: int
    base_uri: str
    active: bool
    closed: bool
    editions_minted: int = 0
    max_editions: int = 0

    @property
    def is_populated(self) -> bool:
        return bool(self.base_uri)

    def to_dict(self) -> dict[str, Any]:
        return {
            "campaignId": self.campaign_id,
            "baseURI": self.base_uri,
            "active": self.active,
            "closed": self.closed,
            "editionsMinted": self.editions_minted,
            "maxEditions": self.max_editions,
        }


@dataclass(frozen=True)
class CloseReceipt:
    """
    Outcome of a ledger close call.

    Guarantees:
        confirmed is True only when the transaction was mined with a
        success status within the confirmation timeout.
    """

    tx_id: str
    confirmed: bool
