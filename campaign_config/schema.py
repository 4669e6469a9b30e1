"""
Configuration Schema (``campaign_config.schema``).

Responsibility
--------------
Frozen dataclasses describing a consistency-engine configuration set:
ledger connection, indexing retry and concurrency policy, marketplace
allowlist, lifecycle CAS budget, and database connection.

Architecture position
---------------------
**Config layer** -- pure data, no I/O.  Parsed by ``campaign_config.loader``
and consumed by ``campaign_services`` and ``scripts.cli``.  The kernel never
imports this module.

Invariants enforced
-------------------
* Every dataclass is ``frozen=True``.
* Defaults match the documented retry policy (3 attempts, backoff from
  0.5 s capped at 8 s) and a CAS budget of 3 attempts.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class LedgerSettings:
    """Ledger relay endpoint and campaign contract identity."""

    rpc_url: str
    chain_id: int
    contract_address: str
    contract_version: str | None = None
    read_timeout_seconds: float = 10.0
    confirmation_timeout_seconds: float = 120.0
    confirmation_poll_seconds: float = 2.0


@dataclass(frozen=True)
class IndexingSettings:
    """Retry budget and concurrency for ledger scans."""

    max_attempts: int = 3
    backoff_initial_seconds: float = 0.5
    backoff_max_seconds: float = 8.0
    max_concurrency: int = 8
    batch_size: int = 50


@dataclass(frozen=True)
class MarketplaceSettings:
    """Contracts whose campaigns may be listed on the marketplace."""

    enabled_contracts: tuple[str, ...] = ()


@dataclass(frozen=True)
class LifecycleSettings:
    """Lifecycle controller settings."""

    cas_max_attempts: int = 3


@dataclass(frozen=True)
class DatabaseSettings:
    """Off-chain store connection."""

    url: str = "sqlite:///campaign_consistency.db"
    echo: bool = False
    pool_size: int = 10


@dataclass(frozen=True)
class ConsistencyConfig:
    """A complete, validated configuration set."""

    config_id: str
    version: int
    ledger: LedgerSettings
    indexing: IndexingSettings = field(default_factory=IndexingSettings)
    marketplace: MarketplaceSettings = field(default_factory=MarketplaceSettings)
    lifecycle: LifecycleSettings = field(default_factory=LifecycleSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    checksum: str = ""
