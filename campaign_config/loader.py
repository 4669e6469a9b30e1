"""
Configuration Loader (``campaign_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into typed
``campaign_config.schema`` dataclass instances.  Runtime callers use
``campaign_config.get_active_config()``; this module is its implementation.

Invariants enforced
-------------------
* No silent defaults for required fields: ``ledger.rpc_url``,
  ``ledger.chain_id`` and ``ledger.contract_address`` must be present.
* Every validation failure raises ``ConfigurationError`` naming the
  offending dotted key.
* ``compute_checksum`` is a deterministic SHA-256 of the source bytes.

Failure modes
-------------
* Missing YAML file  -> ``ConfigurationError`` (key ``path``).
* Malformed YAML  -> ``ConfigurationError`` (key ``yaml``).
* Missing or mistyped keys -> ``ConfigurationError`` (dotted key).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from campaign_config.schema import (
    ConsistencyConfig,
    DatabaseSettings,
    IndexingSettings,
    LedgerSettings,
    LifecycleSettings,
    MarketplaceSettings,
)
from campaign_kernel.exceptions import ConfigurationError
from campaign_kernel.utils.hashing import hash_bytes


def compute_checksum(source: bytes) -> str:
    """SHA-256 of the raw configuration source."""
    return hash_bytes(source)


def load_yaml_file(path: Path) -> tuple[dict[str, Any], bytes]:
    """
    Load a single YAML file.

    Returns:
        The parsed mapping (empty if the file is empty) and the raw bytes.

    Raises:
        ConfigurationError: if the file is missing, unreadable, not valid
            YAML, or not a mapping at the top level.
    """
    try:
        source = Path(path).read_bytes()
    except OSError as exc:
        raise ConfigurationError("path", f"cannot read {path}: {exc}") from exc

    try:
        data = yaml.safe_load(source) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError("yaml", f"{path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError("yaml", f"{path}: top level must be a mapping")
    return data, source


def _section(data: dict[str, Any], name: str, required: bool = False) -> dict[str, Any]:
    value = data.get(name)
    if value is None:
        if required:
            raise ConfigurationError(name, "section is required")
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(name, "must be a mapping")
    return value


def _required(section: dict[str, Any], prefix: str, key: str) -> Any:
    value = section.get(key)
    if value is None or value == "":
        raise ConfigurationError(f"{prefix}.{key}", "is required")
    return value


def _number(section: dict[str, Any], prefix: str, key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{prefix}.{key}", f"must be a number, got {value!r}")
    if value < 0:
        raise ConfigurationError(f"{prefix}.{key}", "must not be negative")
    return float(value)


def _positive_int(section: dict[str, Any], prefix: str, key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{prefix}.{key}", f"must be an integer, got {value!r}")
    if value < 1:
        raise ConfigurationError(f"{prefix}.{key}", "must be at least 1")
    return value


def parse_ledger(data: dict[str, Any]) -> LedgerSettings:
    """Parse the ``ledger`` section."""
    chain_id = _required(data, "ledger", "chain_id")
    if isinstance(chain_id, bool) or not isinstance(chain_id, int):
        raise ConfigurationError("ledger.chain_id", f"must be an integer, got {chain_id!r}")

    version = data.get("contract_version")
    return LedgerSettings(
        rpc_url=str(_required(data, "ledger", "rpc_url")),
        chain_id=chain_id,
        contract_address=str(_required(data, "ledger", "contract_address")),
        contract_version=str(version) if version is not None else None,
        read_timeout_seconds=_number(data, "ledger", "read_timeout_seconds", 10.0),
        confirmation_timeout_seconds=_number(
            data, "ledger", "confirmation_timeout_seconds", 120.0
        ),
        confirmation_poll_seconds=_number(data, "ledger", "confirmation_poll_seconds", 2.0),
    )


def parse_indexing(data: dict[str, Any]) -> IndexingSettings:
    """Parse the ``indexing`` section."""
    initial = _number(data, "indexing", "backoff_initial_seconds", 0.5)
    maximum = _number(data, "indexing", "backoff_max_seconds", 8.0)
    if maximum < initial:
        raise ConfigurationError(
            "indexing.backoff_max_seconds",
            "must be >= indexing.backoff_initial_seconds",
        )
    return IndexingSettings(
        max_attempts=_positive_int(data, "indexing", "max_attempts", 3),
        backoff_initial_seconds=initial,
        backoff_max_seconds=maximum,
        max_concurrency=_positive_int(data, "indexing", "max_concurrency", 8),
        batch_size=_positive_int(data, "indexing", "batch_size", 50),
    )


def parse_marketplace(data: dict[str, Any]) -> MarketplaceSettings:
    """Parse the ``marketplace`` section."""
    contracts = data.get("enabled_contracts", [])
    if not isinstance(contracts, list) or not all(isinstance(c, str) for c in contracts):
        raise ConfigurationError(
            "marketplace.enabled_contracts", "must be a list of addresses"
        )
    return MarketplaceSettings(enabled_contracts=tuple(contracts))


def parse_lifecycle(data: dict[str, Any]) -> LifecycleSettings:
    """Parse the ``lifecycle`` section."""
    return LifecycleSettings(
        cas_max_attempts=_positive_int(data, "lifecycle", "cas_max_attempts", 3),
    )


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    """Parse the ``database`` section."""
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=str(data.get("url") or defaults.url),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=_positive_int(data, "database", "pool_size", defaults.pool_size),
    )


def parse_config(data: dict[str, Any], checksum: str = "") -> ConsistencyConfig:
    """
    Parse a full configuration mapping.

    Raises:
        ConfigurationError: on any missing or invalid value.
    """
    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ConfigurationError("version", f"must be an integer, got {version!r}")

    marketplace = parse_marketplace(_section(data, "marketplace"))
    ledger = parse_ledger(_section(data, "ledger", required=True))

    # The configured contract is always listable unless explicitly overridden
    if "enabled_contracts" not in _section(data, "marketplace"):
        marketplace = MarketplaceSettings(enabled_contracts=(ledger.contract_address,))

    return ConsistencyConfig(
        config_id=str(data.get("config_id", "default")),
        version=version,
        ledger=ledger,
        indexing=parse_indexing(_section(data, "indexing")),
        marketplace=marketplace,
        lifecycle=parse_lifecycle(_section(data, "lifecycle")),
        database=parse_database(_section(data, "database")),
        checksum=checksum,
    )


def load_config_file(path: Path) -> ConsistencyConfig:
    """Load and parse one YAML configuration file."""
    data, source = load_yaml_file(path)
    return parse_config(data, checksum=compute_checksum(source))
