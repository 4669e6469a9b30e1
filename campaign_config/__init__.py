"""
campaign_config -- single public entrypoint for consistency-engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Library code never reads environment
    variables; the CLI resolves ``CAMPAIGN_CONSISTENCY_CONFIG`` and passes
    the path in.

Architecture position:
    Configuration -- sits above ``campaign_kernel`` and below
    ``campaign_services`` / ``scripts``.  The kernel MUST NEVER import from
    ``campaign_config``.

Failure modes:
    - ``ConfigurationError`` -- missing file, malformed YAML, or a missing
      or invalid key.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``consistency_config_loaded`` log entry with the config_id, version,
    and SHA-256 checksum of the source file, tying every run to the exact
    configuration that governed it.
"""

from __future__ import annotations

from pathlib import Path

from campaign_config.loader import load_config_file
from campaign_config.schema import (
    ConsistencyConfig,
    DatabaseSettings,
    IndexingSettings,
    LedgerSettings,
    LifecycleSettings,
    MarketplaceSettings,
)
from campaign_kernel.logging_config import get_logger

logger = get_logger("config")

# Default configuration set
DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> ConsistencyConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to campaign_config/sets/default.yaml.

    Raises:
        ConfigurationError: If the file cannot be loaded or fails validation.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = load_config_file(config_path)

    logger.info(
        "consistency_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "path": str(config_path),
            "contract_address": config.ledger.contract_address,
            "chain_id": config.ledger.chain_id,
        },
    )
    return config


__all__ = [
    "ConsistencyConfig",
    "DatabaseSettings",
    "IndexingSettings",
    "LedgerSettings",
    "LifecycleSettings",
    "MarketplaceSettings",
    "DEFAULT_CONFIG_PATH",
    "get_active_config",
]
