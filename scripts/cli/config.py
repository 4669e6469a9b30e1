"""CLI configuration: config file resolution, defaults."""

import os
from pathlib import Path

# The CLI is the only place that reads the environment for configuration
CONFIG_ENV_VAR = "CAMPAIGN_CONSISTENCY_CONFIG"

DEFAULT_ACTOR = "cli"


def resolve_config_path(argument: str | None) -> Path | None:
    """--config wins, then $CAMPAIGN_CONSISTENCY_CONFIG, else the packaged default."""
    if argument:
        return Path(argument)
    from_env = os.environ.get(CONFIG_ENV_VAR)
    return Path(from_env) if from_env else None
