"""CLI utilities: JSON output, log level."""

import json
import logging
from typing import Any, TextIO


def emit_json(payload: Any, stream: TextIO) -> None:
    """Write one pretty-printed JSON document."""
    stream.write(json.dumps(payload, indent=2, sort_keys=True, default=str))
    stream.write("\n")


def set_log_level(level_name: str) -> None:
    """Apply --log-level to the campaign_kernel logger hierarchy."""
    logging.getLogger("campaign_kernel").setLevel(
        getattr(logging, level_name.upper(), logging.WARNING)
    )
