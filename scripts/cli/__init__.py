"""
Campaign administration CLI.

Every administrative operation is a sub-command that prints a JSON
response.  Exit status: 0 success, 1 typed error (JSON error body on
stdout), 2 usage error.

Entry point: ``campaign-admin`` or ``python -m scripts.cli``
"""

from scripts.cli.main import main

__all__ = ["main"]
