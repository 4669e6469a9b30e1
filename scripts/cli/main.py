"""CLI main: argument parsing and dispatch to CampaignAdminService."""

import argparse
import sys
from collections.abc import Callable
from typing import Any, TextIO

from campaign_config import get_active_config
from campaign_kernel.db.engine import create_tables, init_engine_from_url, get_session_factory
from campaign_kernel.exceptions import CampaignKernelError
from campaign_kernel.logging_config import configure_logging, get_logger
from campaign_services.admin_service import CampaignAdminService, error_response
from scripts.cli import config as cli_config
from scripts.cli.util import emit_json, set_log_level

logger = get_logger("cli")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="campaign-admin",
        description="Campaign consistency administration: reconcile, repair, "
        "run lifecycle transitions, and inspect drift.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"YAML configuration file (default: ${cli_config.CONFIG_ENV_VAR} "
        "or the packaged default)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override database.url from the configuration",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument("--actor", default=cli_config.DEFAULT_ACTOR, help="Recorded in audit events")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("lifecycle", help="close / deactivate / reactivate a campaign")
    p.add_argument("submission_id")
    p.add_argument("action", help="close, deactivate, or reactivate")
    p.add_argument("--reason", default=None)

    p = sub.add_parser("repair", help="repair one submission's campaign link")
    p.add_argument("submission_id")

    sub.add_parser("reconcile", help="classify and repair all minted submissions")
    sub.add_parser("drift", help="report stored-vs-on-chain drift for minted submissions")

    p = sub.add_parser("check-listing", help="show unmet marketplace listing conditions")
    p.add_argument("submission_id")

    sub.add_parser("unlinked", help="list on-chain campaigns with no submission")
    sub.add_parser("init-db", help="create the submissions and audit_events tables")

    return parser


def dispatch(args: argparse.Namespace, service: CampaignAdminService) -> dict[str, Any]:
    """Run one sub-command and return its response payload."""
    command = args.command
    if command == "lifecycle":
        return service.lifecycle(
            {"submissionId": args.submission_id, "action": args.action, "reason": args.reason},
            actor=args.actor,
        )
    if command == "repair":
        return service.repair_single({"submissionId": args.submission_id}, actor=args.actor)
    if command == "reconcile":
        return service.run_reconciliation(actor=args.actor)
    if command == "drift":
        return service.scan_for_drift()
    if command == "check-listing":
        return service.check_listing({"submissionId": args.submission_id})
    if command == "unlinked":
        return service.find_unlinked_campaigns()
    raise ValueError(f"unknown command {command!r}")


def _default_service_factory(args: argparse.Namespace) -> CampaignAdminService:
    config = get_active_config(cli_config.resolve_config_path(args.config))
    init_engine_from_url(
        args.database_url or config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
    )
    if args.command == "init-db":
        create_tables()
    return CampaignAdminService.from_config(config, get_session_factory())


def main(
    argv: list[str] | None = None,
    *,
    service_factory: Callable[[argparse.Namespace], CampaignAdminService] | None = None,
    stdout: TextIO | None = None,
) -> int:
    out = stdout or sys.stdout
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return EXIT_USAGE if exc.code else EXIT_OK

    configure_logging()
    set_log_level(args.log_level)

    factory = service_factory or _default_service_factory
    try:
        service = factory(args)
        if args.command == "init-db":
            emit_json({"initialized": True}, out)
            return EXIT_OK
        payload = dispatch(args, service)
    except CampaignKernelError as exc:
        logger.error("cli_command_failed", extra={"command": args.command}, exc_info=True)
        emit_json(error_response(exc), out)
        return EXIT_ERROR

    emit_json(payload, out)
    return EXIT_OK
