"""
billing-engine -- operator CLI for the recurring billing engine.

Usage:
    billing-engine [--database-url URL] [--config billing.yaml] COMMAND ...

Commands:
    init-db          Create the billing tables.
    materialize      Materialize due occurrences (all organizations, or one).
    project          Print the cash-flow projection of an organization.
    defaulters       Print the defaulting counterparties of an organization.
    sweep-overdue    Mark past-due sent invoices as overdue.

Examples:
    # Nightly tick from cron, organizations in parallel
    billing-engine --database-url postgresql+psycopg://... materialize --parallel

    # Replay a run for a fixed date
    billing-engine materialize --as-of 2024-04-20 --organization <uuid>

    # Projection with summary
    billing-engine project --organization <uuid> --summary

Every command prints one JSON document on stdout; logs go to stderr.
Exit status is 0 on success, 1 when a run reported failures, 2 on errors.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict, is_dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from billing_kernel.config import BillingConfig, load_billing_config
from billing_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from billing_kernel.domain.types import MaterializationReport
from billing_kernel.exceptions import BillingKernelError
from billing_kernel.logging_config import configure_logging, get_logger
from billing_services.orchestrator import BillingOrchestrator
from billing_services.projection_service import DEFAULT_MONTHS_BACK, DEFAULT_MONTHS_FORWARD

logger = get_logger("cli")

DEFAULT_DATABASE_URL = "sqlite:///billing.db"
DATABASE_URL_ENV = "BILLING_DATABASE_URL"


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _to_payload(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (tuple, list)):
        return [_to_payload(v) for v in value]
    return value


def report_payload(report: MaterializationReport) -> dict[str, Any]:
    """JSON-ready form of a materialization report."""
    return {
        "as_of": report.as_of,
        "total_created": report.total_created,
        "invoices_created": report.invoices_created,
        "expenses_created": report.expenses_created,
        "skipped": report.skipped,
        "rules_scanned": report.rules_scanned,
        "created_by_organization": {
            str(org_id): count for org_id, count in report.created_by_organization.items()
        },
        "ended_rule_ids": list(report.ended_rule_ids),
        "failed_rule_count": report.failed_rule_count,
        "failures": [asdict(f) for f in report.failures],
    }


def _date_arg(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO date (YYYY-MM-DD): {value!r}") from None


def _uuid_arg(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a UUID: {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="billing-engine",
        description="Recurring billing engine: materialization, projection, defaulters.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--database-url",
        default=os.environ.get(DATABASE_URL_ENV, DEFAULT_DATABASE_URL),
        help=f"Database URL (default: ${DATABASE_URL_ENV} or {DEFAULT_DATABASE_URL!r}).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML file with billing settings (default: built-in defaults).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for the JSON logs on stderr (default: INFO).",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the billing tables.")

    materialize = sub.add_parser("materialize", help="Materialize due occurrences.")
    materialize.add_argument("--as-of", type=_date_arg, default=None, help="Run date (default: today).")
    materialize.add_argument("--organization", type=_uuid_arg, default=None, help="Limit to one organization.")
    materialize.add_argument(
        "--parallel",
        action="store_true",
        help="One worker per organization, each committed separately.",
    )

    project = sub.add_parser("project", help="Cash-flow projection.")
    project.add_argument("--organization", type=_uuid_arg, required=True)
    project.add_argument("--as-of", type=_date_arg, default=None)
    project.add_argument("--months-back", type=int, default=DEFAULT_MONTHS_BACK)
    project.add_argument("--months-forward", type=int, default=DEFAULT_MONTHS_FORWARD)
    project.add_argument("--summary", action="store_true", help="Include headline figures.")

    defaulters = sub.add_parser("defaulters", help="Defaulting counterparties.")
    defaulters.add_argument("--organization", type=_uuid_arg, required=True)
    defaulters.add_argument("--as-of", type=_date_arg, default=None)

    sweep = sub.add_parser("sweep-overdue", help="Mark past-due sent invoices overdue.")
    sweep.add_argument("--organization", type=_uuid_arg, required=True)
    sweep.add_argument("--as-of", type=_date_arg, default=None)

    return parser


def _run(args: argparse.Namespace, config: BillingConfig) -> tuple[Any, int]:
    """Execute the selected command; returns (payload, exit status)."""
    if args.command == "init-db":
        create_tables()
        return {"status": "ok"}, 0

    factory = get_session_factory()

    if args.command == "materialize":
        with session_scope(factory) as session:
            orchestrator = BillingOrchestrator.from_session(session, config=config)
            if args.parallel and args.organization is None:
                report = orchestrator.run_materialization(args.as_of, session_factory=factory)
            else:
                report = orchestrator.materializer.materialize(
                    args.as_of, organization_id=args.organization
                )
        return report_payload(report), 1 if report.has_failures else 0

    with session_scope(factory) as session:
        orchestrator = BillingOrchestrator.from_session(session, config=config)

        if args.command == "project":
            points = orchestrator.project(
                args.organization,
                args.as_of,
                months_back=args.months_back,
                months_forward=args.months_forward,
            )
            payload: dict[str, Any] = {"points": _to_payload(points)}
            if args.summary:
                summary = orchestrator.summary(
                    args.organization,
                    args.as_of,
                    months_back=args.months_back,
                    months_forward=args.months_forward,
                )
                payload["summary"] = {
                    **asdict(summary),
                    "projected_net_total": summary.projected_net_total,
                }
            return payload, 0

        if args.command == "defaulters":
            found = orchestrator.find_defaulters(args.organization, args.as_of)
            return {"defaulters": _to_payload(found)}, 0

        if args.command == "sweep-overdue":
            moved = orchestrator.mark_overdue(args.organization, args.as_of)
            return {"transitioned": list(moved)}, 0

    raise ValueError(f"unknown command {args.command!r}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=getattr(logging, args.log_level))

    try:
        config = load_billing_config(args.config) if args.config else BillingConfig()
    except (OSError, yaml.YAMLError, BillingKernelError) as exc:
        print(f"ERROR: Failed to load config: {exc}", file=sys.stderr)
        return 2

    init_engine_from_url(args.database_url)

    try:
        payload, status = _run(args, config)
    except BillingKernelError as exc:
        logger.error("command_failed", extra={"command": args.command, "error_code": exc.code})
        print(json.dumps({"error": exc.code, "message": str(exc)}), file=sys.stderr)
        return 2
    except ValueError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    print(json.dumps(payload, default=_json_default, indent=2))
    return status


if __name__ == "__main__":
    sys.exit(main())
