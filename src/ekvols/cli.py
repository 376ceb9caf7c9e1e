from __future__ import annotations

from dataclasses import replace
from typing import Any, Sequence
import argparse
import json
import logging
import sys

from .config import APP_VERSION, AppConfig, validate_config
from .ec2 import AwsAuthenticationError, load_ec2_client
from .inventory import CorrelationContext, run_inventory
from .k8s import KubernetesAuthenticationError, KubernetesDiscoveryError, load_kubernetes_clients
from .models import REPORT_COLUMNS, InventoryReport, ReportRow

logger = logging.getLogger(__name__)

_COLUMN_PADDING = 2


def render_table(rows: Sequence[ReportRow]) -> str:
    """Align rows under the report header, two spaces between columns."""
    lines = [REPORT_COLUMNS, *(row.as_columns() for row in rows)]
    widths = [max(len(line[index]) for line in lines) for index in range(len(REPORT_COLUMNS))]

    rendered: list[str] = []
    for line in lines:
        cells = [cell.ljust(widths[index] + _COLUMN_PADDING) for index, cell in enumerate(line[:-1])]
        cells.append(line[-1])
        rendered.append("".join(cells))
    return "\n".join(rendered)


def render_json(report: InventoryReport, *, include_outcomes: bool) -> str:
    payload: dict[str, Any] = {"rows": [row.as_dict() for row in report.rows]}
    if include_outcomes:
        payload["outcomes"] = [
            {"source": outcome.source, "status": outcome.status, "reason": outcome.reason}
            for outcome in report.outcomes
        ]
    return json.dumps(payload, indent=2)


def render_outcomes(report: InventoryReport) -> str:
    degraded = report.degraded_outcomes()
    if not degraded:
        return "All sources read successfully."
    return "\n".join(f"{outcome.status.upper()}: {outcome.source}: {outcome.reason}" for outcome in degraded)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ekvols",
        description="Map PVCs to PVs, EBS volumes and EC2 instances with usage percentages.",
    )
    parser.add_argument("--version", action="version", version=f"Version: {APP_VERSION}")
    subparsers = parser.add_subparsers(dest="command")

    list_parser = subparsers.add_parser(
        "list",
        help="Display PVC <-> PV <-> volume mapping",
        description=(
            "List PVC to PV mapping with capacity, storage class, volume ID, usage percentages, "
            "EBS type and node IDs."
        ),
    )
    list_parser.add_argument("-n", "--namespace", help="Namespace to inventory (default: all namespaces)")
    list_parser.add_argument("--kubeconfig", help="Path to the kubeconfig file (default: standard search path)")
    list_parser.add_argument("--context", help="Kubeconfig context to use")
    list_parser.add_argument(
        "--in-cluster",
        action="store_true",
        help="Authenticate with the pod's service account instead of a kubeconfig",
    )
    list_parser.add_argument("--region", help="AWS region for EC2 lookups (default: boto3 resolution)")
    list_parser.add_argument("--profile", help="AWS shared-credentials profile")
    list_parser.add_argument("--no-aws", action="store_true", help="Skip EBS volume type lookups")
    list_parser.add_argument(
        "-f",
        "--format",
        choices=["table", "json"],
        default="table",
        help="Output format (default: table)",
    )
    list_parser.add_argument(
        "--show-outcomes",
        action="store_true",
        help="Report sources that were skipped or failed during the pass",
    )
    list_parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers.add_parser("version", help="Display the version of the application")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "version":
        print(f"Version: {APP_VERSION}")
        return 0
    if args.command != "list":
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = _config_from_args(args)
        validate_config(config)
    except ValueError as error:
        print(f"Error: invalid configuration: {error}", file=sys.stderr)
        return 2

    try:
        clients = load_kubernetes_clients(
            kubeconfig_path=args.kubeconfig,
            context=args.context,
            in_cluster=args.in_cluster,
        )
    except KubernetesAuthenticationError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1

    ec2_client = None
    if config.aws_enabled:
        try:
            ec2_client = load_ec2_client(
                region=config.aws_region,
                profile=config.aws_profile,
                timeout_seconds=config.ec2_timeout_seconds,
            )
        except AwsAuthenticationError as error:
            logger.warning("Continuing without EBS volume types: %s", error)

    try:
        report = run_inventory(CorrelationContext(kubernetes=clients, ec2_client=ec2_client), config=config)
    except KubernetesDiscoveryError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1

    if args.format == "json":
        print(render_json(report, include_outcomes=args.show_outcomes))
    else:
        print(render_table(report.rows))
        if args.show_outcomes:
            print(render_outcomes(report), file=sys.stderr)
    return 0


def _config_from_args(args: argparse.Namespace) -> AppConfig:
    config = AppConfig()
    overrides: dict[str, Any] = {}
    if args.namespace is not None:
        overrides["namespace"] = args.namespace.strip()
    if args.region:
        overrides["aws_region"] = args.region
    if args.profile:
        overrides["aws_profile"] = args.profile
    if args.no_aws:
        overrides["aws_enabled"] = False
    return replace(config, **overrides)


if __name__ == "__main__":
    sys.exit(main())
