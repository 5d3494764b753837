"""
Bundle maintenance CLI.

Manual triggers for the bundle materializer, for recovery after bulk
imports, failed regenerations or catalog edits made outside the service:
- regenerate-all: every bundle and manifest
- regenerate: one entity type, optionally one organization
- manifests: every manifest from the current bundles
- list: expected bundles and whether they exist

Usage:
    portal-bundles regenerate-all --add-default-visible-to
    portal-bundles regenerate --type tools01 --org acme
    portal-bundles manifests
    portal-bundles list --format json

Invariants:
    - Exit code is non-zero when any unit failed
    - JSON output keys are stable for scripting

How to change safely:
    - Add new commands, don't modify existing ones
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from ..config import ServerConfig
from ..main import setup_logging
from ..materialize import BundleInfo, RegenerationReport
from ..service import PortalService

logger = logging.getLogger(__name__)


class BundlesCLI:
    """Runs materializer maintenance commands against a started service.

    Example:
        >>> cli = BundlesCLI(service)
        >>> report = await cli.regenerate_all()
        >>> cli.render_report(report)
    """

    def __init__(self, service: PortalService) -> None:
        self.service = service

    async def regenerate_all(self, add_default_visible_to: bool = False) -> RegenerationReport:
        return await self.service.materializer.regenerate_all(
            add_default_visible_to=add_default_visible_to
        )

    async def regenerate(self, type_id: str, org_id: str | None = None) -> RegenerationReport:
        report = await self.service.materializer.regenerate_type(type_id, org_id=org_id)
        report.merge(await self.service.materializer.regenerate_all_manifests())
        return report

    async def manifests(self) -> RegenerationReport:
        return await self.service.materializer.regenerate_all_manifests()

    async def list(self) -> list[BundleInfo]:
        return await self.service.materializer.list_bundles()

    @staticmethod
    def render_report(report: RegenerationReport, fmt: str = "text") -> str:
        if fmt == "json":
            return json.dumps(report.to_dict(), indent=2)

        lines = [
            f"Units succeeded: {report.success_count}",
            f"Units failed:    {report.error_count}",
        ]
        if report.types_processed or report.types_skipped or report.types_updated:
            lines.append(
                f"Entity types:    {report.types_processed} processed, "
                f"{report.types_skipped} skipped, {report.types_updated} updated"
            )
        if report.organizations_processed:
            lines.append(f"Organizations:   {report.organizations_processed} processed")
        for error in report.errors:
            lines.append(f"  [FAILED] {error['unit']}: {error['error']}")
        return "\n".join(lines)

    @staticmethod
    def render_bundles(infos: list[BundleInfo], fmt: str = "text") -> str:
        if fmt == "json":
            return json.dumps([i.to_dict() for i in infos], indent=2)
        if not infos:
            return "No bundles expected"

        lines = []
        for info in infos:
            status = "OK" if info.exists else "MISSING"
            lines.append(f"  [{status}] {info.path} ({info.kind}, {info.entity_count} entities)")
        missing = sum(1 for i in infos if not i.exists)
        lines.append(f"{len(infos)} bundle(s), {missing} missing")
        return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portal-bundles", description="Portal bundle and manifest maintenance"
    )
    parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    all_parser = subparsers.add_parser("regenerate-all", help="Rebuild every bundle and manifest")
    all_parser.add_argument(
        "--add-default-visible-to",
        action="store_true",
        help='Give types without visibleTo ["public"] before rebuilding',
    )

    type_parser = subparsers.add_parser("regenerate", help="Rebuild one entity type's bundles")
    type_parser.add_argument("--type", "-t", required=True, dest="type_id", help="Entity type id")
    type_parser.add_argument("--org", "-o", dest="org_id", help="Only this organization's bundles")

    subparsers.add_parser("manifests", help="Rebuild every manifest")
    subparsers.add_parser("list", help="List expected bundles")
    return parser


async def run_command(service: PortalService, args: argparse.Namespace) -> int:
    """Execute a parsed command; returns the process exit code."""
    cli = BundlesCLI(service)

    if args.command == "list":
        infos = await cli.list()
        print(cli.render_bundles(infos, args.format))
        return 0

    if args.command == "regenerate-all":
        report = await cli.regenerate_all(args.add_default_visible_to)
    elif args.command == "regenerate":
        report = await cli.regenerate(args.type_id, args.org_id)
    else:
        report = await cli.manifests()

    print(cli.render_report(report, args.format))
    return 0 if report.ok else 1


async def _run(config: ServerConfig, args: argparse.Namespace) -> int:
    service = PortalService(config)
    await service.start()
    try:
        return await run_command(service, args)
    finally:
        await service.stop()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for bundle maintenance."""
    args = build_parser().parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config)
    sys.exit(asyncio.run(_run(config, args)))


if __name__ == "__main__":
    main()
