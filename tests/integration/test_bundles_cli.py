"""
Integration tests for the bundle maintenance CLI.
"""

import json

import pytest

from cms.portal_server.tools.bundles_cli import BundlesCLI, build_parser, run_command

from tests.helpers import seeded_service


class TestParser:
    """Tests for argument parsing."""

    def test_regenerate_args(self):
        """regenerate takes a type and an optional org."""
        args = build_parser().parse_args(["--format", "json", "regenerate", "-t", "tools01", "-o", "acme"])
        assert (args.command, args.type_id, args.org_id, args.format) == (
            "regenerate", "tools01", "acme", "json",
        )

    def test_regenerate_requires_type(self):
        """--type is mandatory."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["regenerate"])

    def test_regenerate_all_flag(self):
        """The visibleTo migration is opt-in."""
        assert not build_parser().parse_args(["regenerate-all"]).add_default_visible_to
        assert build_parser().parse_args(
            ["regenerate-all", "--add-default-visible-to"]
        ).add_default_visible_to


class TestRunCommand:
    """Tests for run_command() against an in-memory service."""

    @pytest.mark.asyncio
    async def test_regenerate_all_text(self, capsys):
        """A clean run exits 0 and prints unit counts."""
        service = await seeded_service()
        code = await run_command(service, build_parser().parse_args(["regenerate-all"]))

        assert code == 0
        out = capsys.readouterr().out
        assert "Units failed:    0" in out
        assert "Organizations:   1 processed" in out

    @pytest.mark.asyncio
    async def test_list_json(self, capsys):
        """list --format json prints one record per bundle."""
        service = await seeded_service()
        code = await run_command(service, build_parser().parse_args(["--format", "json", "list"]))

        assert code == 0
        records = json.loads(capsys.readouterr().out)
        assert {r["kind"] for r in records} == {"global", "global-admin", "org-member", "org-admin"}
        assert all(r["exists"] for r in records)

    @pytest.mark.asyncio
    async def test_failure_exit_code(self, capsys):
        """Failed units give a non-zero exit code and are listed."""
        service = await seeded_service()
        service.store.fail_writes("bundles/public/", RuntimeError("bucket unavailable"))
        code = await run_command(service, build_parser().parse_args(["regenerate", "--type", "tools01"]))

        assert code == 1
        assert "[FAILED] global:public:tools01: bucket unavailable" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_manifests(self, capsys):
        """manifests rebuilds every key's and org's manifest."""
        service = await seeded_service()
        code = await run_command(service, build_parser().parse_args(["--format", "json", "manifests"]))

        assert code == 0
        report = json.loads(capsys.readouterr().out)
        assert report["successCount"] == 4
        assert report["errorCount"] == 0

    def test_render_empty_bundle_list(self):
        """An empty catalog renders a placeholder line."""
        assert BundlesCLI.render_bundles([]) == "No bundles expected"
