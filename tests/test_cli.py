"""
Tests for provisioner.cli
=========================

Commands are invoked in-process with click's CliRunner. Every path the
commands touch is redirected into the test's temporary directory through
a YAML configuration file.
"""

import json
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from provisioner.cli import main
from provisioner.core.constants import TOOL_VERSION
from provisioner.infrastructure.status_store import FileStatusStore
from tests.conftest import sha256


@pytest.fixture
def cli() -> CliRunner:
    return CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """YAML config that keeps every path under tmp_path."""
    path = tmp_path / "provisioner.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "silent": True,
                "wait_for_writable": False,
                "paths": {
                    "support_dir": str(tmp_path / "support"),
                    "cache_dir": str(tmp_path / "cache"),
                    "log_dir": str(tmp_path / "logs"),
                    "status_plist": str(tmp_path / "support" / "status.plist"),
                    "status_json": str(tmp_path / "support" / "status.json"),
                    "completion_marker": str(tmp_path / "prefs" / "marker.plist"),
                    "managed_preferences_dir": str(tmp_path / "managed"),
                },
                "progress": {"enabled": False},
                "service": {"enabled": False},
            }
        )
    )
    return path


class TestVersion:

    def test_version_option(self, cli: CliRunner) -> None:
        result = cli.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert TOOL_VERSION in result.output


class TestGenerateManifest:
    """Tests for `provisioner generate-manifest`."""

    def test_prints_manifest(self, cli: CliRunner, tmp_path: Path) -> None:
        package = tmp_path / "Tool.pkg"
        package.write_bytes(b"package-bytes")
        script = tmp_path / "check.sh"
        script.write_bytes(b"#!/bin/sh\nexit 1\n")

        result = cli.invoke(
            main,
            [
                "generate-manifest",
                "--base-url", "https://example.com/bootstrap/",
                "--package", str(package),
                "--rootscript", str(script),
            ],
        )

        assert result.exit_code == 0, result.output
        manifest = json.loads(result.output)
        package_item = manifest["setupassistant"][0]
        assert package_item["file"] == "/Library/Provisioner/cache/Tool.pkg"
        assert package_item["url"] == "https://example.com/bootstrap/package/Tool.pkg"
        assert package_item["hash"] == sha256(b"package-bytes")
        assert package_item["type"] == "package"
        assert manifest["preflight"][0]["type"] == "rootscript"
        assert manifest["userland"] == []

    def test_writes_output_file(self, cli: CliRunner, tmp_path: Path) -> None:
        script = tmp_path / "dock.sh"
        script.write_text("#!/bin/sh\n")
        output = tmp_path / "out" / "bootstrap.json"
        output.parent.mkdir()

        result = cli.invoke(
            main,
            [
                "generate-manifest",
                "--base-url", "https://example.com",
                "--install-path", "/var/tmp/payloads",
                "--userscript", str(script),
                "-o", str(output),
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Manifest written to" in result.output
        manifest = json.loads(output.read_text())
        assert manifest["userland"][0]["file"] == "/var/tmp/payloads/dock.sh"

    def test_missing_file_is_usage_error(self, cli: CliRunner, tmp_path: Path) -> None:
        result = cli.invoke(
            main,
            ["generate-manifest", "--base-url", "https://example.com", "--package", str(tmp_path / "nope.pkg")],
        )
        assert result.exit_code == 2


class TestStatus:
    """Tests for `provisioner status`."""

    def test_gate_without_marker(self, cli: CliRunner, config_file: Path) -> None:
        result = cli.invoke(main, ["status", "--gate", "--config", str(config_file)])
        assert result.exit_code == 1
        report = json.loads(result.output)
        assert report["completed"] is False
        assert report["completion_marker"] is None
        assert report["phases"] == {}

    def test_gate_with_marker(self, cli: CliRunner, config_file: Path, tmp_path: Path) -> None:
        store = FileStatusStore(
            plist_path=tmp_path / "support" / "status.plist",
            json_path=tmp_path / "support" / "status.json",
            marker_path=tmp_path / "prefs" / "marker.plist",
            version="1.2.3",
        )
        store.write_completion_marker(store.completion_marker_for())

        result = cli.invoke(main, ["status", "--gate", "--config", str(config_file)])
        assert result.exit_code == 0
        assert json.loads(result.output)["completion_marker"]["version"] == "1.2.3"

        result = cli.invoke(
            main, ["status", "--gate", "--version", "2.0.0", "--config", str(config_file)]
        )
        assert result.exit_code == 1

    def test_missing_config_file(self, cli: CliRunner, tmp_path: Path) -> None:
        result = cli.invoke(main, ["status", "--config", str(tmp_path / "absent.yaml")])
        assert result.exit_code == 1
        assert "Configuration file not found" in result.output


class TestRun:
    """Tests for `provisioner run`."""

    def test_without_manifest_url(self, cli: CliRunner, config_file: Path) -> None:
        result = cli.invoke(
            main, ["run", "--no-managed-preferences", "--config", str(config_file)]
        )
        assert result.exit_code == 1

    def test_dry_run_with_local_manifest(
        self, cli: CliRunner, config_file: Path, tmp_path: Path
    ) -> None:
        manifest = tmp_path / "bootstrap.json"
        manifest.write_text(
            json.dumps(
                {
                    "setupassistant": [
                        {
                            "file": "Tool.pkg",
                            "url": "https://example.invalid/package/Tool.pkg",
                            "hash": "0" * 64,
                            "type": "package",
                        }
                    ]
                }
            )
        )

        result = cli.invoke(
            main,
            [
                "run",
                "--dry-run",
                "--no-managed-preferences",
                "--config", str(config_file),
                "--url", str(manifest),
            ],
        )

        assert result.exit_code == 0, result.output
        assert not (tmp_path / "support" / "status.plist").exists()
        assert not (tmp_path / "prefs" / "marker.plist").exists()
