"""
provisioner.cli - Command-Line Interface
========================================

    provisioner run [--url URL] [--headers VALUE] [--dry-run] ...
    provisioner status [--gate] [--version V]
    provisioner generate-manifest --base-url URL --package P ... [--output FILE]

`run` exits with the run's exit code: 0 on success (including a preflight
short-circuit), 1 on any failure. `status --gate` exits 0 only when a
completion marker exists, so it can be used as a pre-run check by other
tooling.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import click
import structlog

from provisioner.core.config import (
    ProvisionerConfig,
    load_config,
    read_managed_preferences,
)
from provisioner.core.constants import TOOL_VERSION
from provisioner.core.enums import ItemKind
from provisioner.core.exceptions import ConfigurationError
from provisioner.core.logging_setup import configure_logging
from provisioner.facade import Provisioner
from provisioner.infrastructure.status_store import FileStatusStore
from provisioner.manifest_generator import DEFAULT_INSTALL_PATH, ManifestGenerator
from provisioner.orchestration.preconditions import wait_for_managed_config

logger = structlog.get_logger()


def _resolve_config(
    config_path: Optional[str],
    overrides: dict[str, Any],
    use_managed: bool = True,
    wait_for_config: bool = False,
) -> ProvisionerConfig:
    """Resolve config, folding in managed preferences unless disabled."""
    try:
        base = load_config(config_path, overrides)
        if not use_managed:
            return base

        def reader() -> dict[str, Any]:
            return read_managed_preferences(
                base.paths.managed_preferences_dir, base.managed_domains
            )

        if wait_for_config and not base.manifest_url:
            managed = asyncio.run(wait_for_managed_config(reader)) or {}
        else:
            managed = reader()
        return load_config(config_path, overrides, managed)
    except (ConfigurationError, FileNotFoundError) as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.version_option(TOOL_VERSION, prog_name="provisioner")
def main() -> None:
    """Manifest-driven macOS provisioning."""


# =============================================================================
# run
# =============================================================================
@main.command()
@click.option("--url", "--jsonurl", "url", help="Manifest URL, file:// URL or path")
@click.option("--headers", help="Authorization header value for every request")
@click.option("--follow-redirects", is_flag=True, help="Follow HTTP redirects")
@click.option("--dry-run", is_flag=True, help="Log what would happen; change nothing")
@click.option("--reboot", is_flag=True, help="Restart after a successful run")
@click.option("--userscript", is_flag=True, help="Run only the userland user scripts")
@click.option("--retain-cache", is_flag=True, help="Keep downloaded payloads")
@click.option("--silent", is_flag=True, help="No console output")
@click.option("--verbose", is_flag=True, help="Debug logging")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="YAML configuration file",
)
@click.option(
    "--no-managed-preferences",
    is_flag=True,
    help="Ignore MDM-delivered preferences",
)
@click.option(
    "--wait-for-config",
    is_flag=True,
    help="Wait for managed preferences to provide a manifest URL",
)
@click.pass_context
def run(
    ctx: click.Context,
    url: Optional[str],
    headers: Optional[str],
    follow_redirects: bool,
    dry_run: bool,
    reboot: bool,
    userscript: bool,
    retain_cache: bool,
    silent: bool,
    verbose: bool,
    config_path: Optional[str],
    no_managed_preferences: bool,
    wait_for_config: bool,
) -> None:
    """Run the provisioning phases described by the manifest."""
    # Unset flags stay None so they never mask a lower configuration layer.
    overrides = {
        "manifest_url": url,
        "auth_header": headers,
        "follow_redirects": follow_redirects or None,
        "dry_run": dry_run or None,
        "reboot": reboot or None,
        "userscript_only": userscript or None,
        "retain_cache": retain_cache or None,
        "silent": silent or None,
        "verbose": verbose or None,
    }
    config = _resolve_config(
        config_path,
        overrides,
        use_managed=not no_managed_preferences,
        wait_for_config=wait_for_config,
    )

    log_path = configure_logging(
        level=config.effective_log_level,
        log_dir=None if config.dry_run else config.paths.log_dir,
        silent=config.silent,
    )
    if log_path is not None:
        logger.debug("session_log_opened", path=str(log_path))

    ctx.exit(asyncio.run(_run(config)))


async def _run(config: ProvisionerConfig) -> int:
    async with Provisioner(config) as provisioner:
        return await provisioner.run()


# =============================================================================
# status
# =============================================================================
@main.command()
@click.option("--gate", is_flag=True, help="Exit 0 only if a completion marker exists")
@click.option("--version", "version", help="Require the marker to be for this version")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="YAML configuration file",
)
@click.pass_context
def status(
    ctx: click.Context,
    gate: bool,
    version: Optional[str],
    config_path: Optional[str],
) -> None:
    """Print the phase status record and completion marker as JSON."""
    configure_logging(level="WARNING")
    config = _resolve_config(config_path, {}, use_managed=False)
    store = FileStatusStore(
        plist_path=config.paths.status_plist,
        json_path=config.paths.status_json,
        marker_path=config.paths.completion_marker,
    )

    document = store.load()
    marker = store.last_successful_run_marker()
    completed = store.has_completed_successfully(version)
    report = {
        "phases": {
            name: record.model_dump(mode="json")
            for name, record in document.phases.items()
        },
        "completion_marker": marker.model_dump(mode="json") if marker else None,
        "completed": completed,
    }
    click.echo(json.dumps(report, indent=2, sort_keys=True))

    if gate:
        ctx.exit(0 if completed else 1)


# =============================================================================
# generate-manifest
# =============================================================================
@main.command("generate-manifest")
@click.option("--base-url", required=True, help="URL the payload directories are served from")
@click.option(
    "--install-path",
    default=DEFAULT_INSTALL_PATH,
    show_default=True,
    help="Directory the payloads are downloaded to on the client",
)
@click.option(
    "--rootscript",
    "rootscripts",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Preflight root script (repeatable)",
)
@click.option(
    "--package",
    "packages",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Setup package (repeatable)",
)
@click.option(
    "--userscript",
    "userscripts",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Userland user script (repeatable)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the manifest here instead of stdout",
)
def generate_manifest(
    base_url: str,
    install_path: str,
    rootscripts: tuple[Path, ...],
    packages: tuple[Path, ...],
    userscripts: tuple[Path, ...],
    output: Optional[Path],
) -> None:
    """Hash local payloads and emit a manifest for them."""
    configure_logging(level="WARNING")
    generator = ManifestGenerator(base_url, install_path=install_path)
    try:
        for kind, paths in (
            (ItemKind.ROOT_SCRIPT, rootscripts),
            (ItemKind.PACKAGE, packages),
            (ItemKind.USER_SCRIPT, userscripts),
        ):
            for path in paths:
                generator.add(path, kind)
    except FileNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc

    if output is None:
        click.echo(generator.to_json())
    else:
        generator.write(output)
        click.echo(f"Manifest written to {output}")
