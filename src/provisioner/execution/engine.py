"""
provisioner.execution.engine - Item Execution Engine
====================================================

Runs one manifest item whose payload is already on disk and maps the result
to an exit code.

Exit Code Semantics:
    >= 0            real process exit code (0 = success)
    LAUNCH_FAILURE  the item could not be prepared or launched: permission
                    change failed, executable missing, spawn failed. Never
                    produced by a real process (signals map to 128 + N).

Dispatch:

    run(item)
      ├── package     → receipt current? ──yes──→ 0 (no install)
      │                     │ no
      │                     └─→ installer -pkg <file> -target /
      ├── rootscript  ─┐
      ├── userscript  ─┴─→ chmod 0755 → [launchctl asuser <uid>] <file>
      │                     ├── run_async → spawn detached, 0 on spawn
      │                     └── otherwise → wait, log output, exit code
      └── other       → ExecutionError(UNSUPPORTED_ITEM_TYPE)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import structlog

from provisioner.core.constants import SCRIPT_PATH
from provisioner.core.enums import ItemKind
from provisioner.core.exceptions import ExecutionError
from provisioner.core.models import ManifestItem
from provisioner.core.versioning import is_at_least
from provisioner.execution.packages import PackageDatabase
from provisioner.execution.process import ProcessRunner

logger = structlog.get_logger()

LAUNCH_FAILURE = -1

LAUNCHCTL = "/bin/launchctl"


class ExecutionEngine:
    """Executes packages and scripts as child processes.

    Attributes:
        _runner: Starts child processes.
        _packages: Receipt queries and installer invocation.
        _cache_dir: Base directory for relative item paths.
        _dry_run: Log what would run and report success.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        cache_dir: Path,
        packages: Optional[PackageDatabase] = None,
        dry_run: bool = False,
    ) -> None:
        self._runner = runner
        self._packages = packages or PackageDatabase(runner)
        self._cache_dir = Path(cache_dir)
        self._dry_run = dry_run
        self._logger = logger.bind(component="execution_engine")

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------
    async def run(self, item: ManifestItem, as_uid: Optional[int] = None) -> int:
        """Execute `item` and return its exit code (or LAUNCH_FAILURE).

        Args:
            item: The manifest item; its payload must already be in place.
            as_uid: Run a script as this user via `launchctl asuser`.

        Raises:
            ExecutionError: If the item type is not supported.
        """
        kind = item.kind
        if kind is None:
            raise ExecutionError(
                message=f"Unsupported item type {item.item_type!r}",
                item_name=item.display_name,
                error_code="UNSUPPORTED_ITEM_TYPE",
                details={"type": item.item_type},
            )
        if kind == ItemKind.PACKAGE:
            return await self.run_package(item)
        return await self.run_script(item, as_uid=as_uid)

    # -------------------------------------------------------------------------
    # Packages
    # -------------------------------------------------------------------------
    async def package_is_current(self, item: ManifestItem) -> bool:
        """True if the item's package is installed at >= its minimum version."""
        if not item.package_id or not item.min_version:
            return False
        installed = await self._packages.installed_version(item.package_id)
        if installed is None:
            return False
        current = is_at_least(installed, item.min_version)
        self._logger.debug(
            "receipt_checked",
            package_id=item.package_id,
            installed=installed,
            required=item.min_version,
            current=current,
        )
        return current

    async def run_package(self, item: ManifestItem) -> int:
        name = item.display_name
        if await self.package_is_current(item):
            self._logger.info("package_already_installed", item=name, package_id=item.package_id)
            return 0

        path = item.destination(self._cache_dir)
        if self._dry_run:
            self._logger.info("package_install_dry_run", item=name, path=str(path))
            return 0

        self._logger.info("package_installing", item=name, path=str(path))
        try:
            exit_code = await self._packages.install(str(path))
        except OSError as exc:
            self._logger.error("installer_launch_failed", item=name, error=str(exc))
            return LAUNCH_FAILURE

        if exit_code == 0:
            self._logger.info("package_installed", item=name)
        else:
            self._logger.error("package_install_failed", item=name, exit_code=exit_code)
        return exit_code

    # -------------------------------------------------------------------------
    # Scripts
    # -------------------------------------------------------------------------
    async def run_script(self, item: ManifestItem, as_uid: Optional[int] = None) -> int:
        name = item.display_name
        path = item.destination(self._cache_dir)

        if self._dry_run:
            self._logger.info("script_dry_run", item=name, path=str(path), detached=item.run_async)
            return 0

        try:
            os.chmod(path, 0o755)
        except OSError as exc:
            self._logger.error("script_chmod_failed", item=name, path=str(path), error=str(exc))
            return LAUNCH_FAILURE

        argv = [str(path)]
        if as_uid is not None:
            argv = [LAUNCHCTL, "asuser", str(as_uid), str(path)]

        env = dict(os.environ)
        env["PATH"] = SCRIPT_PATH
        cwd = str(path.parent)

        if item.run_async:
            try:
                pid = self._runner.spawn_detached(argv, cwd=cwd, env=env)
            except OSError as exc:
                self._logger.error("script_spawn_failed", item=name, error=str(exc))
                return LAUNCH_FAILURE
            self._logger.info("script_detached", item=name, pid=pid)
            return 0

        self._logger.info("script_running", item=name, path=str(path), as_uid=as_uid)
        try:
            result = await self._runner.run(argv, cwd=cwd, env=env)
        except OSError as exc:
            self._logger.error("script_spawn_failed", item=name, error=str(exc))
            return LAUNCH_FAILURE

        if result.stdout:
            self._logger.debug("script_stdout", item=name, output=result.stdout.strip())
        if result.stderr:
            self._logger.debug("script_stderr", item=name, output=result.stderr.strip())

        if result.exit_code == 0:
            self._logger.info("script_succeeded", item=name)
        else:
            self._logger.warning("script_exited_nonzero", item=name, exit_code=result.exit_code)
        return result.exit_code
