"""
provisioner.execution.packages - Package Receipts and Installer
===============================================================

Thin wrappers around the macOS package tools:

    pkgutil --pkg-info-plist <id>     → installed version ("pkg-version")
    installer -pkg <path> -target /   → install exit code
"""

from __future__ import annotations

import plistlib
from typing import Optional

import structlog

from provisioner.execution.process import ProcessRunner

logger = structlog.get_logger()

PKGUTIL = "/usr/sbin/pkgutil"
INSTALLER = "/usr/sbin/installer"


class PackageDatabase:
    """Queries package receipts and runs the system installer."""

    def __init__(self, runner: ProcessRunner) -> None:
        self._runner = runner
        self._logger = logger.bind(component="package_database")

    async def installed_version(self, package_id: str) -> Optional[str]:
        """Installed version of `package_id`, or None if there is no receipt."""
        try:
            result = await self._runner.run([PKGUTIL, "--pkg-info-plist", package_id])
        except OSError as exc:
            self._logger.warning("receipt_query_failed", package_id=package_id, error=str(exc))
            return None
        if not result.ok:
            return None
        try:
            info = plistlib.loads(result.stdout.encode("utf-8"))
        except (plistlib.InvalidFileException, ValueError) as exc:
            self._logger.warning("receipt_unparseable", package_id=package_id, error=str(exc))
            return None
        version = info.get("pkg-version") if isinstance(info, dict) else None
        return str(version) if version else None

    async def install(self, package_path: str) -> int:
        """Install a package onto the root volume.

        Raises:
            OSError: If the installer cannot be launched.
        """
        result = await self._runner.run([INSTALLER, "-pkg", package_path, "-target", "/"])
        if result.stdout:
            self._logger.debug("installer_stdout", path=package_path, output=result.stdout.strip())
        if result.stderr:
            self._logger.debug("installer_stderr", path=package_path, output=result.stderr.strip())
        return result.exit_code
