"""
provisioner.orchestration.service - launchd Registration and Reboot
===================================================================

After a run, Provisioner re-registers itself with launchd so that it is
started again at the next boot, and optionally schedules a restart.

    ServiceRegistrar.register_daemon()   /Library/LaunchDaemons/<id>.plist + launchctl load
    ServiceRegistrar.register_agent(uid) /Library/LaunchAgents/<id>.plist (runs --userscript)
    ServiceRegistrar.remove_daemon()     launchctl remove <id> + delete the plist
    RebootScheduler.schedule()           restart after a fixed delay

Registration failures are logged and reported as False; they never fail the
run. The reboot timer runs on its own thread and cannot be cancelled once
scheduled, so it is only started after status has been persisted.
"""

from __future__ import annotations

import os
import plistlib
import subprocess
import threading
from pathlib import Path
from typing import Callable, Optional, Sequence

import structlog

from provisioner.execution.process import ProcessRunner

logger = structlog.get_logger()

LAUNCHCTL = "/bin/launchctl"
RESTART_COMMAND = [
    "/usr/bin/osascript",
    "-e",
    'tell application "System Events" to restart',
]


class ServiceRegistrar:
    """Writes launchd job definitions and (un)loads them."""

    def __init__(
        self,
        identifier: str,
        executable_path: str,
        runner: ProcessRunner,
        launch_daemons_dir: Path = Path("/Library/LaunchDaemons"),
        launch_agents_dir: Path = Path("/Library/LaunchAgents"),
        arguments: Sequence[str] = ("run",),
    ) -> None:
        self.identifier = identifier
        self.executable_path = executable_path
        self.daemon_plist = Path(launch_daemons_dir) / f"{identifier}.plist"
        self.agent_plist = Path(launch_agents_dir) / f"{identifier}.plist"
        self._arguments = list(arguments)
        self._runner = runner
        self._logger = logger.bind(component="service_registrar")

    def daemon_definition(self) -> dict:
        return {
            "Label": self.identifier,
            "ProgramArguments": [self.executable_path, *self._arguments],
            "RunAtLoad": True,
            "KeepAlive": False,
        }

    def agent_definition(self) -> dict:
        return {
            "Label": self.identifier,
            "ProgramArguments": [self.executable_path, *self._arguments, "--userscript"],
            "RunAtLoad": True,
        }

    async def register_daemon(self) -> bool:
        """Install and load the LaunchDaemon. Returns False on any failure."""
        try:
            self._write_plist(self.daemon_plist, self.daemon_definition())
            result = await self._runner.run([LAUNCHCTL, "load", str(self.daemon_plist)])
        except OSError as exc:
            self._logger.warning("daemon_registration_failed", path=str(self.daemon_plist), error=str(exc))
            return False
        if not result.ok:
            self._logger.warning(
                "daemon_load_failed",
                path=str(self.daemon_plist),
                exit_code=result.exit_code,
                stderr=result.stderr.strip(),
            )
            return False
        self._logger.info("daemon_registered", label=self.identifier, path=str(self.daemon_plist))
        return True

    def register_agent(self, uid: int) -> bool:
        """Install the per-user LaunchAgent owned by `uid`."""
        try:
            self._write_plist(self.agent_plist, self.agent_definition())
            os.chown(self.agent_plist, uid, -1)
        except OSError as exc:
            self._logger.warning("agent_registration_failed", path=str(self.agent_plist), error=str(exc))
            return False
        self._logger.info("agent_registered", label=self.identifier, uid=uid)
        return True

    async def remove_daemon(self) -> None:
        try:
            await self._runner.run([LAUNCHCTL, "remove", self.identifier])
        except OSError as exc:
            self._logger.warning("daemon_remove_failed", label=self.identifier, error=str(exc))
        try:
            self.daemon_plist.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            self._logger.warning("daemon_plist_remove_failed", path=str(self.daemon_plist), error=str(exc))
        else:
            self._logger.info("daemon_removed", label=self.identifier)

    @staticmethod
    def _write_plist(path: Path, definition: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            plistlib.dump(definition, f)
        os.chmod(path, 0o644)


class RebootScheduler:
    """Restarts the machine after a delay on an independent timer thread."""

    def __init__(
        self,
        delay: float = 5.0,
        command: Sequence[str] = tuple(RESTART_COMMAND),
        launcher: Callable[..., object] = subprocess.Popen,
    ) -> None:
        self.delay = delay
        self._command = list(command)
        self._launcher = launcher
        self._timer: Optional[threading.Timer] = None
        self._logger = logger.bind(component="reboot_scheduler")

    @property
    def scheduled(self) -> bool:
        return self._timer is not None

    def schedule(self) -> threading.Timer:
        """Start the restart timer (idempotent)."""
        if self._timer is None:
            self._logger.info("reboot_scheduled", delay=self.delay)
            # Non-daemon: the interpreter waits for the restart to be issued.
            self._timer = threading.Timer(self.delay, self._restart)
            self._timer.daemon = False
            self._timer.start()
        return self._timer

    def _restart(self) -> None:
        try:
            self._launcher(self._command)
        except OSError as exc:
            self._logger.error("reboot_failed", error=str(exc))
