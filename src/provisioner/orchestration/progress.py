"""
provisioner.orchestration.progress - Progress UI Notifications
==============================================================

The orchestrator emits a narrow set of notifications:

    start(title, total_items)       a run is about to begin
    phase_started(phase, count)     a phase was entered
    item_added(name)                an item is pending
    item_status(name, status, ..)   waiting / succeeded / failed / skipped
    progress(percent, text)         overall progress
    complete(message)               the run is over
    close()                         release the UI

Implementations:
    - ProgressReporter (ABC)
    - NullProgressReporter:    headless; every call is a no-op
    - DialogProgressReporter:  drives a SwiftDialog-style window by appending
                               commands to the command file it watches

The orchestrator behaves identically whichever one it is given.
"""

from __future__ import annotations

import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

import structlog

from provisioner.core.enums import ItemStatus, Phase

logger = structlog.get_logger()


# =============================================================================
# Abstract Base Class: ProgressReporter
# =============================================================================
class ProgressReporter(ABC):
    """Receives progress notifications from the orchestrator."""

    @abstractmethod
    def start(self, title: str, total_items: int) -> None:
        """A run is starting with `total_items` items overall."""

    @abstractmethod
    def phase_started(self, phase: Phase, item_count: int) -> None:
        """`phase` was entered with `item_count` items."""

    @abstractmethod
    def item_added(self, name: str) -> None:
        """An item was announced as pending."""

    @abstractmethod
    def item_status(self, name: str, status: ItemStatus, detail: str = "") -> None:
        """An item changed status."""

    @abstractmethod
    def progress(self, percent: int, text: str = "") -> None:
        """Overall progress, 0-100."""

    @abstractmethod
    def complete(self, message: str) -> None:
        """The run finished (successfully or not)."""

    @abstractmethod
    def close(self) -> None:
        """Release the UI."""


class NullProgressReporter(ProgressReporter):
    """Headless mode."""

    def start(self, title: str, total_items: int) -> None:
        pass

    def phase_started(self, phase: Phase, item_count: int) -> None:
        pass

    def item_added(self, name: str) -> None:
        pass

    def item_status(self, name: str, status: ItemStatus, detail: str = "") -> None:
        pass

    def progress(self, percent: int, text: str = "") -> None:
        pass

    def complete(self, message: str) -> None:
        pass

    def close(self) -> None:
        pass


# =============================================================================
# Dialog Command-File Reporter
# =============================================================================
# The window process tails the command file; one command per line.
# =============================================================================
_DIALOG_STATUS = {
    ItemStatus.PENDING: "pending",
    ItemStatus.WAITING: "wait",
    ItemStatus.SUCCEEDED: "success",
    ItemStatus.FAILED: "fail",
    ItemStatus.SKIPPED: "success",
}

_PHASE_TITLES = {
    Phase.PREFLIGHT: "Checking this Mac",
    Phase.SETUP: "Installing software",
    Phase.USERLAND: "Finishing setup",
}


class DialogProgressReporter(ProgressReporter):
    """Writes progress commands for a dialog window.

    If the dialog binary is not installed the reporter stays headless:
    `start` does not launch anything and no commands are written.

    Attributes:
        binary: Dialog executable.
        command_file: File the window watches for commands.
        launcher: Starts the window process (subprocess.Popen by default).
    """

    def __init__(
        self,
        binary: Path = Path("/usr/local/bin/dialog"),
        command_file: Path = Path("/var/tmp/dialog.log"),
        launcher: Callable[..., object] = subprocess.Popen,
    ) -> None:
        self.binary = Path(binary)
        self.command_file = Path(command_file)
        self._launcher = launcher
        self._process: Optional[object] = None
        self._active = False
        self._logger = logger.bind(component="dialog_progress")

    @property
    def active(self) -> bool:
        return self._active

    def start(self, title: str, total_items: int) -> None:
        if not self.binary.exists():
            self._logger.info("dialog_unavailable", binary=str(self.binary))
            return
        try:
            self.command_file.parent.mkdir(parents=True, exist_ok=True)
            self.command_file.write_text("")
            self._process = self._launcher(
                [
                    str(self.binary),
                    "--title", title,
                    "--message", "Please wait while this Mac is configured.",
                    "--icon", "SF=gearshape.2.fill",
                    "--progress", str(max(total_items, 1)),
                    "--progresstext", "Preparing...",
                    "--commandfile", str(self.command_file),
                    "--button1text", "Please Wait",
                    "--button1disabled",
                ],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            self._logger.warning("dialog_launch_failed", error=str(exc))
            return
        self._active = True

    def phase_started(self, phase: Phase, item_count: int) -> None:
        self._write(f"title: {_PHASE_TITLES[phase]}")
        self._write(f"progresstext: {phase.value.capitalize()}: {item_count} item(s)")

    def item_added(self, name: str) -> None:
        self._write(f"listitem: add, title: {name}, status: pending")

    def item_status(self, name: str, status: ItemStatus, detail: str = "") -> None:
        command = f"listitem: title: {name}, status: {_DIALOG_STATUS[status]}"
        if detail:
            command += f", statustext: {detail}"
        self._write(command)

    def progress(self, percent: int, text: str = "") -> None:
        self._write(f"progress: {min(100, max(0, percent))}")
        if text:
            self._write(f"progresstext: {text}")

    def complete(self, message: str) -> None:
        self._write("progress: complete")
        self._write(f"progresstext: {message}")
        self._write("button1text: Done")
        self._write("button1: enable")

    def close(self) -> None:
        self._write("quit:")
        self._active = False

    def _write(self, command: str) -> None:
        if not self._active:
            return
        try:
            with open(self.command_file, "a") as f:
                f.write(command + "\n")
        except OSError as exc:
            self._logger.debug("dialog_command_failed", command=command, error=str(exc))
