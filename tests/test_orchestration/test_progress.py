"""
Tests for provisioner.orchestration.progress
============================================

DialogProgressReporter appends one command per line to the file the
window watches, and stays silent when the window binary is not installed.
"""

from pathlib import Path

import pytest

from provisioner.core.enums import ItemStatus, Phase
from provisioner.orchestration.progress import (
    DialogProgressReporter,
    NullProgressReporter,
    ProgressReporter,
)


class _Launcher:
    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        return object()


@pytest.fixture
def binary(tmp_path: Path) -> Path:
    path = tmp_path / "dialog"
    path.write_text("")
    return path


class TestDialogProgressReporter:
    """Command-file output."""

    def test_headless_without_binary(self, tmp_path: Path) -> None:
        launcher = _Launcher()
        reporter = DialogProgressReporter(
            binary=tmp_path / "absent", command_file=tmp_path / "cmd.log", launcher=launcher
        )
        reporter.start("Setup", 3)
        reporter.item_added("Tool")
        reporter.close()

        assert not reporter.active
        assert launcher.calls == []
        assert not (tmp_path / "cmd.log").exists()

    def test_launch_arguments(self, binary: Path, tmp_path: Path) -> None:
        launcher = _Launcher()
        command_file = tmp_path / "cmd.log"
        reporter = DialogProgressReporter(binary=binary, command_file=command_file, launcher=launcher)

        reporter.start("Setting up", 4)

        assert reporter.active
        argv = launcher.calls[0]
        assert argv[0] == str(binary)
        assert argv[argv.index("--title") + 1] == "Setting up"
        assert argv[argv.index("--progress") + 1] == "4"
        assert argv[argv.index("--commandfile") + 1] == str(command_file)

    def test_commands(self, binary: Path, tmp_path: Path) -> None:
        command_file = tmp_path / "cmd.log"
        reporter = DialogProgressReporter(
            binary=binary, command_file=command_file, launcher=_Launcher()
        )
        reporter.start("Setup", 2)
        reporter.phase_started(Phase.SETUP, 2)
        reporter.item_added("Tool")
        reporter.item_status("Tool", ItemStatus.WAITING, "Downloading")
        reporter.item_status("Tool", ItemStatus.FAILED)
        reporter.progress(150)
        reporter.complete("Done")
        reporter.close()

        lines = command_file.read_text().splitlines()
        assert "listitem: add, title: Tool, status: pending" in lines
        assert "listitem: title: Tool, status: wait, statustext: Downloading" in lines
        assert "listitem: title: Tool, status: fail" in lines
        assert "progress: 100" in lines
        assert "progress: complete" in lines
        assert lines[-1] == "quit:"
        assert not reporter.active

    def test_launch_failure_is_headless(self, binary: Path, tmp_path: Path) -> None:
        def launcher(argv, **kwargs):
            raise PermissionError("not executable")

        reporter = DialogProgressReporter(
            binary=binary, command_file=tmp_path / "cmd.log", launcher=launcher
        )
        reporter.start("Setup", 1)
        assert not reporter.active


class TestNullProgressReporter:

    def test_is_progress_reporter(self) -> None:
        reporter = NullProgressReporter()
        assert isinstance(reporter, ProgressReporter)
        reporter.start("Setup", 1)
        reporter.complete("Done")
        reporter.close()
