"""
Tests for provisioner.infrastructure.host
========================================

The `skip_if` rule must be symmetric: an item tagged for one architecture
class is skipped on that class and runs on the other.
"""

import os
import pwd
from pathlib import Path

import pytest

from provisioner.core.enums import Architecture
from provisioner.infrastructure.host import (
    detect_architecture,
    read_console_user,
    should_skip_for_architecture,
)


class TestDetectArchitecture:

    @pytest.mark.parametrize(
        "machine, expected",
        [
            ("arm64", Architecture.ARM64),
            ("aarch64", Architecture.ARM64),
            ("x86_64", Architecture.X86_64),
            ("i386", Architecture.X86_64),
        ],
    )
    def test_machine_strings(self, machine: str, expected: Architecture) -> None:
        assert detect_architecture(machine) == expected

    def test_status_tags(self) -> None:
        assert Architecture.ARM64.status_tag == "ARM64"
        assert Architecture.X86_64.status_tag == "X64"


class TestSkipForArchitecture:
    """Tests for should_skip_for_architecture()."""

    @pytest.mark.parametrize("tag", ["arm64", "arm", "apple_silicon", "ARM64"])
    def test_arm_tags(self, tag: str) -> None:
        """A tag names the host class the item is skipped on, not run on."""
        assert should_skip_for_architecture(tag, Architecture.ARM64)
        assert not should_skip_for_architecture(tag, Architecture.X86_64)

    @pytest.mark.parametrize("tag", ["x86_64", "intel", "Intel"])
    def test_intel_tags(self, tag: str) -> None:
        assert should_skip_for_architecture(tag, Architecture.X86_64)
        assert not should_skip_for_architecture(tag, Architecture.ARM64)

    @pytest.mark.parametrize("tag", [None, ""])
    def test_untagged_always_runs(self, tag) -> None:
        for architecture in Architecture:
            assert not should_skip_for_architecture(tag, architecture)


class TestReadConsoleUser:

    def test_owner_of_file(self, tmp_path: Path) -> None:
        try:
            expected = pwd.getpwuid(os.getuid()).pw_name
        except KeyError:
            pytest.skip("current uid has no passwd entry")
        console = tmp_path / "console"
        console.write_text("")
        user = read_console_user(console)
        assert user is not None
        assert user.uid == os.getuid()
        assert user.name == expected

    def test_missing_console(self, tmp_path: Path) -> None:
        assert read_console_user(tmp_path / "absent") is None
