"""
provisioner.infrastructure.host - Host Facts
============================================

Small queries about the machine we are running on:

    detect_architecture()          → Architecture.ARM64 | Architecture.X86_64
    should_skip_for_architecture() → the manifest `skip_if` rule
    read_console_user()            → who owns the interactive console session
"""

from __future__ import annotations

import os
import platform
import pwd
from pathlib import Path
from typing import NamedTuple, Optional

from provisioner.core.enums import Architecture

# skip_if substrings that name each architecture class
ARM_TAGS = ("arm", "apple_silicon")
INTEL_TAGS = ("x86_64", "intel")


def detect_architecture(machine: Optional[str] = None) -> Architecture:
    """Classify the host CPU. Anything that is not arm64 is treated as Intel."""
    machine = (machine if machine is not None else platform.machine()).lower()
    if "arm64" in machine or "aarch64" in machine:
        return Architecture.ARM64
    return Architecture.X86_64


def should_skip_for_architecture(skip_if: Optional[str], architecture: Architecture) -> bool:
    """True when an item's `skip_if` tag names the host's architecture class.

    Examples:
        skip_if="arm64",  host arm64   → skipped
        skip_if="intel",  host x86_64  → skipped
        skip_if="arm64",  host x86_64  → runs
        skip_if=None                   → always runs
    """
    if not skip_if:
        return False
    tag = skip_if.lower()
    if architecture == Architecture.ARM64:
        return any(t in tag for t in ARM_TAGS)
    return any(t in tag for t in INTEL_TAGS)


class ConsoleUser(NamedTuple):
    name: str
    uid: int


def read_console_user(console: Path = Path("/dev/console")) -> Optional[ConsoleUser]:
    """Owner of the console device, or None if it cannot be determined."""
    try:
        uid = os.stat(console).st_uid
        name = pwd.getpwuid(uid).pw_name
    except (OSError, KeyError):
        return None
    return ConsoleUser(name=name, uid=uid)
