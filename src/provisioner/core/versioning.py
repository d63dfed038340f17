"""
provisioner.core.versioning - Dotted Version Comparison
=======================================================

Installed package versions are compared numerically, segment by segment:

    >>> compare_versions("1.9", "1.10")
    -1
    >>> compare_versions("2.1", "2.1.0")
    0
    >>> compare_versions("3", "3.0.1")
    -1

Missing trailing segments count as 0. Segments that are not plain integers
(e.g. "b2" in "1.0.b2") are ignored.
"""

from __future__ import annotations

from itertools import zip_longest


def _segments(version: str) -> list[int]:
    return [int(part) for part in version.strip().split(".") if part.isdigit()]


def compare_versions(left: str, right: str) -> int:
    """Compare two dotted versions.

    Returns:
        -1 if left < right, 0 if equal, 1 if left > right.
    """
    for a, b in zip_longest(_segments(left), _segments(right), fillvalue=0):
        if a != b:
            return -1 if a < b else 1
    return 0


def is_at_least(installed: str, minimum: str) -> bool:
    """True when `installed` satisfies the `minimum` version."""
    return compare_versions(installed, minimum) >= 0
