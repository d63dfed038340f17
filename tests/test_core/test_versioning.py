"""
Tests for provisioner.core.versioning
=====================================

Receipt versions are compared numerically segment by segment, with missing
trailing segments treated as zero.
"""

import pytest

from provisioner.core.versioning import compare_versions, is_at_least


class TestCompareVersions:
    """Tests for compare_versions()."""

    @pytest.mark.parametrize(
        "left, right, expected",
        [
            ("1.9", "1.10", -1),
            ("1.10", "1.9", 1),
            ("2.1", "2.1.0", 0),
            ("3", "3.0.1", -1),
            ("10.0", "9.99", 1),
            ("1.0.0", "1", 0),
        ],
    )
    def test_examples(self, left: str, right: str, expected: int) -> None:
        assert compare_versions(left, right) == expected

    def test_non_numeric_segments_ignored(self) -> None:
        assert compare_versions("1.0.b2", "1.0") == 0

    def test_whitespace_tolerated(self) -> None:
        assert compare_versions(" 1.2 ", "1.2") == 0


class TestIsAtLeast:
    """Tests for is_at_least()."""

    def test_equal_satisfies(self) -> None:
        assert is_at_least("1.2.3", "1.2.3")

    def test_newer_satisfies(self) -> None:
        assert is_at_least("1.10", "1.9")

    def test_older_does_not(self) -> None:
        assert not is_at_least("1.9", "1.10")
