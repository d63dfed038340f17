"""
provisioner.infrastructure.verifier - Content Digest Verification
=================================================================

Computes SHA-256 digests of local files and compares them against the
manifest's expected value. Comparison is case-insensitive because manifests
carry both upper- and lower-case hex.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Optional, Union

from provisioner.core.exceptions import IntegrityError

_CHUNK_SIZE = 1024 * 1024


class ContentVerifier:
    """Digest a file and check it against an expected hex digest.

    Example:
        >>> verifier = ContentVerifier()
        >>> verifier.matches("/Library/provisioner/tool.pkg", item.expected_hash)
        True
    """

    def __init__(self, algorithm: str = "sha256") -> None:
        self._algorithm = algorithm

    def digest(self, path: Union[str, Path]) -> Optional[str]:
        """Hex digest of the file, or None if it does not exist."""
        path = Path(path)
        if not path.is_file():
            return None
        hasher = hashlib.new(self._algorithm)
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                hasher.update(chunk)
        return hasher.hexdigest()

    def matches(self, path: Union[str, Path], expected: str) -> bool:
        actual = self.digest(path)
        return actual is not None and actual == expected.strip().lower()

    def verify(self, path: Union[str, Path], expected: str) -> str:
        """Return the digest, raising IntegrityError on mismatch."""
        actual = self.digest(path)
        if actual is None or actual != expected.strip().lower():
            raise IntegrityError(
                message=f"Digest mismatch for {path}",
                path=str(path),
                expected=expected,
                actual=actual,
            )
        return actual
