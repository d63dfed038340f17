"""
provisioner.infrastructure.download_cache - Verified Payload Cache
==================================================================

Decides whether a manifest item's payload needs fetching and, if so,
fetches and verifies it with retries.

ensure(item) Decision Flow:

    skip_if names this host's architecture? ──yes──→ success (static exclusion)
            │ no
    destination digest == expected?         ──yes──→ success (cache hit, no I/O)
            │ no
    dry run?                                ──yes──→ success (logged intent)
            │ no
    ┌─→ attempt n: download → verify digest ──ok───→ success
    │        │ TransientFetchError / IntegrityError
    └── sleep retry_wait (not after the last attempt)
             │ attempts exhausted
             └──────────────────────────────────────→ failure

A file only counts as valid once its digest has been checked after the write
completed. On failure the destination keeps whatever the last attempt wrote,
and the next invocation will see the mismatch and fetch again.
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import Awaitable, Callable, Optional

import structlog

from provisioner.core.enums import Architecture
from provisioner.core.exceptions import IntegrityError, TransientFetchError
from provisioner.core.models import ManifestItem
from provisioner.infrastructure.fetcher import ArtifactFetcher
from provisioner.infrastructure.host import should_skip_for_architecture
from provisioner.infrastructure.verifier import ContentVerifier

logger = structlog.get_logger()

SleepFn = Callable[[float], Awaitable[None]]


class DownloadCache:
    """Fetch-if-needed with digest verification and retries.

    Attributes:
        _fetcher: Transfers payloads.
        _verifier: Computes and checks digests.
        _architecture: Host architecture for the skip_if rule.
        _cache_dir: Base directory for relative item paths.
        _dry_run: Log intent without I/O.
        _follow_redirects: Default redirect policy for items.
        _download_timeout: Bound on a single transfer, seconds.
        _sleep: Awaitable sleep between attempts (injected in tests).
    """

    def __init__(
        self,
        fetcher: ArtifactFetcher,
        architecture: Architecture,
        cache_dir: Path,
        verifier: Optional[ContentVerifier] = None,
        dry_run: bool = False,
        follow_redirects: bool = False,
        download_timeout: float = 120.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._fetcher = fetcher
        self._verifier = verifier or ContentVerifier()
        self._architecture = architecture
        self._cache_dir = Path(cache_dir)
        self._dry_run = dry_run
        self._follow_redirects = follow_redirects
        self._download_timeout = download_timeout
        self._sleep = sleep
        self._logger = logger.bind(component="download_cache")

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def resolve_destination(self, item: ManifestItem) -> Path:
        """Absolute destination path of an item's payload."""
        return item.destination(self._cache_dir)

    # -------------------------------------------------------------------------
    # ensure
    # -------------------------------------------------------------------------
    async def ensure(self, item: ManifestItem) -> bool:
        """Make sure the item's payload is present and verified.

        Returns:
            True on success (including architecture skip, cache hit and
            dry run), False once every attempt has failed.
        """
        name = item.display_name
        destination = self.resolve_destination(item)

        if should_skip_for_architecture(item.skip_if, self._architecture):
            self._logger.info(
                "download_skipped_architecture",
                item=name,
                skip_if=item.skip_if,
                architecture=self._architecture.value,
            )
            return True

        if self._verifier.matches(destination, item.expected_hash):
            self._logger.info("download_cache_hit", item=name, path=str(destination))
            return True

        if self._dry_run:
            self._logger.info(
                "download_dry_run", item=name, url=item.url, path=str(destination)
            )
            return True

        attempts = max(item.retries, 1)
        redirects = (
            item.follow_redirects if item.follow_redirects is not None else self._follow_redirects
        )

        for attempt in range(1, attempts + 1):
            try:
                await self._fetcher.download(
                    item.url,
                    destination,
                    follow_redirects=redirects,
                    timeout=self._download_timeout,
                )
                self._verifier.verify(destination, item.expected_hash)
            except (TransientFetchError, IntegrityError) as exc:
                self._logger.warning(
                    "download_attempt_failed",
                    item=name,
                    url=item.url,
                    path=str(destination),
                    attempt=attempt,
                    attempts=attempts,
                    error_code=exc.error_code,
                    error=exc.message,
                )
                if exc.error_code == "INVALID_URL":
                    break
                if attempt < attempts:
                    await self._sleep(item.retry_wait)
                continue

            self._logger.info(
                "download_succeeded", item=name, path=str(destination), attempt=attempt
            )
            return True

        self._logger.error(
            "download_failed",
            item=name,
            url=item.url,
            path=str(destination),
            attempts=attempts,
        )
        return False

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------
    def purge(self) -> int:
        """Remove everything inside the cache directory.

        Returns:
            Number of entries removed. Entries that cannot be removed are
            logged and left in place.
        """
        if not self._cache_dir.is_dir():
            self._logger.debug("cache_purge_nothing", path=str(self._cache_dir))
            return 0

        removed = 0
        for entry in self._cache_dir.iterdir():
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            except OSError as exc:
                self._logger.warning("cache_purge_failed", path=str(entry), error=str(exc))
                continue
            removed += 1

        self._logger.info("cache_purged", path=str(self._cache_dir), removed=removed)
        return removed
