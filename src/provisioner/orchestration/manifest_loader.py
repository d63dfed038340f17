"""
provisioner.orchestration.manifest_loader - Manifest Loading
============================================================

Turns a manifest source into a validated Manifest.

    https://... / http://...  → ArtifactFetcher.fetch (bounded wait)
    file:///path or /path     → read from disk

Failures are kept apart so operators can tell them apart in the log:

    no source configured          → ConfigurationError  NO_MANIFEST_SOURCE
    transfer / read failure       → ManifestError       MANIFEST_FETCH_FAILED
    bad JSON / failed validation  → ManifestError       MANIFEST_DECODE_FAILED
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import structlog
from pydantic import ValidationError

from provisioner.core.exceptions import ConfigurationError, ManifestError, TransientFetchError
from provisioner.core.models import Manifest
from provisioner.infrastructure.fetcher import ArtifactFetcher

logger = structlog.get_logger()


class ManifestLoader:
    """Fetches and decodes the provisioning manifest."""

    def __init__(self, fetcher: ArtifactFetcher, timeout: float = 60.0) -> None:
        self._fetcher = fetcher
        self._timeout = timeout
        self._logger = logger.bind(component="manifest_loader")

    async def load(self, url: Optional[str]) -> Manifest:
        """Load the manifest from `url`.

        Raises:
            ConfigurationError: If `url` is empty.
            ManifestError: If the manifest cannot be fetched or decoded.
        """
        if not url:
            raise ConfigurationError(
                message="No manifest URL configured",
                error_code="NO_MANIFEST_SOURCE",
            )

        payload = await self._read(url)

        try:
            manifest = Manifest.model_validate(json.loads(payload))
        except (ValueError, ValidationError) as exc:
            # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
            raise ManifestError(
                message=f"Manifest could not be decoded: {exc}",
                url=url,
                error_code="MANIFEST_DECODE_FAILED",
            ) from exc

        self._logger.info(
            "manifest_loaded",
            url=url,
            preflight=len(manifest.preflight),
            setup=len(manifest.setup),
            userland=len(manifest.userland),
        )
        return manifest

    async def _read(self, url: str) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme in ("http", "https"):
            try:
                return await self._fetcher.fetch(url, timeout=self._timeout)
            except TransientFetchError as exc:
                raise ManifestError(
                    message=f"Manifest could not be fetched: {exc.message}",
                    url=url,
                    error_code="MANIFEST_FETCH_FAILED",
                    details={"cause": exc.error_code},
                ) from exc

        path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(url)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ManifestError(
                message=f"Manifest could not be read: {exc}",
                url=url,
                error_code="MANIFEST_FETCH_FAILED",
            ) from exc
