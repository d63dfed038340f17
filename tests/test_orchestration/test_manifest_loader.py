"""
Tests for provisioner.orchestration.manifest_loader
===================================================

Fetch failures and decode failures must be told apart by error code.
"""

import json
from pathlib import Path

import pytest

from provisioner.core.exceptions import ConfigurationError, ManifestError
from provisioner.infrastructure.fetcher import ArtifactFetcher
from provisioner.orchestration.manifest_loader import ManifestLoader
from tests.conftest import PayloadServer

MANIFEST = {
    "preflight": [],
    "setupassistant": [
        {
            "file": "/Library/Provisioner/cache/Tool.pkg",
            "url": "https://example.com/package/Tool.pkg",
            "hash": "00",
            "type": "package",
        }
    ],
    "userland": None,
}


class TestManifestLoader:
    """Tests for ManifestLoader.load()."""

    async def test_http(self, fetcher: ArtifactFetcher, payload_server: PayloadServer) -> None:
        payload_server.payloads["https://example.com/bootstrap.json"] = json.dumps(MANIFEST).encode()
        manifest = await ManifestLoader(fetcher).load("https://example.com/bootstrap.json")
        assert len(manifest.setup) == 1
        assert manifest.userland == []

    async def test_file_url_and_path(self, fetcher: ArtifactFetcher, tmp_path: Path) -> None:
        path = tmp_path / "bootstrap.json"
        path.write_text(json.dumps(MANIFEST))
        loader = ManifestLoader(fetcher)
        assert (await loader.load(path.as_uri())).item_count == 1
        assert (await loader.load(str(path))).item_count == 1

    async def test_no_source(self, fetcher: ArtifactFetcher) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            await ManifestLoader(fetcher).load("")
        assert exc_info.value.error_code == "NO_MANIFEST_SOURCE"

    async def test_fetch_failure(self, fetcher: ArtifactFetcher) -> None:
        with pytest.raises(ManifestError) as exc_info:
            await ManifestLoader(fetcher).load("https://example.com/missing.json")
        assert exc_info.value.error_code == "MANIFEST_FETCH_FAILED"
        assert exc_info.value.details["cause"] == "FETCH_FAILED"

    async def test_missing_file(self, fetcher: ArtifactFetcher, tmp_path: Path) -> None:
        with pytest.raises(ManifestError) as exc_info:
            await ManifestLoader(fetcher).load(str(tmp_path / "absent.json"))
        assert exc_info.value.error_code == "MANIFEST_FETCH_FAILED"

    async def test_invalid_json(self, fetcher: ArtifactFetcher, payload_server: PayloadServer) -> None:
        payload_server.payloads["https://example.com/bootstrap.json"] = b"{not json"
        with pytest.raises(ManifestError) as exc_info:
            await ManifestLoader(fetcher).load("https://example.com/bootstrap.json")
        assert exc_info.value.error_code == "MANIFEST_DECODE_FAILED"

    async def test_schema_violation(self, fetcher: ArtifactFetcher, tmp_path: Path) -> None:
        path = tmp_path / "bootstrap.json"
        path.write_text(json.dumps({"setupassistant": [{"file": "x"}]}))
        with pytest.raises(ManifestError) as exc_info:
            await ManifestLoader(fetcher).load(str(path))
        assert exc_info.value.error_code == "MANIFEST_DECODE_FAILED"
