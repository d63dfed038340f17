"""
provisioner.infrastructure.fetcher - HTTP Artifact Fetcher
==========================================================

Retrieves manifests and item payloads over HTTP(S) with httpx.

Two entry points:

    fetch(url)             → bytes    (manifest; decoded by the caller)
    download(url, path)    → int      (payload streamed straight to `path`)

Every call is bounded by `asyncio.wait_for(..., timeout)`; running out of
time is reported exactly like a transport failure. Nothing here decodes
content, so callers can tell network errors (TransientFetchError) apart from
decode errors.

Download Path:
    The destination's parent directory is created if missing and the body is
    streamed directly into the destination. No temp file on a staging volume
    is involved. Digest verification is the caller's job and only starts
    after `download` has returned, i.e. after the write has completed.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import httpx
import structlog

from provisioner.core.constants import TOOL_VERSION
from provisioner.core.exceptions import TransientFetchError

logger = structlog.get_logger()


class ArtifactFetcher:
    """Async HTTP client wrapper with auth, redirect policy and timeouts.

    Attributes:
        _auth_header: Default Authorization header value (None = no header).
        _follow_redirects: Default redirect policy.
        _manifest_timeout: Default bound for `fetch`, seconds.
        _download_timeout: Default bound for `download`, seconds.
        _transport: Optional httpx transport (tests inject MockTransport).

    Example:
        >>> async with ArtifactFetcher(auth_header="Basic abc") as fetcher:
        ...     payload = await fetcher.fetch("https://example.com/bootstrap.json")
    """

    def __init__(
        self,
        auth_header: Optional[str] = None,
        follow_redirects: bool = False,
        manifest_timeout: float = 60.0,
        download_timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._auth_header = auth_header
        self._follow_redirects = follow_redirects
        self._manifest_timeout = manifest_timeout
        self._download_timeout = download_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._logger = logger.bind(component="artifact_fetcher")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                timeout=httpx.Timeout(self._download_timeout, connect=30.0),
                headers={"User-Agent": f"provisioner/{TOOL_VERSION}"},
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> ArtifactFetcher:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _headers(self, auth_header: Optional[str]) -> dict[str, str]:
        value = auth_header if auth_header is not None else self._auth_header
        return {"Authorization": value} if value else {}

    # -------------------------------------------------------------------------
    # In-memory fetch (manifests)
    # -------------------------------------------------------------------------
    async def fetch(
        self,
        url: str,
        follow_redirects: Optional[bool] = None,
        auth_header: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bytes:
        """Fetch `url` and return the body.

        Raises:
            TransientFetchError: On transport failure, non-2xx status
                (including an unfollowed redirect), timeout or a malformed URL.
        """
        redirects = self._follow_redirects if follow_redirects is None else follow_redirects
        bound = timeout if timeout is not None else self._manifest_timeout

        async def _get() -> bytes:
            response = await self._get_client().get(
                url,
                headers=self._headers(auth_header),
                follow_redirects=redirects,
            )
            response.raise_for_status()
            return response.content

        body = await self._bounded(url, _get(), bound)
        self._logger.debug("fetch_succeeded", url=url, size=len(body))
        return body

    # -------------------------------------------------------------------------
    # Streaming download (payloads)
    # -------------------------------------------------------------------------
    async def download(
        self,
        url: str,
        destination: Path,
        follow_redirects: Optional[bool] = None,
        auth_header: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """Stream `url` into `destination`.

        Returns:
            Number of bytes written.

        Raises:
            TransientFetchError: On transport failure, non-2xx status,
                timeout, or when the destination cannot be written.
        """
        redirects = self._follow_redirects if follow_redirects is None else follow_redirects
        bound = timeout if timeout is not None else self._download_timeout
        destination = Path(destination)

        async def _stream() -> int:
            written = 0
            async with self._get_client().stream(
                "GET",
                url,
                headers=self._headers(auth_header),
                follow_redirects=redirects,
            ) as response:
                response.raise_for_status()
                try:
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    with open(destination, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            f.write(chunk)
                            written += len(chunk)
                except OSError as exc:
                    raise TransientFetchError(
                        message=f"Cannot write {destination}: {exc}",
                        url=url,
                        error_code="DOWNLOAD_WRITE_FAILED",
                        details={"path": str(destination)},
                    ) from exc
            return written

        written = await self._bounded(url, _stream(), bound)
        self._logger.debug(
            "download_written", url=url, path=str(destination), size=written
        )
        return written

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------
    async def _bounded(self, url: str, operation, timeout: float):
        """Await `operation`, mapping timeouts and httpx errors."""
        try:
            return await asyncio.wait_for(operation, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise TransientFetchError(
                message=f"Timed out after {timeout}s fetching {url}",
                url=url,
                error_code="FETCH_TIMEOUT",
                details={"timeout": timeout},
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise TransientFetchError(
                message=f"HTTP {exc.response.status_code} fetching {url}",
                url=url,
                details={"status_code": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            raise TransientFetchError(
                message=f"Transfer failed for {url}: {exc}",
                url=url,
            ) from exc
        except httpx.InvalidURL as exc:
            # Not an HTTPError subclass; raised before any request is sent.
            raise TransientFetchError(
                message=f"Malformed URL {url}: {exc}",
                url=url,
                error_code="INVALID_URL",
            ) from exc
