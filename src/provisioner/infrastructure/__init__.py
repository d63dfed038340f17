"""
provisioner.infrastructure - Infrastructure Layer
=================================================

I/O-facing building blocks used by the orchestrator:

    - verifier:        ContentVerifier (SHA-256 digests)
    - fetcher:         ArtifactFetcher (httpx, bounded waits)
    - download_cache:  DownloadCache (fetch-if-needed, verify, retry)
    - status_store:    StatusStore ABC, FileStatusStore, InMemoryStatusStore
    - host:            architecture detection, console user, skip_if rule
"""

from provisioner.infrastructure.download_cache import DownloadCache
from provisioner.infrastructure.fetcher import ArtifactFetcher
from provisioner.infrastructure.host import (
    ConsoleUser,
    detect_architecture,
    read_console_user,
    should_skip_for_architecture,
)
from provisioner.infrastructure.status_store import (
    FileStatusStore,
    InMemoryStatusStore,
    JsonStatusSerializer,
    PlistStatusSerializer,
    StatusStore,
)
from provisioner.infrastructure.verifier import ContentVerifier

__all__ = [
    "ArtifactFetcher",
    "ConsoleUser",
    "ContentVerifier",
    "DownloadCache",
    "FileStatusStore",
    "InMemoryStatusStore",
    "JsonStatusSerializer",
    "PlistStatusSerializer",
    "StatusStore",
    "detect_architecture",
    "read_console_user",
    "should_skip_for_architecture",
]
