"""
Shared Test Fixtures for Provisioner
====================================

Reusable fixtures and test doubles, organized by layer:

    1. Payload helpers (digests, a fake HTTP payload server)
    2. Infrastructure fixtures (ArtifactFetcher, DownloadCache, StatusStore)
    3. Execution fixtures (FakeRunner, ExecutionEngine)
    4. Orchestration fixtures (SessionWaiter, RecordingProgress)

Nothing here touches the network or spawns processes: HTTP goes through
httpx.MockTransport and child processes through FakeRunner.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Callable, Optional, Union

import httpx
import pytest

from provisioner.core.enums import Architecture, ItemStatus, Phase
from provisioner.execution.engine import ExecutionEngine
from provisioner.execution.process import ProcessResult, ProcessRunner
from provisioner.infrastructure.download_cache import DownloadCache
from provisioner.infrastructure.fetcher import ArtifactFetcher
from provisioner.infrastructure.host import ConsoleUser
from provisioner.infrastructure.status_store import InMemoryStatusStore
from provisioner.orchestration.progress import ProgressReporter
from provisioner.orchestration.session import SessionWaiter


# =============================================================================
# Payload Helpers
# =============================================================================

def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class PayloadServer:
    """In-process HTTP origin backed by a dict of url → body.

    Unknown URLs answer 404. `requests` records every URL asked for, so
    tests can assert on the number of network calls.
    """

    def __init__(self, payloads: Optional[dict[str, bytes]] = None) -> None:
        self.payloads: dict[str, Union[bytes, int]] = dict(payloads or {})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = self.payloads.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        if isinstance(body, int):
            return httpx.Response(body)
        return httpx.Response(200, content=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls_to(self, url: str) -> int:
        return sum(1 for r in self.requests if str(r.url) == url)


async def no_sleep(seconds: float) -> None:
    """Stand-in for asyncio.sleep that returns immediately."""


# =============================================================================
# Execution Test Doubles
# =============================================================================

class FakeRunner(ProcessRunner):
    """ProcessRunner that records commands instead of running them.

    `handler(argv)` decides the outcome: an int exit code, a full
    ProcessResult, or an exception instance to raise. The default
    handler returns 0 for everything.
    """

    def __init__(self, handler: Optional[Callable[[list[str]], object]] = None) -> None:
        super().__init__()
        self.handler = handler or (lambda argv: 0)
        self.calls: list[list[str]] = []
        self.envs: list[Optional[dict]] = []
        self.detached_calls: list[list[str]] = []

    async def run(self, argv, cwd=None, env=None) -> ProcessResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        self.envs.append(dict(env) if env is not None else None)
        outcome = self.handler(argv)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, ProcessResult):
            return outcome
        return ProcessResult(argv=argv, exit_code=int(outcome))

    def spawn_detached(self, argv, cwd=None, env=None) -> int:
        argv = [str(a) for a in argv]
        self.detached_calls.append(argv)
        return 4242


class RecordingProgress(ProgressReporter):
    """ProgressReporter that keeps every call for assertions."""

    def __init__(self) -> None:
        self.events: list[tuple] = []

    def start(self, title: str, total_items: int) -> None:
        self.events.append(("start", title, total_items))

    def phase_started(self, phase: Phase, item_count: int) -> None:
        self.events.append(("phase", phase, item_count))

    def item_added(self, name: str) -> None:
        self.events.append(("added", name))

    def item_status(self, name: str, status: ItemStatus, detail: str = "") -> None:
        self.events.append(("status", name, status, detail))

    def progress(self, percent: int, text: str = "") -> None:
        self.events.append(("progress", percent))

    def complete(self, message: str) -> None:
        self.events.append(("complete", message))

    def close(self) -> None:
        self.events.append(("close",))

    def statuses(self, name: str) -> list[ItemStatus]:
        return [e[2] for e in self.events if e[0] == "status" and e[1] == name]


# =============================================================================
# Infrastructure
# =============================================================================

@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Empty cache directory for payloads."""
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def payload_server() -> PayloadServer:
    """Fresh PayloadServer with no payloads."""
    return PayloadServer()


@pytest.fixture
async def fetcher(payload_server: PayloadServer):
    """ArtifactFetcher wired to the payload server."""
    fetcher = ArtifactFetcher(transport=payload_server.transport)
    yield fetcher
    await fetcher.close()


@pytest.fixture
def download_cache(fetcher: ArtifactFetcher, cache_dir: Path) -> DownloadCache:
    """DownloadCache on an arm64 host that never really sleeps."""
    return DownloadCache(
        fetcher=fetcher,
        architecture=Architecture.ARM64,
        cache_dir=cache_dir,
        sleep=no_sleep,
    )


@pytest.fixture
def status_store() -> InMemoryStatusStore:
    """Fresh InMemoryStatusStore with a fixed run id."""
    return InMemoryStatusStore(run_id="run-1", architecture="ARM64", version="1.0.0")


# =============================================================================
# Execution
# =============================================================================

@pytest.fixture
def runner() -> FakeRunner:
    """FakeRunner where every command exits 0."""
    return FakeRunner()


@pytest.fixture
def engine(runner: FakeRunner, cache_dir: Path) -> ExecutionEngine:
    """ExecutionEngine backed by the fake runner."""
    return ExecutionEngine(runner=runner, cache_dir=cache_dir)


# =============================================================================
# Orchestration
# =============================================================================

@pytest.fixture
def console_user() -> ConsoleUser:
    return ConsoleUser(name="alice", uid=501)


@pytest.fixture
def session_waiter(console_user: ConsoleUser) -> SessionWaiter:
    """SessionWaiter that finds an interactive user immediately."""
    return SessionWaiter(provider=lambda: console_user, sleep=no_sleep)


@pytest.fixture
def progress() -> RecordingProgress:
    return RecordingProgress()
