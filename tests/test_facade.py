"""
Tests for provisioner.facade - Provisioner Top-Level Facade
===========================================================

These tests drive `Provisioner.run()` end to end with a manifest on disk,
payloads served by a PayloadServer and a FakeRunner in place of real
processes. They focus on what the facade adds around the orchestrator:

    - Refusing to run without a manifest URL
    - Cache purge after success (and --retain-cache)
    - Reboot only after a completed run (not a preflight skip)
    - Status retention applied once the run has finished
    - launchd re-registration
    - Dry runs leave the machine untouched
    - The completion gate
"""

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import pytest

from provisioner.core.config import PathsConfig, ProvisionerConfig, ServiceConfig
from provisioner.core.enums import Architecture, Phase, RunState, Stage
from provisioner.facade import Provisioner
from provisioner.infrastructure.download_cache import DownloadCache
from provisioner.infrastructure.fetcher import ArtifactFetcher
from provisioner.infrastructure.status_store import InMemoryStatusStore
from provisioner.orchestration.service import LAUNCHCTL, RebootScheduler, ServiceRegistrar
from provisioner.orchestration.session import SessionWaiter
from tests.conftest import FakeRunner, PayloadServer, RecordingProgress, no_sleep, sha256


class _RecordingReboot(RebootScheduler):
    def __init__(self) -> None:
        super().__init__(delay=0)
        self.requests = 0

    def schedule(self):
        self.requests += 1


class _SteppingClock:
    """Each reading is two days after the previous one."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 9, 0, 0)

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(days=2)
        return current


def _write_manifest(
    tmp_path: Path,
    server: PayloadServer,
    serve: bool = True,
    preflight: bool = False,
) -> Path:
    """Manifest with one setup package and one userland script.

    With `preflight`, a rootscript is added to the preflight phase.
    """
    items = {}
    for item_type, name in (
        ("package", "Tool.pkg"),
        ("userscript", "dock.sh"),
        ("rootscript", "preflight.sh"),
    ):
        payload = f"{item_type}:{name}".encode()
        url = f"https://example.com/{item_type}/{name}"
        if serve:
            server.payloads[url] = payload
        items[item_type] = {"file": name, "url": url, "hash": sha256(payload), "type": item_type}

    path = tmp_path / "bootstrap.json"
    path.write_text(
        json.dumps(
            {
                "preflight": [items["rootscript"]] if preflight else [],
                "setupassistant": [items["package"]],
                "userland": [items["userscript"]],
            }
        )
    )
    return path


def _make_config(tmp_path: Path, cache_dir: Path, manifest: Optional[Path], **kwargs) -> ProvisionerConfig:
    service = kwargs.pop("service", ServiceConfig(enabled=False))
    return ProvisionerConfig(
        manifest_url=str(manifest) if manifest else None,
        paths=PathsConfig(
            support_dir=tmp_path / "support",
            cache_dir=cache_dir,
            log_dir=tmp_path / "logs",
            status_plist=tmp_path / "support" / "status.plist",
            status_json=tmp_path / "support" / "status.json",
            completion_marker=tmp_path / "prefs" / "marker.plist",
            managed_preferences_dir=tmp_path / "managed",
        ),
        service=service,
        **kwargs,
    )


@pytest.fixture
def make_provisioner(
    tmp_path: Path,
    cache_dir: Path,
    fetcher: ArtifactFetcher,
    download_cache: DownloadCache,
    status_store: InMemoryStatusStore,
    runner: FakeRunner,
    session_waiter: SessionWaiter,
    progress: RecordingProgress,
):
    """Factory for a Provisioner with every external edge replaced."""

    def _make(config: ProvisionerConfig, **overrides) -> Provisioner:
        kwargs = dict(
            architecture=Architecture.ARM64,
            fetcher=fetcher,
            status_store=status_store,
            download_cache=download_cache,
            runner=runner,
            session_waiter=session_waiter,
            progress=progress,
            reboot_scheduler=_RecordingReboot(),
            sleep=no_sleep,
        )
        kwargs.update(overrides)
        return Provisioner(config, **kwargs)

    return _make


class TestConfiguration:

    async def test_missing_manifest_url_exits_one(
        self, tmp_path: Path, cache_dir: Path, make_provisioner, runner: FakeRunner
    ) -> None:
        provisioner = make_provisioner(_make_config(tmp_path, cache_dir, None))

        assert await provisioner.run() == 1
        assert provisioner.last_result is None
        assert runner.calls == []

    def test_defaults_build_components(self, tmp_path: Path, cache_dir: Path) -> None:
        """Without injected parts the facade assembles its own."""
        config = _make_config(tmp_path, cache_dir, tmp_path / "m.json")
        provisioner = Provisioner(config, architecture=Architecture.X86_64)
        assert provisioner.config is config
        assert provisioner.orchestrator is not None
        assert provisioner.status_store.architecture == "X64"

    def test_dry_run_uses_memory_store(self, tmp_path: Path, cache_dir: Path) -> None:
        config = _make_config(tmp_path, cache_dir, tmp_path / "m.json", dry_run=True)
        provisioner = Provisioner(config, architecture=Architecture.ARM64)
        assert isinstance(provisioner.status_store, InMemoryStatusStore)


class TestRun:
    """Full runs through the facade."""

    async def test_success_purges_cache_and_marks_completion(
        self,
        tmp_path: Path,
        cache_dir: Path,
        payload_server: PayloadServer,
        make_provisioner,
        progress: RecordingProgress,
    ) -> None:
        manifest = _write_manifest(tmp_path, payload_server)
        provisioner = make_provisioner(_make_config(tmp_path, cache_dir, manifest))

        assert await provisioner.run() == 0

        assert provisioner.last_result.state == RunState.COMPLETED
        assert list(cache_dir.iterdir()) == []
        assert provisioner.has_completed()
        assert provisioner.has_completed("1.0.0")
        assert not provisioner.has_completed("9.9.9")
        assert progress.events[-1] == ("close",)

    async def test_retain_cache(
        self, tmp_path: Path, cache_dir: Path, payload_server: PayloadServer, make_provisioner
    ) -> None:
        manifest = _write_manifest(tmp_path, payload_server)
        provisioner = make_provisioner(
            _make_config(tmp_path, cache_dir, manifest, retain_cache=True)
        )

        assert await provisioner.run() == 0
        assert sorted(p.name for p in cache_dir.iterdir()) == ["Tool.pkg", "dock.sh"]

    async def test_reboot_after_success(
        self, tmp_path: Path, cache_dir: Path, payload_server: PayloadServer, make_provisioner
    ) -> None:
        manifest = _write_manifest(tmp_path, payload_server)
        reboot = _RecordingReboot()
        provisioner = make_provisioner(
            _make_config(tmp_path, cache_dir, manifest, reboot=True),
            reboot_scheduler=reboot,
        )

        assert await provisioner.run() == 0
        assert reboot.requests == 1

    async def test_preflight_skip_does_not_reboot(
        self,
        tmp_path: Path,
        cache_dir: Path,
        payload_server: PayloadServer,
        make_provisioner,
    ) -> None:
        """Preflight exit 0 is a success, but nothing was provisioned."""
        manifest = _write_manifest(tmp_path, payload_server, preflight=True)
        reboot = _RecordingReboot()
        provisioner = make_provisioner(
            _make_config(tmp_path, cache_dir, manifest, reboot=True),
            reboot_scheduler=reboot,
        )

        assert await provisioner.run() == 0
        assert provisioner.last_result.state == RunState.SKIPPED_ALL
        assert reboot.requests == 0

    async def test_expired_records_dropped_after_run(
        self, tmp_path: Path, cache_dir: Path, payload_server: PayloadServer, make_provisioner
    ) -> None:
        """Records written by this run are already past retention when it ends."""
        manifest = _write_manifest(tmp_path, payload_server)
        store = InMemoryStatusStore(
            run_id="run-1", architecture="ARM64", version="1.0.0", clock=_SteppingClock()
        )
        provisioner = make_provisioner(
            _make_config(tmp_path, cache_dir, manifest, status_retention_days=1),
            status_store=store,
        )

        assert await provisioner.run() == 0
        assert store.stages(Phase.USERLAND)[-1] == Stage.COMPLETED
        assert store.load().phases == {}

    async def test_failure_skips_reboot_and_marker(
        self,
        tmp_path: Path,
        cache_dir: Path,
        payload_server: PayloadServer,
        make_provisioner,
        status_store: InMemoryStatusStore,
    ) -> None:
        manifest = _write_manifest(tmp_path, payload_server, serve=False)
        reboot = _RecordingReboot()
        provisioner = make_provisioner(
            _make_config(tmp_path, cache_dir, manifest, reboot=True),
            reboot_scheduler=reboot,
        )

        assert await provisioner.run() == 1
        assert reboot.requests == 0
        assert not provisioner.has_completed()
        assert status_store.load().get(Phase.SETUP) is not None

    async def test_registers_daemon(
        self,
        tmp_path: Path,
        cache_dir: Path,
        payload_server: PayloadServer,
        make_provisioner,
        runner: FakeRunner,
    ) -> None:
        manifest = _write_manifest(tmp_path, payload_server)
        registrar = ServiceRegistrar(
            identifier="com.example.provisioner",
            executable_path="/usr/local/bin/provisioner",
            runner=runner,
            launch_daemons_dir=tmp_path / "LaunchDaemons",
            launch_agents_dir=tmp_path / "LaunchAgents",
        )
        provisioner = make_provisioner(
            _make_config(tmp_path, cache_dir, manifest, service=ServiceConfig(enabled=True)),
            registrar=registrar,
        )

        assert await provisioner.run() == 0
        assert registrar.daemon_plist.exists()
        assert [LAUNCHCTL, "load", str(registrar.daemon_plist)] in runner.calls

    async def test_dry_run_changes_nothing(
        self,
        tmp_path: Path,
        cache_dir: Path,
        payload_server: PayloadServer,
        fetcher: ArtifactFetcher,
        runner: FakeRunner,
        session_waiter: SessionWaiter,
    ) -> None:
        manifest = _write_manifest(tmp_path, payload_server)
        reboot = _RecordingReboot()
        config = _make_config(tmp_path, cache_dir, manifest, dry_run=True, reboot=True)
        provisioner = Provisioner(
            config,
            architecture=Architecture.ARM64,
            fetcher=fetcher,
            runner=runner,
            session_waiter=session_waiter,
            progress=RecordingProgress(),
            reboot_scheduler=reboot,
        )

        assert await provisioner.run() == 0
        assert runner.calls == []
        assert payload_server.requests == []
        assert list(cache_dir.iterdir()) == []
        assert not (tmp_path / "support").exists()
        assert reboot.requests == 0

    async def test_userscript_only(
        self,
        tmp_path: Path,
        cache_dir: Path,
        payload_server: PayloadServer,
        make_provisioner,
        runner: FakeRunner,
        status_store: InMemoryStatusStore,
    ) -> None:
        manifest = _write_manifest(tmp_path, payload_server)
        provisioner = make_provisioner(
            _make_config(tmp_path, cache_dir, manifest, userscript_only=True)
        )

        assert await provisioner.run() == 0
        executed = [Path(argv[-1]).name for argv in runner.calls + runner.detached_calls]
        assert executed == ["dock.sh"]
        assert status_store.load().phases == {}
        # no post-run housekeeping
        assert (cache_dir / "dock.sh").exists()


class TestLifecycle:

    async def test_async_context_manager(self, tmp_path: Path, cache_dir: Path) -> None:
        config = _make_config(tmp_path, cache_dir, None)
        async with Provisioner(config, architecture=Architecture.ARM64) as provisioner:
            assert await provisioner.run() == 1
