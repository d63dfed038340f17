"""
provisioner.facade - Provisioner Top-Level Facade
=================================================

The composition root. `Provisioner` builds every component from a resolved
ProvisionerConfig, runs the orchestrator and performs the post-run
housekeeping the orchestrator itself knows nothing about.

Architecture Context:

    ┌──────────────────────────────────────────────────────┐
    │                 Provisioner (Facade)                  │
    │                                                       │
    │  ┌─────────────────────────────────────────────────┐ │
    │  │              Orchestration Layer                 │ │
    │  │  PhaseOrchestrator, ManifestLoader,              │ │
    │  │  SessionWaiter, ProgressReporter,                │ │
    │  │  ServiceRegistrar, RebootScheduler               │ │
    │  └───────────────────────┬─────────────────────────┘ │
    │                          │                            │
    │  ┌───────────────────────▼─────────────────────────┐ │
    │  │               Execution Layer                    │ │
    │  │  ExecutionEngine, PackageDatabase, ProcessRunner │ │
    │  └───────────────────────┬─────────────────────────┘ │
    │                          │                            │
    │  ┌───────────────────────▼─────────────────────────┐ │
    │  │             Infrastructure Layer                 │ │
    │  │  ArtifactFetcher, DownloadCache,                 │ │
    │  │  ContentVerifier, StatusStore                    │ │
    │  └─────────────────────────────────────────────────┘ │
    └──────────────────────────────────────────────────────┘

Run Sequence:
    1. Require a manifest URL
    2. Wait for the support directory to be writable
    3. Orchestrate (full run or userscript-only)
    4. Purge the cache after a successful run
    5. Drop expired phase records
    6. Re-register with launchd
    7. Schedule the reboot after a completed run (status is already on disk)

Dry runs swap in an in-memory status store and skip steps 2 and 4-7, so
nothing on the machine changes.

Usage:
    >>> from provisioner.core.config import load_config
    >>> config = load_config(overrides={"manifest_url": "https://example.com/bootstrap.json"})
    >>> async with Provisioner(config) as provisioner:
    ...     exit_code = await provisioner.run()
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional

import structlog

from provisioner.core.config import ProvisionerConfig
from provisioner.core.constants import TOOL_VERSION
from provisioner.core.enums import Architecture, RunState
from provisioner.core.exceptions import ConfigurationError
from provisioner.core.state import RunResult
from provisioner.execution.engine import ExecutionEngine
from provisioner.execution.process import ProcessRunner
from provisioner.infrastructure.download_cache import DownloadCache
from provisioner.infrastructure.fetcher import ArtifactFetcher
from provisioner.infrastructure.host import detect_architecture, read_console_user
from provisioner.infrastructure.status_store import (
    FileStatusStore,
    InMemoryStatusStore,
    StatusStore,
)
from provisioner.orchestration.manifest_loader import ManifestLoader
from provisioner.orchestration.orchestrator import PhaseOrchestrator
from provisioner.orchestration.preconditions import wait_for_writable
from provisioner.orchestration.progress import (
    DialogProgressReporter,
    NullProgressReporter,
    ProgressReporter,
)
from provisioner.orchestration.service import RebootScheduler, ServiceRegistrar
from provisioner.orchestration.session import SessionWaiter

# =============================================================================
# Logger
# =============================================================================
logger = structlog.get_logger()


class Provisioner:
    """Top-level entry point for a provisioning run.

    Lifecycle:
        1. Create: ``provisioner = Provisioner(config)``
        2. Run: ``exit_code = await provisioner.run()``
        3. Close: ``await provisioner.close()``

        Or use ``async with``, which closes automatically.

    Attributes:
        _config: Resolved configuration.
        _architecture: Host architecture.
        _fetcher: Shared HTTP client wrapper.
        _status_store: Phase status persistence.
        _download_cache: Fetch-if-needed payload cache.
        _engine: Package/script execution.
        _progress: Progress UI.
        _orchestrator: The provisioning state machine.
        _registrar: launchd re-registration.
        _reboot_scheduler: Post-run restart.

    Example:
        >>> provisioner = Provisioner(
        ...     ProvisionerConfig(manifest_url="file:///tmp/bootstrap.json", dry_run=True),
        ... )
        >>> await provisioner.run()
        0
    """

    def __init__(
        self,
        config: Optional[ProvisionerConfig] = None,
        *,
        architecture: Optional[Architecture] = None,
        fetcher: Optional[ArtifactFetcher] = None,
        status_store: Optional[StatusStore] = None,
        download_cache: Optional[DownloadCache] = None,
        runner: Optional[ProcessRunner] = None,
        engine: Optional[ExecutionEngine] = None,
        session_waiter: Optional[SessionWaiter] = None,
        progress: Optional[ProgressReporter] = None,
        registrar: Optional[ServiceRegistrar] = None,
        reboot_scheduler: Optional[RebootScheduler] = None,
        sleep=asyncio.sleep,
    ) -> None:
        """Initialize the facade and every component it owns.

        Args:
            config: Resolved configuration. Defaults are used if None.
            architecture: Host architecture. Detected if None.
            fetcher: HTTP wrapper. Built from config if None.
            status_store: Status persistence. A FileStatusStore on the
                configured paths if None (in-memory for dry runs).
            download_cache: Payload cache. Built from config if None.
            runner: Subprocess runner shared by the engine and registrar.
            engine: Execution engine. Built from config if None.
            session_waiter: Interactive-session gate.
            progress: Progress UI. A DialogProgressReporter unless progress
                is disabled or the run is silent.
            registrar: launchd registrar. Built from config.service if None.
            reboot_scheduler: Restart timer.
            sleep: Async sleep used by the precondition waits.
        """
        # --- Configuration ---
        self._config = config or ProvisionerConfig()
        cfg = self._config
        self._architecture = architecture or detect_architecture()
        self._sleep = sleep

        # --- Infrastructure Layer ---
        self._fetcher = fetcher or ArtifactFetcher(
            auth_header=cfg.auth_header,
            follow_redirects=cfg.follow_redirects,
            manifest_timeout=cfg.manifest_timeout,
            download_timeout=cfg.download_timeout,
        )
        store_kwargs = {
            "architecture": self._architecture.status_tag,
            "version": TOOL_VERSION,
            "manifest_url": cfg.manifest_url or "",
        }
        if status_store is not None:
            self._status_store = status_store
        elif cfg.dry_run:
            self._status_store = InMemoryStatusStore(**store_kwargs)
        else:
            self._status_store = FileStatusStore(
                plist_path=cfg.paths.status_plist,
                json_path=cfg.paths.status_json,
                marker_path=cfg.paths.completion_marker,
                **store_kwargs,
            )
        self._download_cache = download_cache or DownloadCache(
            fetcher=self._fetcher,
            architecture=self._architecture,
            cache_dir=cfg.paths.cache_dir,
            dry_run=cfg.dry_run,
            follow_redirects=cfg.follow_redirects,
            download_timeout=cfg.download_timeout,
        )

        # --- Execution Layer ---
        self._runner = runner or ProcessRunner()
        self._engine = engine or ExecutionEngine(
            runner=self._runner,
            cache_dir=cfg.paths.cache_dir,
            dry_run=cfg.dry_run,
        )

        # --- Orchestration Layer ---
        if progress is not None:
            self._progress = progress
        elif cfg.progress.enabled and not cfg.silent:
            self._progress = DialogProgressReporter(
                binary=cfg.progress.dialog_binary,
                command_file=cfg.progress.command_file,
            )
        else:
            self._progress = NullProgressReporter()

        self._orchestrator = PhaseOrchestrator(
            download_cache=self._download_cache,
            engine=self._engine,
            status_store=self._status_store,
            session_waiter=session_waiter or SessionWaiter(),
            architecture=self._architecture,
            manifest_loader=ManifestLoader(self._fetcher, timeout=cfg.manifest_timeout),
            manifest_url=cfg.manifest_url,
            progress=self._progress,
            block_userland_on_setup_failure=cfg.block_userland_on_setup_failure,
            run_userscripts_as_console_user=cfg.run_userscripts_as_console_user,
            title=cfg.progress.title,
        )
        self._registrar = registrar or ServiceRegistrar(
            identifier=cfg.service.identifier,
            executable_path=cfg.service.executable_path,
            runner=self._runner,
            launch_daemons_dir=cfg.service.launch_daemons_dir,
            launch_agents_dir=cfg.service.launch_agents_dir,
        )
        self._reboot_scheduler = reboot_scheduler or RebootScheduler(
            delay=cfg.service.reboot_delay
        )

        self._last_result: Optional[RunResult] = None
        self._logger = logger.bind(component="provisioner")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> ProvisionerConfig:
        return self._config

    @property
    def status_store(self) -> StatusStore:
        return self._status_store

    @property
    def orchestrator(self) -> PhaseOrchestrator:
        return self._orchestrator

    @property
    def last_result(self) -> Optional[RunResult]:
        """Result of the most recent `run()`, if any."""
        return self._last_result

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self) -> int:
        """Execute one provisioning run and return the process exit code."""
        cfg = self._config

        if not cfg.manifest_url:
            error = ConfigurationError(
                message="No manifest URL configured",
                error_code="NO_MANIFEST_SOURCE",
            )
            self._logger.error("provisioner_not_configured", **error.to_dict())
            return 1

        self._logger.info(
            "provisioner_starting",
            version=TOOL_VERSION,
            manifest_url=cfg.manifest_url,
            architecture=self._architecture.value,
            dry_run=cfg.dry_run,
            userscript_only=cfg.userscript_only,
        )

        if cfg.wait_for_writable and not cfg.dry_run:
            # Status writes are best effort; an unwritable volume is logged only.
            await wait_for_writable(cfg.paths.support_dir, sleep=self._sleep)

        try:
            if cfg.userscript_only:
                result = await self._orchestrator.run_userscripts_only()
            else:
                result = await self._orchestrator.run()
        finally:
            self._progress.close()

        self._last_result = result
        if not cfg.userscript_only and not cfg.dry_run:
            await self._after_run(result)

        self._logger.info(
            "provisioner_finished",
            state=result.state.value,
            success=result.success,
            exit_code=result.exit_code,
        )
        return result.exit_code

    async def _after_run(self, result: RunResult) -> None:
        cfg = self._config

        if result.success and not cfg.retain_cache:
            self._download_cache.purge()

        if cfg.status_retention_days is not None:
            self._status_store.cleanup_older_than(timedelta(days=cfg.status_retention_days))

        if cfg.service.enabled:
            await self._registrar.register_daemon()
            if cfg.service.register_agent:
                user = read_console_user()
                if user is not None:
                    self._registrar.register_agent(user.uid)

        # A preflight skip leaves the machine as it was; no restart.
        if cfg.reboot and result.success and result.state == RunState.COMPLETED:
            self._reboot_scheduler.schedule()

    # =========================================================================
    # Gate Query
    # =========================================================================

    def has_completed(self, version: Optional[str] = None) -> bool:
        """True if a completion marker exists (for `version`, if given)."""
        return self._status_store.has_completed_successfully(version)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def close(self) -> None:
        await self._fetcher.close()
        self._logger.debug("provisioner_closed")

    async def __aenter__(self) -> Provisioner:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
