"""
provisioner.orchestration.orchestrator - Phase Orchestrator
===========================================================

The provisioning state machine. It loads the manifest, walks the three
phases in order, sends every item through DownloadCache then
ExecutionEngine, applies the skip/continue/abort policy and records each
phase transition in the StatusStore.

State Machine:

    NOT_STARTED ──manifest──→ PREFLIGHT ──→ SETUP_ASSISTANT ──→ USERLAND ──→ COMPLETED
         │                        │                                 ▲
         │                        ├── exit 0 ────→ SKIPPED_ALL      │ SessionWaiter.block()
         │                        └── launch failure → ABORTED      │ (before any item)
         └── ManifestError ───────────────────────→ ABORTED

Phase Policy:
    Preflight   Only the first root script is honored. Exit 0 means the
                device is already configured: nothing else runs and the run
                succeeds. Exit > 0 continues. A download or launch failure
                aborts the run.
    Setup       Every item is attempted; one failure never blocks its
                siblings. The phase fails if any item failed.
    Userland    Same as setup, gated on an interactive session. Not entered
                when setup failed and `block_userland_on_setup_failure` is set.

Per-Item Dispatch (setup and userland):

    skip_if matches host? ─yes─→ SKIPPED
    unsupported type?     ─yes─→ FAILED
    package receipt ok?   ─yes─→ SKIPPED ("already installed")
    DownloadCache.ensure  ─no──→ FAILED ("download failed")
    ExecutionEngine.run   ─0───→ SUCCEEDED, otherwise FAILED

Completion:
    A fully completed run writes the completion marker. The preflight
    short-circuit and every failure leave it untouched, so the next
    invocation retries.
"""

from __future__ import annotations

from typing import Optional

import structlog

from provisioner.core.constants import TOOL_VERSION
from provisioner.core.enums import (
    Architecture,
    ItemKind,
    ItemStatus,
    Phase,
    PhaseOutcome,
    PreflightDecision,
    RunState,
    Stage,
)
from provisioner.core.exceptions import ConfigurationError, ManifestError, ProvisionerError
from provisioner.core.models import Manifest, ManifestItem
from provisioner.core.state import ItemResult, PhaseResult, RunResult
from provisioner.execution.engine import LAUNCH_FAILURE, ExecutionEngine
from provisioner.infrastructure.download_cache import DownloadCache
from provisioner.infrastructure.host import should_skip_for_architecture
from provisioner.infrastructure.status_store import StatusStore
from provisioner.orchestration.manifest_loader import ManifestLoader
from provisioner.orchestration.progress import NullProgressReporter, ProgressReporter
from provisioner.orchestration.session import SessionWaiter

logger = structlog.get_logger()


class PhaseOrchestrator:
    """Runs a manifest through preflight, setup and userland.

    Attributes:
        _cache: Fetch-if-needed payload cache.
        _engine: Package/script execution.
        _status: Phase transition persistence.
        _session: Blocks until an interactive user is logged in.
        _loader: Loads the manifest when `run()` is not handed one.
        _manifest_url: Source passed to the loader.
        _progress: Progress UI collaborator (headless by default).
        _architecture: Host architecture for the skip_if rule.
        _block_userland_on_setup_failure: Userland gate policy.
        _run_userscripts_as_console_user: Launch userland user scripts
            as the logged-in user.

    Example:
        >>> orchestrator = PhaseOrchestrator(
        ...     download_cache=cache,
        ...     engine=engine,
        ...     status_store=store,
        ...     session_waiter=SessionWaiter(),
        ...     architecture=Architecture.ARM64,
        ... )
        >>> result = await orchestrator.run(manifest)
        >>> result.exit_code
        0
    """

    def __init__(
        self,
        download_cache: DownloadCache,
        engine: ExecutionEngine,
        status_store: StatusStore,
        session_waiter: SessionWaiter,
        architecture: Architecture,
        manifest_loader: Optional[ManifestLoader] = None,
        manifest_url: Optional[str] = None,
        progress: Optional[ProgressReporter] = None,
        block_userland_on_setup_failure: bool = True,
        run_userscripts_as_console_user: bool = False,
        version: str = TOOL_VERSION,
        title: str = "Setting up your Mac",
    ) -> None:
        self._cache = download_cache
        self._engine = engine
        self._status = status_store
        self._session = session_waiter
        self._architecture = architecture
        self._loader = manifest_loader
        self._manifest_url = manifest_url
        self._progress = progress or NullProgressReporter()
        self._block_userland_on_setup_failure = block_userland_on_setup_failure
        self._run_userscripts_as_console_user = run_userscripts_as_console_user
        self._version = version
        self._title = title

        self._state = RunState.NOT_STARTED
        self._total_items = 0
        self._done_items = 0
        self._logger = logger.bind(component="phase_orchestrator")

    @property
    def state(self) -> RunState:
        return self._state

    # =========================================================================
    # Full Run
    # =========================================================================

    async def run(self, manifest: Optional[Manifest] = None) -> RunResult:
        """Execute a complete provisioning run.

        Args:
            manifest: Pre-loaded manifest. When None it is loaded from the
                configured manifest URL.

        Returns:
            The RunResult. Fatal manifest problems are reported in it
            (state ABORTED) rather than raised.

        Raises:
            ConfigurationError: If no manifest was given and no loader or
                URL is configured.
        """
        result = RunResult(run_id=self._status.run_id)
        self._logger.info(
            "run_starting",
            run_id=result.run_id,
            architecture=self._architecture.value,
            version=self._version,
        )

        if manifest is None:
            try:
                manifest = await self._load_manifest()
            except ManifestError as exc:
                self._logger.error("manifest_load_failed", **exc.to_dict())
                return self._finish(result, RunState.ABORTED, success=False, error=exc.message)

        self._total_items = (
            (1 if self._preflight_script(manifest) else 0)
            + len(manifest.setup)
            + len(manifest.userland)
        )
        self._done_items = 0
        self._progress.start(self._title, self._total_items)

        # --- Preflight ---
        self._transition(RunState.PREFLIGHT)
        preflight = await self._run_preflight(manifest)
        result.phases[Phase.PREFLIGHT] = preflight

        if preflight.decision == PreflightDecision.SKIP_BOOTSTRAP:
            self._logger.info("bootstrap_skipped_by_preflight", exit_code=preflight.exit_code)
            return self._finish(result, RunState.SKIPPED_ALL, success=True)
        if preflight.decision == PreflightDecision.ABORT:
            return self._finish(
                result,
                RunState.ABORTED,
                success=False,
                error="preflight script could not be run",
            )

        # --- Setup Assistant ---
        self._transition(RunState.SETUP_ASSISTANT)
        setup = await self._run_item_phase(Phase.SETUP, manifest.setup)
        result.phases[Phase.SETUP] = setup

        # --- Userland ---
        if setup.outcome.is_failure and self._block_userland_on_setup_failure:
            self._logger.warning("userland_blocked", reason="setup phase failed")
            self._status.record_transition(
                Phase.USERLAND, Stage.SKIPPED, error_message="setup phase failed"
            )
            result.phases[Phase.USERLAND] = PhaseResult(
                phase=Phase.USERLAND, outcome=PhaseOutcome.NOT_RUN
            )
        else:
            self._transition(RunState.USERLAND)
            result.phases[Phase.USERLAND] = await self._run_item_phase(
                Phase.USERLAND, manifest.userland, wait_for_session=True
            )

        failed = [p.phase.value for p in result.phases.values() if p.outcome.is_failure]
        if failed:
            return self._finish(
                result,
                RunState.COMPLETED,
                success=False,
                error=f"phase(s) failed: {', '.join(failed)}",
            )

        self._status.write_completion_marker(self._status.completion_marker_for())
        return self._finish(result, RunState.COMPLETED, success=True)

    # =========================================================================
    # Userscript-Only Mode
    # =========================================================================

    async def run_userscripts_only(self, manifest: Optional[Manifest] = None) -> RunResult:
        """Run only the userland user scripts, as the per-user agent does.

        No session wait, no phase status records and no completion marker.
        """
        result = RunResult(run_id=self._status.run_id)
        if manifest is None:
            try:
                manifest = await self._load_manifest()
            except ManifestError as exc:
                self._logger.error("manifest_load_failed", **exc.to_dict())
                return self._finish(result, RunState.ABORTED, success=False, error=exc.message)

        scripts = [i for i in manifest.userland if i.kind == ItemKind.USER_SCRIPT]
        self._logger.info("userscript_only_starting", count=len(scripts))
        self._total_items = len(scripts)
        self._done_items = 0

        items = [await self._dispatch(Phase.USERLAND, item) for item in scripts]
        phase = PhaseResult(
            phase=Phase.USERLAND,
            items=items,
            outcome=self._aggregate(items),
        )
        result.phases[Phase.USERLAND] = phase
        success = not phase.outcome.is_failure
        return self._finish(
            result,
            RunState.COMPLETED,
            success=success,
            error=None if success else "user script(s) failed",
        )

    # =========================================================================
    # Preflight
    # =========================================================================

    @staticmethod
    def _preflight_script(manifest: Manifest) -> Optional[ManifestItem]:
        for item in manifest.preflight:
            if item.kind == ItemKind.ROOT_SCRIPT:
                return item
        return None

    async def _run_preflight(self, manifest: Manifest) -> PhaseResult:
        item = self._preflight_script(manifest)
        if item is None:
            self._logger.info("preflight_absent")
            self._status.record_transition(Phase.PREFLIGHT, Stage.SKIPPED)
            return PhaseResult(
                phase=Phase.PREFLIGHT,
                outcome=PhaseOutcome.SKIPPED,
                decision=PreflightDecision.CONTINUE_BOOTSTRAP,
            )

        ignored = [i.display_name for i in manifest.preflight if i is not item]
        if ignored:
            self._logger.warning("preflight_items_ignored", items=ignored)

        name = item.display_name
        self._status.record_transition(Phase.PREFLIGHT, Stage.STARTING)
        self._progress.phase_started(Phase.PREFLIGHT, 1)
        self._progress.item_added(name)

        if should_skip_for_architecture(item.skip_if, self._architecture):
            self._logger.info("preflight_skipped_architecture", item=name, skip_if=item.skip_if)
            self._status.record_transition(Phase.PREFLIGHT, Stage.SKIPPED)
            item_result = self._item_done(
                name, item, ItemStatus.SKIPPED, detail="not for this architecture"
            )
            return PhaseResult(
                phase=Phase.PREFLIGHT,
                outcome=PhaseOutcome.SKIPPED,
                items=[item_result],
                decision=PreflightDecision.CONTINUE_BOOTSTRAP,
            )

        self._status.record_transition(Phase.PREFLIGHT, Stage.RUNNING)
        self._progress.item_status(name, ItemStatus.WAITING, "Running")

        if await self._cache.ensure(item):
            exit_code = await self._engine.run(item)
        else:
            self._logger.error("preflight_download_failed", item=name, url=item.url)
            exit_code = LAUNCH_FAILURE

        if exit_code < 0:
            self._logger.error("preflight_failed", item=name, exit_code=exit_code)
            self._status.record_transition(
                Phase.PREFLIGHT,
                Stage.FAILED,
                exit_code=exit_code,
                error_message=f"{name} could not be run",
            )
            item_result = self._item_done(
                name, item, ItemStatus.FAILED, exit_code=exit_code, detail="could not be run"
            )
            return PhaseResult(
                phase=Phase.PREFLIGHT,
                outcome=PhaseOutcome.FAILED_ABORT,
                items=[item_result],
                exit_code=exit_code,
                decision=PreflightDecision.ABORT,
            )

        decision = (
            PreflightDecision.SKIP_BOOTSTRAP if exit_code == 0
            else PreflightDecision.CONTINUE_BOOTSTRAP
        )
        self._logger.info("preflight_completed", item=name, exit_code=exit_code, decision=decision.value)
        self._status.record_transition(Phase.PREFLIGHT, Stage.COMPLETED, exit_code=exit_code)
        item_result = self._item_done(
            name,
            item,
            ItemStatus.SUCCEEDED,
            exit_code=exit_code,
            detail="already configured" if exit_code == 0 else "",
        )
        return PhaseResult(
            phase=Phase.PREFLIGHT,
            outcome=PhaseOutcome.SUCCEEDED,
            items=[item_result],
            exit_code=exit_code,
            decision=decision,
        )

    # =========================================================================
    # Setup / Userland
    # =========================================================================

    async def _run_item_phase(
        self,
        phase: Phase,
        items: list[ManifestItem],
        wait_for_session: bool = False,
    ) -> PhaseResult:
        """Run every item of a phase and aggregate the outcome."""
        if not items:
            self._logger.debug("phase_empty", phase=phase.value)
            self._status.record_transition(phase, Stage.SKIPPED)
            return PhaseResult(phase=phase, outcome=PhaseOutcome.SKIPPED)

        self._logger.info("phase_starting", phase=phase.value, items=len(items))
        self._status.record_transition(phase, Stage.STARTING)
        self._progress.phase_started(phase, len(items))
        for item in items:
            self._progress.item_added(item.display_name)

        as_uid: Optional[int] = None
        if wait_for_session:
            user = await self._session.block()
            if self._run_userscripts_as_console_user:
                as_uid = user.uid

        self._status.record_transition(phase, Stage.RUNNING)

        results: list[ItemResult] = []
        for item in items:
            results.append(await self._dispatch(phase, item, as_uid=as_uid))

        outcome = self._aggregate(results)
        failed = [r.name for r in results if r.status == ItemStatus.FAILED]
        if failed:
            self._logger.error("phase_failed", phase=phase.value, failed_items=failed)
            self._status.record_transition(
                phase,
                Stage.FAILED,
                exit_code=1,
                error_message=f"{len(failed)} item(s) failed: {', '.join(failed)}",
            )
        else:
            self._logger.info("phase_completed", phase=phase.value, items=len(results))
            self._status.record_transition(phase, Stage.COMPLETED, exit_code=0)

        return PhaseResult(phase=phase, outcome=outcome, items=results)

    @staticmethod
    def _aggregate(results: list[ItemResult]) -> PhaseOutcome:
        if any(r.status == ItemStatus.FAILED for r in results):
            return PhaseOutcome.FAILED_CONTINUE
        return PhaseOutcome.SUCCEEDED

    async def _dispatch(
        self,
        phase: Phase,
        item: ManifestItem,
        as_uid: Optional[int] = None,
    ) -> ItemResult:
        """Take one item through skip checks, download and execution.

        Item-level errors are logged and turned into a FAILED result; they
        never escape to the phase loop.
        """
        name = item.display_name

        if should_skip_for_architecture(item.skip_if, self._architecture):
            self._logger.info(
                "item_skipped_architecture", phase=phase.value, item=name, skip_if=item.skip_if
            )
            return self._item_done(name, item, ItemStatus.SKIPPED, detail="not for this architecture")

        kind = item.kind
        if kind is None:
            self._logger.error(
                "item_unsupported_type", phase=phase.value, item=name, type=item.item_type
            )
            return self._item_done(
                name, item, ItemStatus.FAILED, detail=f"unsupported type {item.item_type!r}"
            )

        self._progress.item_status(name, ItemStatus.WAITING, "Downloading")

        try:
            if kind == ItemKind.PACKAGE and await self._engine.package_is_current(item):
                self._logger.info("item_already_installed", phase=phase.value, item=name)
                return self._item_done(name, item, ItemStatus.SKIPPED, detail="already installed")

            if not await self._cache.ensure(item):
                return self._item_done(name, item, ItemStatus.FAILED, detail="download failed")

            self._progress.item_status(
                name, ItemStatus.WAITING, "Installing" if kind == ItemKind.PACKAGE else "Running"
            )
            script_uid = as_uid if kind == ItemKind.USER_SCRIPT else None
            exit_code = await self._engine.run(item, as_uid=script_uid)
        except ProvisionerError as exc:
            self._logger.error("item_failed", phase=phase.value, item=name, **exc.to_dict())
            return self._item_done(name, item, ItemStatus.FAILED, detail=exc.message)

        if exit_code == 0:
            return self._item_done(name, item, ItemStatus.SUCCEEDED, exit_code=0)

        detail = "could not be launched" if exit_code == LAUNCH_FAILURE else f"exit code {exit_code}"
        self._logger.error(
            "item_failed",
            phase=phase.value,
            item=name,
            path=str(self._cache.resolve_destination(item)),
            exit_code=exit_code,
        )
        return self._item_done(name, item, ItemStatus.FAILED, exit_code=exit_code, detail=detail)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load_manifest(self) -> Manifest:
        if self._loader is None:
            raise ConfigurationError(
                message="No manifest given and no manifest loader configured",
                error_code="NO_MANIFEST_SOURCE",
            )
        return await self._loader.load(self._manifest_url)

    def _item_done(
        self,
        name: str,
        item: ManifestItem,
        status: ItemStatus,
        exit_code: Optional[int] = None,
        detail: str = "",
    ) -> ItemResult:
        self._done_items += 1
        self._progress.item_status(name, status, detail)
        if self._total_items:
            self._progress.progress(self._done_items * 100 // self._total_items)
        return ItemResult(
            name=name,
            item_type=item.item_type,
            status=status,
            exit_code=exit_code,
            detail=detail,
        )

    def _transition(self, state: RunState) -> None:
        self._logger.debug("state_transition", previous=self._state.value, state=state.value)
        self._state = state

    def _finish(
        self,
        result: RunResult,
        state: RunState,
        success: bool,
        error: Optional[str] = None,
    ) -> RunResult:
        self._transition(state)
        result = result.model_copy(update={"state": state, "success": success, "error": error})
        log = self._logger.info if success else self._logger.error
        log(
            "run_finished",
            run_id=result.run_id,
            state=state.value,
            success=success,
            error=error,
        )
        self._progress.complete("Setup complete" if success else "Setup finished with errors")
        return result
