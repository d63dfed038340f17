"""
provisioner.core.enums - Type-Safe Enumerations
===============================================

All enumeration types used throughout Provisioner. Every enum inherits from
both `str` and `Enum`, so members serialize to plain strings in JSON/plist
output and compare equal to their raw values:

    >>> Phase.SETUP == "setup"
    True

Architecture Mapping:

    ┌─────────────────────────────────────────────────────────────────┐
    │  MANIFEST                                                       │
    │    Phase:     preflight → setup → userland                      │
    │    ItemKind:  package | rootscript | userscript                 │
    ├─────────────────────────────────────────────────────────────────┤
    │  ORCHESTRATION                                                  │
    │    RunState:          NOT_STARTED → ... → COMPLETED             │
    │    PhaseOutcome:      per-phase aggregate result                │
    │    PreflightDecision: continue / skip everything / abort        │
    │    ItemStatus:        per-item progress notifications           │
    ├─────────────────────────────────────────────────────────────────┤
    │  PERSISTENCE                                                    │
    │    Stage:        persisted stage of a phase record              │
    │    Architecture: host CPU family, tagged on every record        │
    └─────────────────────────────────────────────────────────────────┘
"""

from enum import Enum


# =============================================================================
# Manifest Phases
# =============================================================================
# Phases always execute in declaration order. The value doubles as the key
# of the phase record in the persisted status document.
# =============================================================================
class Phase(str, Enum):
    """The three ordered groups of work in a manifest."""

    PREFLIGHT = "preflight"     # At most one root script; may short-circuit the run
    SETUP = "setup"             # Packages and scripts, runs during Setup Assistant
    USERLAND = "userland"       # Runs once an interactive user is logged in


class ItemKind(str, Enum):
    """Recognized manifest item types (the manifest `type` field)."""

    PACKAGE = "package"         # Installed with the system installer
    ROOT_SCRIPT = "rootscript"  # Executed with elevated privilege
    USER_SCRIPT = "userscript"  # Executed in the provisioning or user context


# =============================================================================
# Persisted Stage
# =============================================================================
class Stage(str, Enum):
    """Lifecycle stage of a phase, as written to the status store.

    Lifecycle:
        STARTING → RUNNING → COMPLETED
                           → FAILED
        (any)    → SKIPPED
    """

    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        """True for stages that close a phase record."""
        return self in (Stage.COMPLETED, Stage.FAILED, Stage.SKIPPED)


# =============================================================================
# Orchestration Outcomes
# =============================================================================
class PhaseOutcome(str, Enum):
    """Aggregate result of one phase."""

    NOT_RUN = "not_run"                  # Never entered (run aborted or blocked upstream)
    SKIPPED = "skipped"                  # Entered, but nothing to do
    SUCCEEDED = "succeeded"              # Every item succeeded or was skipped
    FAILED_CONTINUE = "failed_continue"  # Some item failed; later phases may still run
    FAILED_ABORT = "failed_abort"        # The whole run stops here

    @property
    def is_failure(self) -> bool:
        return self in (PhaseOutcome.FAILED_CONTINUE, PhaseOutcome.FAILED_ABORT)


class PreflightDecision(str, Enum):
    """What the preflight root script told us to do."""

    CONTINUE_BOOTSTRAP = "continue_bootstrap"  # Non-zero exit, or no script at all
    SKIP_BOOTSTRAP = "skip_bootstrap"          # Exit 0: device is already configured
    ABORT = "abort"                            # Script could not be fetched or launched


class RunState(str, Enum):
    """States of the phase orchestrator's state machine.

    State Machine:
        NOT_STARTED → PREFLIGHT → SETUP_ASSISTANT → USERLAND → COMPLETED
                          │
                          ├──→ SKIPPED_ALL   (preflight exit 0)
                          └──→ ABORTED       (preflight failure)

        NOT_STARTED → ABORTED                (manifest could not be loaded)
    """

    NOT_STARTED = "not_started"
    PREFLIGHT = "preflight"
    SETUP_ASSISTANT = "setup_assistant"
    USERLAND = "userland"
    COMPLETED = "completed"
    SKIPPED_ALL = "skipped_all"
    ABORTED = "aborted"


class ItemStatus(str, Enum):
    """Per-item status reported to the progress UI and kept in results."""

    PENDING = "pending"
    WAITING = "waiting"         # Currently downloading or executing
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


# =============================================================================
# Host Architecture
# =============================================================================
class Architecture(str, Enum):
    """CPU family of the running machine."""

    ARM64 = "arm64"
    X86_64 = "x86_64"

    @property
    def status_tag(self) -> str:
        """Short tag written into status records ("ARM64" / "X64")."""
        return "ARM64" if self is Architecture.ARM64 else "X64"
