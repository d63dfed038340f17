"""
provisioner.core.state - Run Status and Result Models
=====================================================

Models that describe what a run DID, as opposed to what the manifest asks
for (models.py):

    PhaseStatus / StatusDocument  → persisted, queried by external tooling
    CompletionMarker              → durable evidence of the last full success
    ItemResult / PhaseResult /
    RunResult                     → in-memory outcome returned to the caller

Persistence Architecture:

    ┌──────────────────┐  record_transition  ┌──────────────────┐
    │ PhaseOrchestrator│ ──────────────────→ │   StatusStore    │
    └──────────────────┘                     │  StatusDocument  │
                                             └────────┬─────────┘
                                     ┌────────────────┴────────────────┐
                                     ▼                                 ▼
                           PlistStatusSerializer             JsonStatusSerializer
                           (structured record)               (machine-readable mirror)

Timestamps are local wall-clock time truncated to whole seconds; that is all
the persisted text format (`yyyy-MM-dd HH:mm:ss`) can carry.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from provisioner.core.enums import (
    ItemStatus,
    Phase,
    PhaseOutcome,
    PreflightDecision,
    RunState,
    Stage,
)


def _now() -> datetime:
    """Local wall-clock time at second precision."""
    return datetime.now().replace(microsecond=0)


# =============================================================================
# Phase Status Record
# =============================================================================
# One record per phase, overwritten on every transition. The set of records
# is the durable state that external tools query.
# =============================================================================
class PhaseStatus(BaseModel):
    """Persisted status of one phase of the most recent run.

    Attributes:
        run_id: Identifier of the invocation that last touched this record.
        phase: Which phase this record describes.
        stage: Current lifecycle stage.
        start_time: Set when the phase enters STARTING.
        completion_time: Set when the phase reaches a terminal stage.
        exit_code: Last known exit code (0 until something fails).
        last_error: Human-readable failure summary, empty on success.
        architecture: Host architecture tag ("ARM64" / "X64").
        version: Version of the tool that wrote the record.
        manifest_url: Manifest source of the run.
    """

    run_id: str = Field(description="Identifier of the run")
    phase: Phase = Field(description="Phase this record describes")
    stage: Stage = Field(description="Current lifecycle stage")
    start_time: Optional[datetime] = Field(
        default=None,
        description="When the phase started",
    )
    completion_time: Optional[datetime] = Field(
        default=None,
        description="When the phase reached a terminal stage",
    )
    exit_code: int = Field(default=0, description="Last known exit code")
    last_error: str = Field(default="", description="Failure summary")
    architecture: str = Field(default="", description="Host architecture tag")
    version: str = Field(default="", description="Tool version")
    manifest_url: str = Field(default="", description="Manifest source URL")


class StatusDocument(BaseModel):
    """The full status collection, keyed by phase value.

    This is the single authoritative in-memory model. Every serializer
    renders this object; none of them reconstruct state independently.
    """

    phases: dict[str, PhaseStatus] = Field(
        default_factory=dict,
        description="Phase records keyed by phase name",
    )

    def get(self, phase: Phase) -> Optional[PhaseStatus]:
        return self.phases.get(phase.value)

    def with_phase(self, status: PhaseStatus) -> StatusDocument:
        """Return a copy with one phase record replaced."""
        phases = dict(self.phases)
        phases[status.phase.value] = status
        return self.model_copy(update={"phases": phases})

    def without(self, names: list[str]) -> StatusDocument:
        phases = {k: v for k, v in self.phases.items() if k not in names}
        return self.model_copy(update={"phases": phases})


class CompletionMarker(BaseModel):
    """Durable record of the last fully successful run."""

    version: str = Field(description="Tool version of the successful run")
    last_updated: datetime = Field(
        default_factory=_now,
        description="When the run completed",
    )
    architecture: str = Field(default="", description="Host architecture tag")


# =============================================================================
# Run Results (in memory)
# =============================================================================
class ItemResult(BaseModel):
    """What happened to one manifest item."""

    name: str = Field(description="Item display name")
    item_type: str = Field(description="Raw item type")
    status: ItemStatus = Field(description="Final item status")
    exit_code: Optional[int] = Field(
        default=None,
        description="Exit code, when the item was executed",
    )
    detail: str = Field(default="", description="Free-text detail")


class PhaseResult(BaseModel):
    """Aggregate outcome of one phase."""

    phase: Phase = Field(description="The phase")
    outcome: PhaseOutcome = Field(
        default=PhaseOutcome.NOT_RUN,
        description="Aggregate phase outcome",
    )
    items: list[ItemResult] = Field(
        default_factory=list,
        description="Per-item results in execution order",
    )
    exit_code: Optional[int] = Field(
        default=None,
        description="Preflight script exit code",
    )
    decision: Optional[PreflightDecision] = Field(
        default=None,
        description="Preflight decision (preflight only)",
    )

    @property
    def failed_items(self) -> list[ItemResult]:
        return [r for r in self.items if r.status == ItemStatus.FAILED]


class RunResult(BaseModel):
    """Outcome of a whole run, returned by the orchestrator."""

    run_id: str = Field(description="Identifier of the run")
    state: RunState = Field(
        default=RunState.NOT_STARTED,
        description="Final state-machine state",
    )
    success: bool = Field(default=False, description="Overall success")
    phases: dict[Phase, PhaseResult] = Field(
        default_factory=dict,
        description="Per-phase results",
    )
    error: Optional[str] = Field(
        default=None,
        description="Fatal error message, if the run aborted",
    )

    @property
    def exit_code(self) -> int:
        """Process exit code: 0 on success, 1 otherwise."""
        return 0 if self.success else 1
