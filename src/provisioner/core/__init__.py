"""
provisioner.core - Foundation Layer
===================================

Building blocks every other layer depends on:

    - config:        ProvisionerConfig and its loaders (YAML, managed preferences)
    - constants:     Tool version, timestamp format, fixed identifiers
    - enums:         Phase, ItemKind, Stage, PhaseOutcome, RunState, ...
    - exceptions:    ProvisionerError hierarchy
    - models:        Manifest and ManifestItem
    - state:         Persisted status records and in-memory run results
    - versioning:    Dotted version comparison
    - logging_setup: structlog wiring

Dependency Rule:
    core/ depends on nothing else in the provisioner package.
"""

from provisioner.core.config import (
    PathsConfig,
    ProgressConfig,
    ProvisionerConfig,
    ServiceConfig,
    load_config,
)
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
from provisioner.core.exceptions import (
    ConfigurationError,
    ExecutionError,
    IntegrityError,
    ManifestError,
    ProvisionerError,
    StatusStoreError,
    TransientFetchError,
)
from provisioner.core.models import Manifest, ManifestItem
from provisioner.core.state import (
    CompletionMarker,
    ItemResult,
    PhaseResult,
    PhaseStatus,
    RunResult,
    StatusDocument,
)
from provisioner.core.versioning import compare_versions, is_at_least

__all__ = [
    # Config
    "ProvisionerConfig",
    "PathsConfig",
    "ProgressConfig",
    "ServiceConfig",
    "load_config",
    # Enums
    "Architecture",
    "ItemKind",
    "ItemStatus",
    "Phase",
    "PhaseOutcome",
    "PreflightDecision",
    "RunState",
    "Stage",
    # Exceptions
    "ProvisionerError",
    "ConfigurationError",
    "ManifestError",
    "TransientFetchError",
    "IntegrityError",
    "ExecutionError",
    "StatusStoreError",
    # Models
    "Manifest",
    "ManifestItem",
    # State
    "PhaseStatus",
    "StatusDocument",
    "CompletionMarker",
    "ItemResult",
    "PhaseResult",
    "RunResult",
    # Versioning
    "compare_versions",
    "is_at_least",
]
