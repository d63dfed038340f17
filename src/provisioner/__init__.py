"""
Provisioner - Manifest-Driven Device Bootstrap
==============================================

Provisioner bootstraps a freshly enrolled macOS machine. It fetches a JSON
manifest of packages and scripts and runs them in three ordered phases:

    Preflight  →  Setup  →  Userland
    (one root    (packages,  (waits for a logged-in
     script)      scripts)    user, then scripts)

Every phase transition is persisted so that external tooling can observe the
run, and a completion marker lets a pre-run gate skip machines that are
already provisioned.

Package Layers (top to bottom):
    1. Facade / CLI         - Provisioner composition root, click commands
    2. Orchestration Layer  - PhaseOrchestrator, SessionWaiter, progress, launchd
    3. Execution Layer      - ExecutionEngine, package receipts, child processes
    4. Infrastructure Layer - ArtifactFetcher, DownloadCache, StatusStore, host facts
    5. Core                 - config, enums, models, state, exceptions

Quick Start:
    >>> from provisioner import Provisioner
    >>> from provisioner.core.config import ProvisionerConfig
    >>> config = ProvisionerConfig(manifest_url="https://example.com/bootstrap.json")
    >>> async with Provisioner(config) as provisioner:
    ...     exit_code = await provisioner.run()
"""

# =============================================================================
# Package Version
# =============================================================================
# Single source of truth lives in core.constants so that core modules can
# read it without importing the package root.
# =============================================================================
from provisioner.core.constants import TOOL_VERSION as __version__

# =============================================================================
# Package-Level Exports
# =============================================================================
from provisioner.facade import Provisioner

__all__ = ["Provisioner", "__version__"]
