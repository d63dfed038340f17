"""
provisioner.orchestration - Orchestration Layer
===============================================

    - orchestrator:     PhaseOrchestrator (the provisioning state machine)
    - manifest_loader:  ManifestLoader (URL / file → Manifest)
    - session:          SessionWaiter (interactive user gate)
    - progress:         ProgressReporter, NullProgressReporter, DialogProgressReporter
    - service:          ServiceRegistrar (launchd), RebootScheduler
    - preconditions:    wait_for_writable, wait_for_managed_config
"""

from provisioner.orchestration.manifest_loader import ManifestLoader
from provisioner.orchestration.orchestrator import PhaseOrchestrator
from provisioner.orchestration.preconditions import wait_for_managed_config, wait_for_writable
from provisioner.orchestration.progress import (
    DialogProgressReporter,
    NullProgressReporter,
    ProgressReporter,
)
from provisioner.orchestration.service import RebootScheduler, ServiceRegistrar
from provisioner.orchestration.session import SessionWaiter, is_interactive_user

__all__ = [
    "DialogProgressReporter",
    "ManifestLoader",
    "NullProgressReporter",
    "PhaseOrchestrator",
    "ProgressReporter",
    "RebootScheduler",
    "ServiceRegistrar",
    "SessionWaiter",
    "is_interactive_user",
    "wait_for_managed_config",
    "wait_for_writable",
]
