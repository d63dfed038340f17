"""
provisioner.execution - Execution Layer
=======================================

    - engine:    ExecutionEngine, LAUNCH_FAILURE
    - packages:  PackageDatabase (pkgutil receipts, installer)
    - process:   ProcessRunner, ProcessResult
"""

from provisioner.execution.engine import LAUNCH_FAILURE, ExecutionEngine
from provisioner.execution.packages import PackageDatabase
from provisioner.execution.process import ProcessResult, ProcessRunner

__all__ = [
    "ExecutionEngine",
    "LAUNCH_FAILURE",
    "PackageDatabase",
    "ProcessResult",
    "ProcessRunner",
]
