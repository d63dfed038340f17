"""
Provisioner Test Suite
======================

Test organization mirrors the source code structure:
    tests/
    ├── test_core/           → provisioner.core (config, models, state, versioning)
    ├── test_infrastructure/ → provisioner.infrastructure (fetcher, cache, status store)
    ├── test_execution/      → provisioner.execution (engine, packages, processes)
    ├── test_orchestration/  → provisioner.orchestration (orchestrator, session, ...)
    ├── test_facade.py       → Provisioner composition root
    ├── test_cli.py          → click commands
    └── conftest.py          → Shared pytest fixtures

Running Tests:
    pytest                              # Run all tests
    pytest tests/test_orchestration/    # Run only orchestration tests
"""
