"""Architecture test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
from pytestarch import EvaluableArchitecture, LayeredArchitecture, get_evaluable_architecture

# tests/architecture/conftest.py -> tests/ -> repository root
_TESTS_DIR = Path(__file__).resolve().parent.parent
_PACKAGE_DIR = _TESTS_DIR.parent / "src" / "localheroes_service"


@pytest.fixture(scope="session")
def evaluable() -> EvaluableArchitecture:
    """Module graph of localheroes_service, with names like 'localheroes_service.routers.tasks'."""
    return get_evaluable_architecture(str(_PACKAGE_DIR), str(_PACKAGE_DIR))


@pytest.fixture(scope="session")
def layered_arch() -> LayeredArchitecture:
    """
    Layers (top to bottom):
        routers   - HTTP and WebSocket endpoint handlers
        core      - App state, lifespan, middleware, exceptions
        services  - Business logic and SQLite stores
        clients   - Outbound HTTP/SMTP integrations
    """
    return (
        LayeredArchitecture()
        .layer("routers")
        .containing_modules(["localheroes_service.routers"])
        .layer("core")
        .containing_modules(["localheroes_service.core"])
        .layer("services")
        .containing_modules(["localheroes_service.services"])
        .layer("clients")
        .containing_modules(["localheroes_service.clients"])
    )
