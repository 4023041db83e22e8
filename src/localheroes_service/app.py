"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from localheroes_service.config import get_settings
from localheroes_service.core.exceptions import register_exception_handlers
from localheroes_service.core.lifespan import lifespan
from localheroes_service.core.middleware import RequestValidationMiddleware
from localheroes_service.routers import (
    admin,
    ai_support,
    auth,
    health,
    messages,
    notifications,
    tasks,
    users,
)


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(users.router, tags=["Users"])
    app.include_router(auth.router, tags=["Auth"])
    app.include_router(tasks.router, tags=["Tasks"])
    app.include_router(notifications.router, tags=["Notifications"])
    app.include_router(messages.router, tags=["Messages"])
    app.include_router(ai_support.router, tags=["AI Support"])
    app.include_router(admin.router, tags=["Admin"])

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
