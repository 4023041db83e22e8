"""API routers."""

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

__all__ = [
    "admin",
    "ai_support",
    "auth",
    "health",
    "messages",
    "notifications",
    "tasks",
    "users",
]
