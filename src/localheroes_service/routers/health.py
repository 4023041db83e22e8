"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from localheroes_service.core.state import get_app_state
from localheroes_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return statistics."""
    state = get_app_state()
    total_tasks = 0
    tasks_by_status: dict[str, int] = {}
    if state.task_manager is not None:
        stats = state.task_manager.get_stats()
        total_tasks = stats["total_tasks"]
        tasks_by_status = stats["tasks_by_status"]
    websocket_connections = 0
    if state.connection_manager is not None:
        websocket_connections = state.connection_manager.connection_count()
    pending_notifications = 0
    if state.notification_dispatcher is not None:
        pending_notifications = state.notification_dispatcher.pending
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_tasks=total_tasks,
        tasks_by_status=tasks_by_status,
        websocket_connections=websocket_connections,
        pending_notifications=pending_notifications,
    )
