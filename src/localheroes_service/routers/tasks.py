"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Request

from localheroes_service.core.state import get_app_state
from localheroes_service.routers.dependencies import get_current_user
from localheroes_service.routers.validation import parse_int_param, read_model
from localheroes_service.schemas import CreateTaskRequest, UpdateTaskRequest

if TYPE_CHECKING:
    from localheroes_service.services.task_manager import TaskManager

router = APIRouter()

_TEXT_FILTERS = ("posted_by", "accepted_by", "search", "location", "category", "status", "sort")


def _task_manager() -> TaskManager:
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)
    return state.task_manager


# ---------------------------------------------------------------------------
# POST /tasks: create task (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(
    request: Request,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """Post a new OPEN task owned by the caller."""
    payload = await read_model(request, CreateTaskRequest)
    return await _task_manager().create_task(user["user_id"], payload.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# GET /tasks: search tasks (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.get("/tasks")
async def search_tasks(request: Request) -> dict[str, Any]:
    """Browse tasks with filters, sorting and pagination."""
    params = request.query_params
    filters: dict[str, Any] = {
        name: params[name] for name in _TEXT_FILTERS if params.get(name)
    }
    if params.get("date_posted"):
        filters["date_posted"] = params["date_posted"]

    tags: list[str] = []
    for raw in params.getlist("tags"):
        tags.extend(tag.strip() for tag in raw.split(",") if tag.strip())
    filters["tags"] = tags

    filters["min_price"] = parse_int_param(request, "min_price", minimum=0)
    filters["max_price"] = parse_int_param(request, "max_price", minimum=0)
    filters["page"] = parse_int_param(request, "page", minimum=1)
    filters["limit"] = parse_int_param(request, "limit", minimum=1)

    return await _task_manager().search_tasks(filters)


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> dict[str, Any]:
    """Get a single task with poster, worker and applicant summaries."""
    return await _task_manager().get_task(task_id)


@router.patch("/tasks/{task_id}")
async def update_task(
    task_id: str,
    request: Request,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """Edit the poster-editable fields of a task."""
    payload = await read_model(request, UpdateTaskRequest)
    return await _task_manager().update_task(
        task_id, user["user_id"], payload.model_dump(mode="json", exclude_unset=True)
    )


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(
    task_id: str,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> None:
    """Delete a task. Only its poster may do so."""
    await _task_manager().remove_task(task_id, user["user_id"])


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/apply")
async def apply_to_task(
    task_id: str,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """Join the applicant pool of an OPEN task."""
    return await _task_manager().apply(task_id, user["user_id"])


@router.post("/tasks/{task_id}/applicants/{user_id}/accept")
async def accept_applicant(
    task_id: str,
    user_id: str,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """Poster picks an applicant; the task moves to IN_PROGRESS."""
    return await _task_manager().accept_applicant(task_id, user["user_id"], user_id)


@router.post("/tasks/{task_id}/applicants/{user_id}/deny")
async def deny_applicant(
    task_id: str,
    user_id: str,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    return await _task_manager().deny_applicant(task_id, user["user_id"], user_id)


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


@router.patch("/tasks/{task_id}/accept")
async def accept_task(
    task_id: str,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """Take an OPEN task directly, without going through the applicant pool."""
    return await _task_manager().accept_task(task_id, user["user_id"])


@router.patch("/tasks/{task_id}/complete")
async def complete_task(
    task_id: str,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    return await _task_manager().complete_task(task_id, user["user_id"])


@router.patch("/tasks/{task_id}/cancel")
async def cancel_task(
    task_id: str,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    return await _task_manager().cancel_task(task_id, user["user_id"])
