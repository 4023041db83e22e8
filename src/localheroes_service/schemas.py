"""Pydantic request and response models for the marketplace API."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

Email = Annotated[str, Field(min_length=3, max_length=255, pattern=_EMAIL_PATTERN)]
Password = Annotated[str, Field(min_length=8, max_length=72)]
Tag = Annotated[str, Field(min_length=1, max_length=50)]


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: str
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]
    websocket_connections: int
    pending_notifications: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, Any]


# ---------------------------------------------------------------------------
# Users and authentication
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Body of POST /users."""

    model_config = ConfigDict(extra="forbid")
    email: Email
    password: Password
    first_name: str = Field(min_length=1, max_length=150)
    last_name: str = Field(min_length=1, max_length=150)


class LoginRequest(BaseModel):
    """Body of POST /auth/login."""

    model_config = ConfigDict(extra="forbid")
    email: Email
    password: str = Field(min_length=1, max_length=72)


class RefreshRequest(BaseModel):
    """Optional body of POST /auth/refresh and POST /auth/logout."""

    model_config = ConfigDict(extra="forbid")
    refresh_token: str | None = None


class PasswordResetRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    email: Email


class PasswordResetConfirmRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    token: str = Field(min_length=1)
    new_password: Password


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    old_password: str = Field(min_length=1, max_length=72)
    new_password: Password


class UpdateProfileRequest(BaseModel):
    """Body of PATCH /users/profile. Only profile fields are accepted."""

    model_config = ConfigDict(extra="forbid")
    first_name: str | None = Field(default=None, min_length=1, max_length=150)
    last_name: str | None = Field(default=None, min_length=1, max_length=150)
    phone: str | None = Field(default=None, max_length=20)
    address: str | None = Field(default=None, max_length=500)
    bio: str | None = Field(default=None, max_length=1000)
    skills: list[Tag] | None = Field(default=None, max_length=50)
    profile_picture: str | None = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class LocationInput(BaseModel):
    """A free-text address, optionally with known coordinates."""

    model_config = ConfigDict(extra="forbid")
    address: str | None = Field(default=None, max_length=500)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class CreateTaskRequest(BaseModel):
    """Body of POST /tasks."""

    model_config = ConfigDict(extra="forbid")
    title: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=1000)
    price: StrictInt = Field(ge=0)
    category: str | None = Field(default=None, max_length=50)
    tags: list[Tag] = Field(default_factory=list, max_length=20)
    experience_level: str | None = Field(default=None, max_length=50)
    due_date: datetime | None = None
    location: LocationInput | None = None


class UpdateTaskRequest(BaseModel):
    """
    Body of PATCH /tasks/{task_id}.

    Status, poster, worker and applicants are not part of the model, so a
    request that tries to set them is rejected.
    """

    model_config = ConfigDict(extra="forbid")
    title: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, min_length=1, max_length=1000)
    price: StrictInt | None = Field(default=None, ge=0)
    category: str | None = Field(default=None, max_length=50)
    tags: list[Tag] | None = Field(default=None, max_length=20)
    experience_level: str | None = Field(default=None, max_length=50)
    due_date: datetime | None = None
    location: LocationInput | None = None

    @field_validator("title", "description", "price", "tags")
    @classmethod
    def _reject_null(cls, value: Any) -> Any:
        # Omitting a field keeps it; these columns can never be cleared.
        if value is None:
            msg = "must not be null"
            raise ValueError(msg)
        return value


# ---------------------------------------------------------------------------
# Messages and AI support
# ---------------------------------------------------------------------------


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    receiver_id: str = Field(min_length=1)
    content: str = Field(min_length=1, max_length=2000)


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    message: str = Field(min_length=1, max_length=2000)
    context: dict[str, Any] | None = None
