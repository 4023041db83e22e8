"""Shared request validation helpers for the API routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from localheroes_service.core.exceptions import ServiceError

if TYPE_CHECKING:
    from fastapi import Request

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def parse_model(data: dict[str, Any], model: type[ModelT]) -> ModelT:
    """
    Validate a parsed JSON object against a request model.

    Raises:
        ServiceError: VALIDATION_ERROR (400) listing every failing field
    """
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"]),
                "message": error["msg"],
            }
            for error in exc.errors(include_url=False, include_context=False, include_input=False)
        ]
        first = errors[0] if errors else {"field": "", "message": "Invalid request body"}
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{first['field']}: {first['message']}" if first["field"] else first["message"],
            400,
            {"errors": errors},
        ) from exc


async def read_model(request: Request, model: type[ModelT]) -> ModelT:
    """Read the request body and validate it; an empty body is treated as {}."""
    body = await request.body()
    data = {} if body == b"" else parse_json_body(body)
    return parse_model(data, model)


def parse_int_param(
    request: Request,
    name: str,
    *,
    minimum: int,
    maximum: int | None = None,
) -> int | None:
    """Parse an optional integer query parameter."""
    raw = request.query_params.get(name)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be an integer", 400, {}) from exc
    if value < minimum:
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be >= {minimum}", 400, {})
    if maximum is not None and value > maximum:
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be <= {maximum}", 400, {})
    return value


def extract_bearer_token(authorization: str | None) -> str | None:
    """Extract a token from an Authorization header, if one was sent."""
    if authorization is None:
        return None

    if not authorization.startswith("Bearer "):
        raise ServiceError(
            "UNAUTHORIZED",
            "Authorization header must use Bearer scheme",
            401,
            {},
        )

    token = authorization[len("Bearer ") :]
    if not token:
        raise ServiceError(
            "UNAUTHORIZED",
            "Bearer token must not be empty",
            401,
            {},
        )

    return token
