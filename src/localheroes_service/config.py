"""
Configuration management for the LocalHeroes marketplace service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict

REDACTION_MARKER = "***REDACTED***"

_SENSITIVE_KEY_PARTS: tuple[str, ...] = ("secret", "password", "api_key")


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class AuthConfig(BaseModel):
    """Token signing and password hashing configuration."""

    model_config = ConfigDict(extra="forbid")
    access_token_secret: str
    refresh_token_secret: str
    password_reset_secret: str
    access_token_ttl_seconds: int
    refresh_token_ttl_seconds: int
    password_reset_ttl_seconds: int
    max_active_refresh_tokens: int
    bcrypt_rounds: int


class CookiesConfig(BaseModel):
    """Attributes for the accessToken/refreshToken cookies."""

    model_config = ConfigDict(extra="forbid")
    secure: bool
    same_site: str


class TasksConfig(BaseModel):
    """Task lifecycle configuration."""

    model_config = ConfigDict(extra="forbid")
    payment_on_completion: bool
    default_page_size: int
    max_page_size: int


class NotificationsConfig(BaseModel):
    """Notification dispatch configuration."""

    model_config = ConfigDict(extra="forbid")
    queue_size: int
    default_page_size: int


class MaintenanceConfig(BaseModel):
    """Periodic maintenance jobs."""

    model_config = ConfigDict(extra="forbid")
    sweep_enabled: bool
    token_sweep_cron: str


class GeocodingConfig(BaseModel):
    """OpenStreetMap geocoding configuration."""

    model_config = ConfigDict(extra="forbid")
    enabled: bool
    base_url: str
    user_agent: str
    timeout_seconds: int


class MailConfig(BaseModel):
    """Outgoing mail configuration."""

    model_config = ConfigDict(extra="forbid")
    enabled: bool
    host: str
    port: int
    username: str | None
    password: str | None
    use_tls: bool
    from_address: str
    frontend_origin: str
    timeout_seconds: int


class GoogleOAuthConfig(BaseModel):
    """Google OAuth 2.0 client configuration."""

    model_config = ConfigDict(extra="forbid")
    client_id: str
    client_secret: str
    redirect_uri: str
    authorization_url: str
    token_url: str
    userinfo_url: str
    timeout_seconds: int


class AISupportConfig(BaseModel):
    """Generative AI support chat configuration."""

    model_config = ConfigDict(extra="forbid")
    api_key: str | None
    base_url: str
    model: str
    timeout_seconds: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    request: RequestConfig
    auth: AuthConfig
    cookies: CookiesConfig
    tasks: TasksConfig
    notifications: NotificationsConfig
    maintenance: MaintenanceConfig
    geocoding: GeocodingConfig
    mail: MailConfig
    google_oauth: GoogleOAuthConfig
    ai_support: AISupportConfig


def get_config_path() -> Path:
    """Determine configuration file path."""
    env_path = os.environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path.cwd() / "config.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache settings from the configuration file.

    Raises:
        FileNotFoundError: If the configuration file does not exist
        ValueError: If the file does not contain a YAML mapping
        pydantic.ValidationError: If any section is missing or malformed
    """
    config_path = get_config_path()
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open(encoding="utf-8") as config_file:
        raw = yaml.safe_load(config_file)

    if not isinstance(raw, dict):
        msg = f"Configuration file must contain a mapping: {config_path}"
        raise ValueError(msg)

    return Settings.model_validate(raw)


def clear_settings_cache() -> None:
    """Clear the cached settings. Used in testing."""
    get_settings.cache_clear()


def _redact(value: Any, key: str = "") -> Any:
    if isinstance(value, dict):
        return {child_key: _redact(child, child_key) for child_key, child in value.items()}
    if value is not None and any(part in key.lower() for part in _SENSITIVE_KEY_PARTS):
        return REDACTION_MARKER
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    redacted: dict[str, Any] = _redact(get_settings().model_dump())
    return redacted
