"""Shared test helpers: configuration files and seeded users."""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

import yaml

if TYPE_CHECKING:
    from pathlib import Path

ACCESS_SECRET = "test-access-token-secret-0123456789abcdef"
REFRESH_SECRET = "test-refresh-token-secret-0123456789abcdef"
RESET_SECRET = "test-password-reset-secret-0123456789abcdef"

DEFAULT_PASSWORD = "correct-horse-battery"


def base_config(tmp_path: Path) -> dict[str, Any]:
    """A complete, valid configuration rooted in a temp directory."""
    return {
        "service": {"name": "localheroes", "version": "0.1.0"},
        "server": {"host": "127.0.0.1", "port": 8000, "log_level": "info"},
        "logging": {"level": "WARNING", "directory": str(tmp_path / "logs")},
        "database": {"path": str(tmp_path / "localheroes.db")},
        "request": {"max_body_size": 1048576},
        "auth": {
            "access_token_secret": ACCESS_SECRET,
            "refresh_token_secret": REFRESH_SECRET,
            "password_reset_secret": RESET_SECRET,
            "access_token_ttl_seconds": 900,
            "refresh_token_ttl_seconds": 2592000,
            "password_reset_ttl_seconds": 1200,
            "max_active_refresh_tokens": 3,
            "bcrypt_rounds": 4,
        },
        "cookies": {"secure": False, "same_site": "lax"},
        "tasks": {"payment_on_completion": True, "default_page_size": 10, "max_page_size": 100},
        "notifications": {"queue_size": 100, "default_page_size": 50},
        "maintenance": {"sweep_enabled": False, "token_sweep_cron": "0 0 */7 * *"},
        "geocoding": {
            "enabled": False,
            "base_url": "https://geocoder.test",
            "user_agent": "LocalHeroes-Test/0.1",
            "timeout_seconds": 5,
        },
        "mail": {
            "enabled": False,
            "host": "smtp.test",
            "port": 587,
            "username": None,
            "password": None,
            "use_tls": True,
            "from_address": "no-reply@localheroes.test",
            "frontend_origin": "http://frontend.test",
            "timeout_seconds": 5,
        },
        "google_oauth": {
            "client_id": "google-client-id",
            "client_secret": "google-client-secret",
            "redirect_uri": "http://test/auth/google/callback",
            "authorization_url": "https://accounts.google.test/o/oauth2/v2/auth",
            "token_url": "https://oauth2.google.test/token",
            "userinfo_url": "https://www.google.test/oauth2/v3/userinfo",
            "timeout_seconds": 5,
        },
        "ai_support": {
            "api_key": None,
            "base_url": "https://ai.test",
            "model": "gemini-test",
            "timeout_seconds": 5,
        },
    }


def write_config(tmp_path: Path, overrides: dict[str, dict[str, Any]] | None = None) -> Path:
    """Write a config.yaml, merging per-section overrides into the defaults."""
    config = copy.deepcopy(base_config(tmp_path))
    for section, values in (overrides or {}).items():
        config[section].update(values)
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(config, sort_keys=False))
    return config_path
