"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from localheroes_service.clients.ai_support_client import AISupportClient
    from localheroes_service.clients.geocoding_client import GeocodingClient
    from localheroes_service.clients.google_oauth_client import GoogleOAuthClient
    from localheroes_service.clients.mail_client import MailClient
    from localheroes_service.config import CookiesConfig
    from localheroes_service.services.auth_service import AuthService
    from localheroes_service.services.connection_manager import ConnectionManager
    from localheroes_service.services.maintenance_scheduler import MaintenanceScheduler
    from localheroes_service.services.message_service import MessageService
    from localheroes_service.services.notification_dispatcher import NotificationDispatcher
    from localheroes_service.services.notification_service import NotificationService
    from localheroes_service.services.task_manager import TaskManager
    from localheroes_service.services.token_service import TokenService
    from localheroes_service.services.user_registry import UserRegistry


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    cookies: CookiesConfig | None = None
    user_registry: UserRegistry | None = None
    token_service: TokenService | None = None
    auth_service: AuthService | None = None
    task_manager: TaskManager | None = None
    notification_service: NotificationService | None = None
    notification_dispatcher: NotificationDispatcher | None = None
    message_service: MessageService | None = None
    connection_manager: ConnectionManager | None = None
    maintenance_scheduler: MaintenanceScheduler | None = None
    geocoding_client: GeocodingClient | None = None
    mail_client: MailClient | None = None
    google_oauth_client: GoogleOAuthClient | None = None
    ai_support_client: AISupportClient | None = None

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
