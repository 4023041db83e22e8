"""Service layer components."""

from localheroes_service.services.auth_service import AuthService
from localheroes_service.services.connection_manager import ConnectionManager
from localheroes_service.services.maintenance_scheduler import MaintenanceScheduler
from localheroes_service.services.message_service import MessageService
from localheroes_service.services.notification_dispatcher import NotificationDispatcher
from localheroes_service.services.notification_service import NotificationService
from localheroes_service.services.task_manager import TaskManager
from localheroes_service.services.token_service import TokenService
from localheroes_service.services.user_registry import UserRegistry

__all__ = [
    "AuthService",
    "ConnectionManager",
    "MaintenanceScheduler",
    "MessageService",
    "NotificationDispatcher",
    "NotificationService",
    "TaskManager",
    "TokenService",
    "UserRegistry",
]
