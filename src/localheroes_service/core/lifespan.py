"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from localheroes_service.clients.ai_support_client import AISupportClient
from localheroes_service.clients.geocoding_client import GeocodingClient
from localheroes_service.clients.google_oauth_client import GoogleOAuthClient
from localheroes_service.clients.mail_client import MailClient
from localheroes_service.config import get_settings
from localheroes_service.core.state import init_app_state
from localheroes_service.logging import get_logger, setup_logging
from localheroes_service.services.auth_service import AuthService
from localheroes_service.services.connection_manager import ConnectionManager
from localheroes_service.services.maintenance_scheduler import MaintenanceScheduler
from localheroes_service.services.message_service import MessageService
from localheroes_service.services.message_store import MessageStore
from localheroes_service.services.notification_dispatcher import NotificationDispatcher
from localheroes_service.services.notification_service import NotificationService
from localheroes_service.services.notification_store import NotificationStore
from localheroes_service.services.refresh_token_store import RefreshTokenStore
from localheroes_service.services.task_manager import TaskManager
from localheroes_service.services.task_store import TaskStore
from localheroes_service.services.token_service import TokenService
from localheroes_service.services.user_registry import UserRegistry
from localheroes_service.services.user_store import UserStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()
    state.cookies = settings.cookies

    # Every store opens its own connection to the same database file, so the
    # payment settlement can touch tasks and users in one transaction.
    db_path = settings.database.path

    user_store = UserStore(db_path=db_path)
    user_registry = UserRegistry(store=user_store, bcrypt_rounds=settings.auth.bcrypt_rounds)
    state.user_registry = user_registry

    token_service = TokenService(
        store=RefreshTokenStore(db_path=db_path),
        user_store=user_store,
        access_secret=settings.auth.access_token_secret,
        refresh_secret=settings.auth.refresh_token_secret,
        password_reset_secret=settings.auth.password_reset_secret,
        access_ttl_seconds=settings.auth.access_token_ttl_seconds,
        refresh_ttl_seconds=settings.auth.refresh_token_ttl_seconds,
        password_reset_ttl_seconds=settings.auth.password_reset_ttl_seconds,
        max_active_tokens=settings.auth.max_active_refresh_tokens,
    )
    state.token_service = token_service

    # Real-time delivery and notifications
    connection_manager = ConnectionManager()
    state.connection_manager = connection_manager

    notification_service = NotificationService(
        store=NotificationStore(db_path=db_path),
        connection_manager=connection_manager,
        default_page_size=settings.notifications.default_page_size,
    )
    state.notification_service = notification_service

    notification_dispatcher = NotificationDispatcher(
        sink=notification_service,
        queue_size=settings.notifications.queue_size,
    )
    notification_dispatcher.start()
    state.notification_dispatcher = notification_dispatcher

    # External collaborators (httpx async clients and SMTP)
    geocoding_client: GeocodingClient | None = None
    if settings.geocoding.enabled:
        geocoding_client = GeocodingClient(
            base_url=settings.geocoding.base_url,
            user_agent=settings.geocoding.user_agent,
            timeout_seconds=settings.geocoding.timeout_seconds,
        )
    state.geocoding_client = geocoding_client

    mail_client = MailClient(
        enabled=settings.mail.enabled,
        host=settings.mail.host,
        port=settings.mail.port,
        username=settings.mail.username,
        password=settings.mail.password,
        use_tls=settings.mail.use_tls,
        from_address=settings.mail.from_address,
        frontend_origin=settings.mail.frontend_origin,
        timeout_seconds=settings.mail.timeout_seconds,
    )
    state.mail_client = mail_client

    google_oauth_client = GoogleOAuthClient(
        client_id=settings.google_oauth.client_id,
        client_secret=settings.google_oauth.client_secret,
        redirect_uri=settings.google_oauth.redirect_uri,
        authorization_url=settings.google_oauth.authorization_url,
        token_url=settings.google_oauth.token_url,
        userinfo_url=settings.google_oauth.userinfo_url,
        timeout_seconds=settings.google_oauth.timeout_seconds,
    )
    state.google_oauth_client = google_oauth_client

    ai_support_client = AISupportClient(
        api_key=settings.ai_support.api_key,
        base_url=settings.ai_support.base_url,
        model=settings.ai_support.model,
        timeout_seconds=settings.ai_support.timeout_seconds,
    )
    state.ai_support_client = ai_support_client

    # Business logic
    task_manager = TaskManager(
        store=TaskStore(db_path=db_path),
        user_registry=user_registry,
        dispatcher=notification_dispatcher,
        geocoding_client=geocoding_client,
        payment_on_completion=settings.tasks.payment_on_completion,
        default_page_size=settings.tasks.default_page_size,
        max_page_size=settings.tasks.max_page_size,
    )
    state.task_manager = task_manager

    message_service = MessageService(
        store=MessageStore(db_path=db_path),
        user_registry=user_registry,
        connection_manager=connection_manager,
    )
    state.message_service = message_service

    state.auth_service = AuthService(
        user_registry=user_registry,
        token_service=token_service,
        mail_client=mail_client,
        google_oauth_client=google_oauth_client,
    )

    maintenance_scheduler: MaintenanceScheduler | None = None
    if settings.maintenance.sweep_enabled:
        maintenance_scheduler = MaintenanceScheduler(
            token_service=token_service,
            token_sweep_cron=settings.maintenance.token_sweep_cron,
        )
        maintenance_scheduler.start()
    state.maintenance_scheduler = maintenance_scheduler

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": db_path,
            "payment_on_completion": settings.tasks.payment_on_completion,
            "geocoding_enabled": settings.geocoding.enabled,
            "mail_enabled": settings.mail.enabled,
            "token_sweep_enabled": settings.maintenance.sweep_enabled,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    if maintenance_scheduler is not None:
        maintenance_scheduler.stop()

    # Deliver queued notifications before the stores close
    await notification_dispatcher.stop()

    # Close SQLite connections
    task_manager.close()
    message_service.close()
    notification_service.close()
    token_service.close()
    user_registry.close()

    # Close HTTP clients
    if geocoding_client is not None:
        await geocoding_client.close()
    await google_oauth_client.close()
    await ai_support_client.close()
