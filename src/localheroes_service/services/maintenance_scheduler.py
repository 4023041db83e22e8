"""Recurring maintenance jobs."""

from __future__ import annotations

from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from localheroes_service.logging import get_logger

if TYPE_CHECKING:
    from localheroes_service.services.token_service import TokenService

TOKEN_SWEEP_JOB_ID = "sweep_expired_refresh_tokens"


class MaintenanceScheduler:
    """Runs the expired refresh token sweep on a cron schedule."""

    def __init__(self, token_service: TokenService, token_sweep_cron: str) -> None:
        self._token_service = token_service
        self._trigger = CronTrigger.from_crontab(token_sweep_cron, timezone="UTC")
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._logger = get_logger(__name__)

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    async def sweep_refresh_tokens(self) -> int:
        """Job body: delete expired refresh token records."""
        try:
            return self._token_service.sweep_expired()
        except Exception:
            self._logger.exception("Refresh token sweep failed")
            return 0

    def start(self) -> None:
        """Register the jobs and start the scheduler on the running event loop."""
        if self._scheduler.running:
            return
        self._scheduler.add_job(
            self.sweep_refresh_tokens,
            trigger=self._trigger,
            id=TOKEN_SWEEP_JOB_ID,
            name="Sweep expired refresh tokens",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.start()
        job = self._scheduler.get_job(TOKEN_SWEEP_JOB_ID)
        self._logger.info(
            "Maintenance scheduler started",
            extra={"next_run_time": job.next_run_time if job is not None else None},
        )

    def stop(self) -> None:
        """Stop the scheduler without waiting for running jobs."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            self._logger.info("Maintenance scheduler stopped")
