"""APScheduler-based sweep that evicts inactive chat sessions."""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from solsmith.config import SessionConfig
from solsmith.core.session import SessionRegistry
from solsmith.log import get_logger
from solsmith.services.base import Service

logger = get_logger(__name__)

SWEEP_JOB_ID = "session_sweep"


class SessionJanitor(Service):
    """Periodically drops chat slots idle for longer than ``idle_timeout`` seconds."""

    def __init__(self, config: SessionConfig, sessions: SessionRegistry):
        self._config = config
        self._sessions = sessions
        self._scheduler = AsyncIOScheduler()

    @property
    def service_name(self) -> str:
        return "session_janitor"

    async def start(self) -> None:
        self._scheduler.add_job(
            self.sweep,
            IntervalTrigger(seconds=self._config.sweep_interval),
            id=SWEEP_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.start()
        logger.info(
            "session_janitor_started",
            idle_timeout=self._config.idle_timeout,
            sweep_interval=self._config.sweep_interval,
        )

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("session_janitor_stopped")

    async def health_check(self) -> bool:
        return self._scheduler.running

    async def sweep(self) -> int:
        return self._sessions.evict_idle(self._config.idle_timeout)
