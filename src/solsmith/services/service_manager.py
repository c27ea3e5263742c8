"""Service lifecycle manager."""

from __future__ import annotations

from solsmith.config import AppConfig
from solsmith.core.session import SessionRegistry
from solsmith.generation.runner import GenerationRunner
from solsmith.log import get_logger
from solsmith.services.base import Service
from solsmith.services.janitor import SessionJanitor

logger = get_logger(__name__)


class ServiceManager:
    """Starts the background services in order and stops them in reverse."""

    def __init__(self, config: AppConfig, sessions: SessionRegistry):
        self._runner = GenerationRunner(config.generator)
        self._janitor = SessionJanitor(config.sessions, sessions)
        self._services: list[Service] = [self._runner, self._janitor]

    def get_runner(self) -> GenerationRunner:
        return self._runner

    def get_janitor(self) -> SessionJanitor:
        return self._janitor

    async def start_all(self) -> None:
        """Start every service. An unhealthy service is reported but does not block startup."""
        for service in self._services:
            await service.start()
            if not await service.health_check():
                logger.warning(
                    "service_unhealthy",
                    service=service.service_name,
                    hint=service.unavailable_hint,
                )
        logger.info("all_services_started", services=[s.service_name for s in self._services])

    async def stop_all(self) -> None:
        for service in reversed(self._services):
            try:
                await service.stop()
            except Exception as e:
                logger.error("service_stop_error", service=service.service_name, error=str(e))
        logger.info("all_services_stopped")

    async def health_check_all(self) -> dict[str, bool]:
        return {s.service_name: await s.health_check() for s in self._services}
