"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from solsmith.config import AppConfig
from solsmith.conversation.handler import ConversationHandler
from solsmith.core.display import DisplayTracker
from solsmith.core.session import SessionRegistry
from solsmith.log import get_logger
from solsmith.messenger.base import ChatGateway
from solsmith.services.service_manager import ServiceManager
from solsmith.storage.record_store import RecordStore

logger = get_logger(__name__)


class SolSmithApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig, gateway: ChatGateway | None = None):
        self.config = config
        self.store = RecordStore(config.storage.users_dir)
        self.sessions = SessionRegistry()
        self.service_manager = ServiceManager(config, self.sessions)
        self.gateway = gateway or self._create_gateway()
        self.tracker = DisplayTracker(self.gateway)
        self.handler = ConversationHandler(
            gateway=self.gateway,
            tracker=self.tracker,
            sessions=self.sessions,
            store=self.store,
            runner=self.service_manager.get_runner(),
            max_pattern_length=config.generator.max_pattern_length,
        )

    async def start(self) -> None:
        """Initialize and start all components."""
        self.store.users_dir.mkdir(parents=True, exist_ok=True)

        await self.service_manager.start_all()

        # A gateway that cannot authenticate is fatal, so this is not guarded.
        self.gateway.on_event(self.handler.handle)
        await self.gateway.start()

        logger.info(
            "sol_smith_started",
            platform=self.gateway.platform_name,
            users_dir=str(self.store.users_dir),
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        try:
            await self.gateway.stop()
        except Exception as e:
            logger.error("gateway_stop_error", error=str(e))

        await self.sessions.cancel_all()
        await self.handler.drain()
        await self.service_manager.stop_all()
        logger.info("sol_smith_stopped")

    def _create_gateway(self) -> ChatGateway:
        from solsmith.messenger.telegram import TelegramAdapter

        return TelegramAdapter(self.config.telegram.model_dump())
