"""Background sweep cancelling unpaid pending sessions."""

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cuehall.config import Settings
from cuehall.services.admission import AdmissionController
from cuehall.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


class PendingSessionSweeper:
    """Runs ``AdmissionController.expire_pending_sessions`` on an interval."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher_provider: Callable[[], NotificationDispatcher],
        settings: Settings,
    ) -> None:
        self.session_factory = session_factory
        self.dispatcher_provider = dispatcher_provider
        self.settings = settings
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            f"Pending session sweeper started "
            f"(interval={self.settings.expiry_sweep_interval_seconds}s, "
            f"window={self.settings.payment_window_seconds}s)"
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Pending session sweeper stopped")

    async def sweep_once(self) -> list[str]:
        async with self.session_factory() as session:
            controller = AdmissionController(
                session,
                dispatcher=self.dispatcher_provider(),
                settings=self.settings,
            )
            return await controller.expire_pending_sessions()

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.settings.expiry_sweep_interval_seconds)
                if not self._running:
                    break
                await self.sweep_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Pending session sweep failed: {e}")
