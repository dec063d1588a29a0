"""
Scheduled sync driver.

Runs a full bidirectional reconciliation for each of a user's syncable
connections immediately on start, then once per interval until stopped.
This is the backstop for any change the watcher never saw.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifesync.core.clock import Clock, LoopClock, TimerHandle
from lifesync.core.errors import AlreadyRunning, SyncError
from lifesync.schemas.sync import SyncDirection, SyncReport, SyncTrigger
from lifesync.services.integration_service import IntegrationService
from lifesync.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Fixed-interval sync loop per user."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        integrations: IntegrationService,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Optional[Clock] = None,
        interval: float = 300.0,
    ):
        self.engine = engine
        self.integrations = integrations
        self.session_factory = session_factory
        self.clock = clock or LoopClock()
        self.interval = interval
        self._timers: dict[str, TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def is_running(self, user_id: str) -> bool:
        return user_id in self._timers

    def running_users(self) -> list[str]:
        return sorted(self._timers)

    def start(self, user_id: str) -> bool:
        """
        Start the loop for a user.

        Returns:
            False if the loop was already running (nothing changes)
        """
        if user_id in self._timers:
            return False
        logger.info(f"Starting scheduled sync for {user_id} every {self.interval:g}s")
        self._tick(user_id)
        return True

    def stop(self, user_id: str) -> bool:
        """Stop the loop. A pass already in flight runs to completion."""
        handle = self._timers.pop(user_id, None)
        if handle is None:
            return False
        handle.cancel()
        logger.info(f"Stopped scheduled sync for {user_id}")
        return True

    def stop_all(self) -> None:
        for user_id in list(self._timers):
            self.stop(user_id)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _tick(self, user_id: str) -> None:
        self._timers[user_id] = self.clock.call_later(
            self.interval, lambda: self._on_timer(user_id)
        )
        task = asyncio.ensure_future(self.sync_user(user_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_timer(self, user_id: str) -> None:
        if user_id in self._timers:
            self._tick(user_id)

    async def sync_user(self, user_id: str) -> list[SyncReport]:
        """One full pass over every connected, sync-enabled provider."""
        async with self.session_factory() as db:
            configs = await self.integrations.list_syncable(db, user_id)

        reports: list[SyncReport] = []
        for config in configs:
            try:
                report = await self.engine.reconcile(
                    user_id,
                    config.provider,
                    trigger=SyncTrigger.SCHEDULED,
                    direction=SyncDirection.BIDIRECTIONAL,
                )
            except AlreadyRunning as e:
                logger.info(f"Scheduled sync skipped: {e.message}")
                continue
            except SyncError as e:
                logger.warning(
                    f"Scheduled sync of {config.provider} for {user_id} not run: {e.describe()}"
                )
                continue
            if report is not None:
                reports.append(report)
        return reports
