"""
Wiring of the sync components for one process.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifesync.config import Settings, get_settings
from lifesync.core.clock import Clock, LoopClock
from lifesync.core.external_api import ProviderClient
from lifesync.core.providers import build_provider_clients, close_provider_clients
from lifesync.services.inbox import SyncInbox
from lifesync.services.integration_service import IntegrationService
from lifesync.services.ledger import SyncJobLedger
from lifesync.services.reconciliation import ReconciliationEngine
from lifesync.services.record_store import RecordStore
from lifesync.services.registry import IntegrationRegistry
from lifesync.services.scheduler import SyncScheduler
from lifesync.services.watcher import ChangeTriggerWatcher

logger = logging.getLogger(__name__)


class SyncRuntime:
    """
    Owns the per-process sync state: engine phases, ledger locks, debounce
    timers and scheduler loops. One instance per API process or worker task.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clients: Optional[dict[str, ProviderClient]] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.settings = settings
        self.session_factory = session_factory
        self.clock = clock or LoopClock()
        self.clients = clients if clients is not None else build_provider_clients(self.clock)

        self.registry = IntegrationRegistry()
        self.integrations = IntegrationService(self.registry, self.clock)
        self.records = RecordStore(self.clock)
        self.inbox = SyncInbox(self.clock, batch_limit=settings.inbox_batch_limit)
        self.ledger = SyncJobLedger(
            session_factory,
            clock=self.clock,
            stale_after=settings.stale_job_seconds,
        )
        self.engine = ReconciliationEngine(
            session_factory,
            self.ledger,
            self.clients,
            registry=self.registry,
            integrations=self.integrations,
            records=self.records,
            inbox=self.inbox,
            clock=self.clock,
            sync_timeout=settings.sync_timeout_seconds,
        )
        self.watcher = ChangeTriggerWatcher(
            self.engine,
            clock=self.clock,
            quiet_period=settings.sync_debounce_seconds,
        )
        self.scheduler = SyncScheduler(
            self.engine,
            self.integrations,
            session_factory,
            clock=self.clock,
            interval=settings.scheduled_sync_interval_seconds,
        )

    async def shutdown(self) -> None:
        """Cancel timers, let in-flight syncs finish, close HTTP clients."""
        self.watcher.teardown()
        self.scheduler.stop_all()
        await self.watcher.drain()
        await self.scheduler.drain()
        await close_provider_clients(self.clients)
        logger.info("Sync runtime stopped")
