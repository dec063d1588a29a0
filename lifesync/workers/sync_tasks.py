"""
Celery tasks for provider synchronization.

Tasks run outside the API process, so each one builds its own runtime on a
fresh event loop. The ledger's pending-job index keeps them from overlapping
with syncs started by the API.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator

from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from lifesync.workers.celery_app import celery_app

if TYPE_CHECKING:
    from lifesync.services.runtime import SyncRuntime

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run async function in Celery task."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@asynccontextmanager
async def task_runtime() -> AsyncIterator["SyncRuntime"]:
    """A runtime bound to this task's event loop."""
    from lifesync.config import get_settings
    from lifesync.database import make_session_factory
    from lifesync.services.runtime import SyncRuntime

    # Pooled connections belong to the loop that opened them
    engine = create_async_engine(get_settings().database_url, poolclass=NullPool)
    runtime = SyncRuntime(make_session_factory(engine))
    try:
        yield runtime
    finally:
        await runtime.shutdown()
        await engine.dispose()


@celery_app.task
def reconcile_provider_task(
    user_id: str,
    provider: str,
    trigger: str = "scheduled",
    direction: str = "bidirectional",
):
    """Task for one reconciliation of a user's provider.

    Not retried: an unavailable provider is picked up again by the next
    periodic pass, which resumes from the unchanged pull cursor.
    """
    return run_async(_reconcile_async(user_id, provider, trigger, direction))


async def _reconcile_async(user_id: str, provider: str, trigger: str, direction: str):
    """Async implementation of a single reconciliation."""
    from lifesync.core.errors import AlreadyRunning, SyncError
    from lifesync.schemas.sync import SyncDirection, SyncTrigger

    async with task_runtime() as runtime:
        try:
            report = await runtime.engine.reconcile(
                user_id,
                provider,
                trigger=SyncTrigger(trigger),
                direction=SyncDirection(direction),
            )
        except AlreadyRunning as e:
            return {"status": "skipped", "reason": e.describe()}
        except SyncError as e:
            logger.warning(f"Reconcile task for {provider}/{user_id} not run: {e.describe()}")
            return {"status": "rejected", "reason": e.describe()}

    if report is None:
        return {"status": "skipped", "reason": "nothing to do in this sync mode"}
    return report.model_dump(mode="json")


@celery_app.task
def periodic_sync():
    """
    Periodic task that queues a bidirectional sync for every connected,
    sync-enabled configuration.

    Run every ``scheduled_sync_interval_seconds`` via Celery Beat.
    """
    return run_async(_periodic_sync_async())


async def _periodic_sync_async():
    """Async implementation of periodic sync."""
    queued = 0
    async with task_runtime() as runtime:
        async with runtime.session_factory() as db:
            configs = await runtime.integrations.list_syncable(db)

    for config in configs:
        reconcile_provider_task.delay(config.user_id, config.provider, "scheduled")
        queued += 1

    return {"jobs_queued": queued}


@celery_app.task
def expire_stale_jobs():
    """Finalize sync jobs abandoned by crashed workers."""
    return run_async(_expire_stale_async())


async def _expire_stale_async():
    async with task_runtime() as runtime:
        expired = await runtime.ledger.expire_stale()
    return {"expired": expired}
