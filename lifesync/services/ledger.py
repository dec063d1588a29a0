"""
Sync job ledger.

Every sync attempt is recorded as a ``SyncJob``: created pending by ``begin``,
finalized exactly once by ``complete`` and never deleted. ``begin`` is the
only concurrency gate between sync runs: at most one job per user and
provider may be pending at a time.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifesync.config import get_settings
from lifesync.core.clock import Clock, LoopClock
from lifesync.core.errors import AlreadyRunning, SyncTimeout
from lifesync.models import IntegrationConfig, SyncJob, SyncLog
from lifesync.schemas.integration import IntegrationStatus
from lifesync.schemas.sync import SyncDirection, SyncOutcome, SyncTrigger

logger = logging.getLogger(__name__)

_LOG_LEVEL = {
    SyncOutcome.SUCCESS: "info",
    SyncOutcome.PARTIAL: "warning",
    SyncOutcome.FAILED: "error",
}


class SyncJobLedger:
    """Persisted, append-only record of sync attempts."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Optional[Clock] = None,
        stale_after: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock or LoopClock()
        self.stale_after = timedelta(
            seconds=stale_after if stale_after is not None else get_settings().stale_job_seconds
        )
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def _lock(self, user_id: str, provider: str) -> asyncio.Lock:
        return self._locks.setdefault((user_id, provider), asyncio.Lock())

    async def begin(
        self,
        user_id: str,
        provider: str,
        trigger: SyncTrigger,
        direction: SyncDirection = SyncDirection.BIDIRECTIONAL,
    ) -> str:
        """
        Open a pending job, or refuse because one is already running.

        A pending job older than the staleness threshold is treated as
        abandoned: it is finalized as failed/timeout and superseded.

        Returns:
            The new job id

        Raises:
            AlreadyRunning: a live pending job exists for this user and provider
        """
        # The lock serializes check-and-set within this process; the partial
        # unique index on pending jobs guards across processes.
        async with self._lock(user_id, provider):
            async with self.session_factory() as db:
                now = self.clock.now()
                active = await self._pending(db, user_id, provider)

                if active is not None:
                    if now - active.started_at < self.stale_after:
                        raise AlreadyRunning(user_id, provider, active.id)
                    await self._expire(db, active, now)
                    await db.flush()

                job = SyncJob(
                    user_id=user_id,
                    provider=provider,
                    trigger=trigger.value,
                    direction=direction.value,
                    started_at=now,
                    outcome=SyncOutcome.PENDING.value,
                )
                db.add(job)
                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    raise AlreadyRunning(user_id, provider) from None

        logger.info(f"Sync job {job.id} started: {provider} for {user_id} ({trigger.value})")
        return job.id

    async def complete(
        self,
        job_id: str,
        outcome: SyncOutcome,
        pulled_count: int = 0,
        pushed_count: int = 0,
        summary: Optional[str] = None,
        error_message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Finalize a pending job and write its audit log entry.

        Returns:
            False if the job was already finalized (for example superseded as
            stale while still running); finalized jobs are never rewritten.
        """
        async with self.session_factory() as db:
            job = await db.get(SyncJob, job_id)
            if job is None:
                raise KeyError(f"unknown sync job {job_id}")
            if job.outcome != SyncOutcome.PENDING.value:
                logger.warning(
                    f"Sync job {job_id} already finalized as {job.outcome}; "
                    f"dropping late {outcome.value} result"
                )
                return False

            job.outcome = outcome.value
            job.completed_at = self.clock.now()
            job.pulled_count = pulled_count
            job.pushed_count = pushed_count
            job.summary = summary
            job.error_message = error_message

            message = f"Sync job {outcome.value}: {summary or error_message or ''}".rstrip(": ")
            db.add(self._log(job, _LOG_LEVEL[outcome], message, details))
            await db.commit()

        logger.info(f"Sync job {job_id} finalized: {outcome.value}")
        return True

    async def get_active(self, user_id: str, provider: str) -> Optional[SyncJob]:
        async with self.session_factory() as db:
            return await self._pending(db, user_id, provider)

    async def get_job(self, job_id: str) -> Optional[SyncJob]:
        async with self.session_factory() as db:
            return await db.get(SyncJob, job_id)

    async def list_jobs(
        self,
        user_id: str,
        provider: Optional[str] = None,
        limit: int = 15,
    ) -> list[SyncJob]:
        """Most recent jobs first."""
        stmt = select(SyncJob).where(SyncJob.user_id == user_id)
        if provider:
            stmt = stmt.where(SyncJob.provider == provider)
        stmt = stmt.order_by(SyncJob.started_at.desc()).limit(limit)
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def add_log(
        self,
        user_id: str,
        provider: str,
        level: str,
        message: str,
        job_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> str:
        async with self.session_factory() as db:
            entry = SyncLog(
                user_id=user_id,
                provider=provider,
                job_id=job_id,
                level=level,
                message=message,
                details=details,
                created_at=self.clock.now(),
            )
            db.add(entry)
            await db.commit()
            return entry.id

    async def list_logs(
        self,
        user_id: str,
        provider: Optional[str] = None,
        limit: int = 30,
    ) -> list[SyncLog]:
        stmt = select(SyncLog).where(SyncLog.user_id == user_id)
        if provider:
            stmt = stmt.where(SyncLog.provider == provider)
        stmt = stmt.order_by(SyncLog.created_at.desc()).limit(limit)
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def expire_stale(self) -> int:
        """
        Finalize every abandoned pending job and release stuck configs.

        Returns:
            Number of jobs expired
        """
        now = self.clock.now()
        async with self.session_factory() as db:
            result = await db.execute(
                select(SyncJob).where(
                    SyncJob.outcome == SyncOutcome.PENDING.value,
                    SyncJob.started_at <= now - self.stale_after,
                )
            )
            stale = list(result.scalars().all())
            for job in stale:
                await self._expire(db, job, now)
            await db.flush()

            # A config left in "syncing" with no pending job lost its run
            pending = select(SyncJob.id).where(
                SyncJob.user_id == IntegrationConfig.user_id,
                SyncJob.provider == IntegrationConfig.provider,
                SyncJob.outcome == SyncOutcome.PENDING.value,
            )
            await db.execute(
                update(IntegrationConfig)
                .where(
                    IntegrationConfig.status == IntegrationStatus.SYNCING.value,
                    ~pending.exists(),
                )
                .values(
                    status=IntegrationStatus.ERROR.value,
                    last_error=SyncTimeout("sync did not finish").describe(),
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        if stale:
            logger.warning(f"Expired {len(stale)} abandoned sync job(s)")
        return len(stale)

    async def _pending(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
    ) -> Optional[SyncJob]:
        result = await db.execute(
            select(SyncJob).where(
                SyncJob.user_id == user_id,
                SyncJob.provider == provider,
                SyncJob.outcome == SyncOutcome.PENDING.value,
            )
        )
        return result.scalar_one_or_none()

    async def _expire(self, db: AsyncSession, job: SyncJob, now) -> None:
        error = SyncTimeout(
            f"job pending since {job.started_at.isoformat()} exceeded "
            f"{int(self.stale_after.total_seconds())}s"
        ).describe()
        job.outcome = SyncOutcome.FAILED.value
        job.completed_at = now
        job.error_message = error
        db.add(self._log(job, "error", f"Sync job failed: {error}"))
        logger.warning(f"Superseding stale sync job {job.id} ({job.provider}, {job.user_id})")

    def _log(
        self,
        job: SyncJob,
        level: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> SyncLog:
        return SyncLog(
            user_id=job.user_id,
            provider=job.provider,
            job_id=job.id,
            level=level,
            message=message,
            details=details,
            created_at=self.clock.now(),
        )
