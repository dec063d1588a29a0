"""
Integration configuration service: connect, disconnect and the status read model.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from lifesync.core.clock import Clock, LoopClock
from lifesync.core.errors import IntegrationNotConnected
from lifesync.models import EntityMapping, IntegrationConfig, SyncJob
from lifesync.schemas.integration import (
    Credentials,
    IntegrationStatus,
    IntegrationStatusView,
    Platform,
    SyncMode,
)
from lifesync.schemas.sync import SyncOutcome
from lifesync.services.registry import IntegrationRegistry

logger = logging.getLogger(__name__)

_STATUS_AFTER = {
    SyncOutcome.SUCCESS: IntegrationStatus.IDLE,
    SyncOutcome.PARTIAL: IntegrationStatus.DEGRADED,
    SyncOutcome.FAILED: IntegrationStatus.ERROR,
}


class IntegrationService:
    """
    Service for per-user provider connections.

    Handles:
    - Connecting and disconnecting providers
    - Sync status transitions around each job
    - The read model shown to the user
    """

    def __init__(
        self,
        registry: Optional[IntegrationRegistry] = None,
        clock: Optional[Clock] = None,
    ):
        self.registry = registry or IntegrationRegistry()
        self.clock = clock or LoopClock()

    async def get_config(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
    ) -> Optional[IntegrationConfig]:
        stmt = select(IntegrationConfig).where(
            IntegrationConfig.user_id == user_id,
            IntegrationConfig.provider == provider,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def connect(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
        credentials: Credentials,
        sync_mode: Optional[SyncMode] = None,
        platform: Optional[Platform] = None,
        account_label: Optional[str] = None,
    ) -> IntegrationConfig:
        """
        Connect a provider for a user, or reconnect with fresh credentials.

        Returns:
            The connected configuration
        """
        mode = self.registry.resolve_mode(provider, sync_mode)

        config = await self.get_config(db, user_id, provider)
        if config is None:
            config = IntegrationConfig(user_id=user_id, provider=provider)
            db.add(config)

        config.connected = True
        config.sync_enabled = True
        config.sync_mode = mode.value
        config.status = IntegrationStatus.IDLE.value
        config.credentials = credentials.model_dump(mode="json", exclude_none=True)
        config.platform = platform.value if platform else None
        config.account_label = account_label or credentials.email
        config.last_error = None

        await db.flush()
        logger.info(f"Connected {provider} for user {user_id} ({mode.value})")
        return config

    async def disconnect(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
    ) -> bool:
        """Clear credentials, stop syncing and drop the provider's mappings."""
        config = await self.get_config(db, user_id, provider)
        if config is None:
            return False

        config.connected = False
        config.sync_enabled = False
        config.credentials = None
        config.status = IntegrationStatus.IDLE.value
        config.last_error = None

        await db.execute(
            delete(EntityMapping).where(
                EntityMapping.user_id == user_id,
                EntityMapping.provider == provider,
            )
        )
        await db.flush()
        logger.info(f"Disconnected {provider} for user {user_id}")
        return True

    async def set_sync_enabled(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
        enabled: bool,
    ) -> IntegrationConfig:
        config = await self.get_config(db, user_id, provider)
        if config is None or not config.connected:
            raise IntegrationNotConnected(f"{provider} is not connected for this user")
        config.sync_enabled = enabled
        await db.flush()
        return config

    async def list_syncable(
        self,
        db: AsyncSession,
        user_id: Optional[str] = None,
    ) -> list[IntegrationConfig]:
        """Connected, sync-enabled configs, REST and inbox-only providers alike."""
        stmt = select(IntegrationConfig).where(
            IntegrationConfig.connected.is_(True),
            IntegrationConfig.sync_enabled.is_(True),
        )
        if user_id is not None:
            stmt = stmt.where(IntegrationConfig.user_id == user_id)
        result = await db.execute(stmt.order_by(IntegrationConfig.provider))

        return list(result.scalars().all())

    async def mark_syncing(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
    ) -> None:
        config = await self.get_config(db, user_id, provider)
        if config is not None:
            config.status = IntegrationStatus.SYNCING.value
            await db.flush()

    async def record_outcome(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
        outcome: SyncOutcome,
        error: Optional[str] = None,
        pulled_as_of: Optional[datetime] = None,
    ) -> None:
        """Move the config out of ``syncing`` once a job is finalized.

        ``last_synced`` is the incremental pull cursor. It only advances on
        full success of a run that pulled, and then to the server time the
        pull covered, so no remote change is ever skipped: a failed
        collection or a push-only run leaves it where it was.
        """
        config = await self.get_config(db, user_id, provider)
        if config is None:
            return

        config.status = _STATUS_AFTER[outcome].value
        if outcome == SyncOutcome.SUCCESS:
            if pulled_as_of is not None:
                config.last_synced = pulled_as_of
            config.last_error = None
        else:
            config.last_error = error
        await db.flush()

    async def get_status(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
    ) -> IntegrationStatusView:
        """Build the read model: config state plus counts of the last finished job."""
        self.registry.describe(provider)
        config = await self.get_config(db, user_id, provider)
        if config is None:
            raise IntegrationNotConnected(f"{provider} has never been connected for this user")

        last_job = (
            await db.execute(
                select(SyncJob)
                .where(
                    SyncJob.user_id == user_id,
                    SyncJob.provider == provider,
                    SyncJob.outcome != SyncOutcome.PENDING.value,
                )
                .order_by(SyncJob.completed_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()

        active_job = (
            await db.execute(
                select(SyncJob.id).where(
                    SyncJob.user_id == user_id,
                    SyncJob.provider == provider,
                    SyncJob.outcome == SyncOutcome.PENDING.value,
                )
            )
        ).scalar_one_or_none()

        return IntegrationStatusView(
            user_id=user_id,
            provider=provider,
            connected=config.connected,
            sync_enabled=config.sync_enabled,
            sync_mode=SyncMode(config.sync_mode),
            status=IntegrationStatus(config.status),
            last_synced=config.last_synced,
            last_error=config.last_error,
            pull_count=last_job.pulled_count if last_job else 0,
            push_count=last_job.pushed_count if last_job else 0,
            active_job_id=active_job,
        )
