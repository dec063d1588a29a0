"""
Sync inbox: provider payloads delivered to us rather than pulled.

Providers without a REST client (health, finance and device calendars) hand
their data to the service as individual payloads. Each payload waits in the
inbox as ``pending`` until the next sync job for that user and provider
drains it through the same diff and apply steps as a REST pull. The ledger
allows one job per pair at a time, so a drain never races another drain.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lifesync.core.clock import Clock, LoopClock
from lifesync.models import SyncInboxItem
from lifesync.schemas.sync import (
    INBOX_ENTITY_TYPES,
    InboxItemCreate,
    InboxStatus,
    RemoteRecord,
)

logger = logging.getLogger(__name__)


class InboxPayloadError(ValueError):
    """An inbox payload that can never be imported."""


class SyncInbox:
    """Queue of provider payloads waiting to be imported."""

    def __init__(self, clock: Optional[Clock] = None, batch_limit: int = 150):
        self.clock = clock or LoopClock()
        self.batch_limit = batch_limit

    async def enqueue(
        self,
        db: AsyncSession,
        provider: str,
        data: InboxItemCreate,
    ) -> SyncInboxItem:
        item = SyncInboxItem(
            user_id=data.user_id,
            provider=provider,
            entity_type=data.entity_type,
            category=data.category,
            external_id=data.external_id,
            payload=dict(data.payload),
            checksum=data.checksum,
            source=data.source,
            deleted=data.deleted,
            status=InboxStatus.PENDING.value,
            created_at=self.clock.now(),
        )
        db.add(item)
        await db.flush()
        logger.debug(f"Queued {data.entity_type} payload from {provider} for {data.user_id}")
        return item

    async def pending(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
        limit: Optional[int] = None,
    ) -> list[SyncInboxItem]:
        """Oldest pending payloads first, at most ``batch_limit`` per job."""
        result = await db.execute(
            select(SyncInboxItem)
            .where(
                SyncInboxItem.user_id == user_id,
                SyncInboxItem.provider == provider,
                SyncInboxItem.status == InboxStatus.PENDING.value,
            )
            .order_by(SyncInboxItem.created_at, SyncInboxItem.id)
            .limit(limit or self.batch_limit)
        )
        return list(result.scalars().all())

    async def list_items(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
        status: Optional[InboxStatus] = None,
        limit: int = 50,
    ) -> list[SyncInboxItem]:
        stmt = select(SyncInboxItem).where(
            SyncInboxItem.user_id == user_id,
            SyncInboxItem.provider == provider,
        )
        if status is not None:
            stmt = stmt.where(SyncInboxItem.status == status.value)
        result = await db.execute(stmt.order_by(SyncInboxItem.created_at.desc()).limit(limit))
        return list(result.scalars().all())

    @staticmethod
    def to_remote_record(item: SyncInboxItem) -> RemoteRecord:
        """Translate a payload into the shape a REST pull produces.

        Raises:
            InboxPayloadError: the entity type is not importable
        """
        default_category = INBOX_ENTITY_TYPES.get(item.entity_type)
        if default_category is None:
            raise InboxPayloadError(f"unsupported entity type '{item.entity_type}'")

        payload = dict(item.payload or {})
        external_id = str(payload.pop("externalId", None) or item.external_id or item.id)
        checksum = payload.pop("checksum", None)
        return RemoteRecord(
            external_id=external_id,
            entity_type=item.entity_type,
            category=item.category or default_category,
            fields=payload,
            deleted=item.deleted,
            checksum=item.checksum or checksum,
        )

    def mark_processed(self, item: SyncInboxItem, job_id: str) -> None:
        item.status = InboxStatus.PROCESSED.value
        item.job_id = job_id
        item.error = None
        item.processed_at = self.clock.now()

    def mark_failed(self, item: SyncInboxItem, job_id: str, error: str) -> None:
        # Failed payloads are kept for inspection and never retried
        item.status = InboxStatus.FAILED.value
        item.job_id = job_id
        item.error = error
        item.processed_at = self.clock.now()
