"""
Local record and entity mapping access.
"""

import uuid
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lifesync.core.clock import Clock, LoopClock
from lifesync.core.fingerprint import content_hash
from lifesync.models import LOCAL_SOURCE, EntityMapping, LocalRecord
from lifesync.schemas.sync import RecordCreate, RecordUpdate, RemoteRecord


class RecordStore:
    """Keyed upserts of local records and their provider mappings."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or LoopClock()

    # ============== Mappings ==============

    async def get_mapping(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
        local_id: str,
    ) -> Optional[EntityMapping]:
        result = await db.execute(
            select(EntityMapping).where(
                EntityMapping.user_id == user_id,
                EntityMapping.provider == provider,
                EntityMapping.local_id == local_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_mapping_by_remote(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
        entity_type: str,
        remote_id: str,
    ) -> Optional[EntityMapping]:
        # Remote ids are not unique per provider; the oldest mapping wins
        result = await db.execute(
            select(EntityMapping)
            .where(
                EntityMapping.user_id == user_id,
                EntityMapping.provider == provider,
                EntityMapping.entity_type == entity_type,
                EntityMapping.remote_id == remote_id,
            )
            .order_by(EntityMapping.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert_mapping(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
        entity_type: str,
        local_id: str,
        remote_id: str,
        digest: str,
        checksum: Optional[str] = None,
    ) -> EntityMapping:
        mapping = await self.get_mapping(db, user_id, provider, local_id)
        if mapping is None:
            mapping = EntityMapping(
                user_id=user_id,
                provider=provider,
                entity_type=entity_type,
                local_id=local_id,
            )
            db.add(mapping)
        mapping.remote_id = remote_id
        mapping.last_synced_hash = digest
        mapping.remote_checksum = checksum
        mapping.deleted_at = None
        mapping.delete_error = None
        return mapping

    async def delete_mappings(
        self,
        db: AsyncSession,
        user_id: str,
        provider: Optional[str] = None,
        local_id: Optional[str] = None,
    ) -> None:
        stmt = delete(EntityMapping).where(EntityMapping.user_id == user_id)
        if provider is not None:
            stmt = stmt.where(EntityMapping.provider == provider)
        if local_id is not None:
            stmt = stmt.where(EntityMapping.local_id == local_id)
        await db.execute(stmt)

    async def list_mappings(
        self,
        db: AsyncSession,
        user_id: str,
        local_id: str,
    ) -> list[EntityMapping]:
        result = await db.execute(
            select(EntityMapping).where(
                EntityMapping.user_id == user_id,
                EntityMapping.local_id == local_id,
            )
        )
        return list(result.scalars().all())

    async def delete_candidates(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
        entity_types: list[str],
    ) -> list[EntityMapping]:
        """Tombstoned mappings whose remote delete has not been sent or refused."""
        result = await db.execute(
            select(EntityMapping)
            .where(
                EntityMapping.user_id == user_id,
                EntityMapping.provider == provider,
                EntityMapping.entity_type.in_(entity_types),
                EntityMapping.deleted_at.is_not(None),
                EntityMapping.delete_error.is_(None),
            )
            .order_by(EntityMapping.deleted_at)
        )
        return list(result.scalars().all())

    def mark_delete_rejected(self, mapping: EntityMapping, error: str) -> None:
        # The tombstone stays so the record is not re-imported
        mapping.delete_error = error

    # ============== Pulled records ==============

    async def upsert_pulled(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
        local_id: str,
        record: RemoteRecord,
        digest: str,
    ) -> LocalRecord:
        """Write a pulled record under ``local_id`` and refresh its mapping."""
        now = self.clock.now()
        local = await db.get(LocalRecord, (user_id, local_id))
        if local is None:
            local = LocalRecord(
                user_id=user_id,
                id=local_id,
                entity_type=record.entity_type,
                category=record.category,
                source=provider,
                created_at=now,
            )
            db.add(local)

        local.external_id = record.external_id
        local.title = record.fields.get("title")
        local.fields = dict(record.fields)
        local.content_hash = digest
        local.last_error = None
        local.rejected_hash = None
        local.updated_at = now

        await self.upsert_mapping(
            db,
            user_id,
            provider,
            record.entity_type,
            local_id,
            record.external_id,
            digest,
            checksum=record.checksum,
        )
        await db.flush()
        return local

    async def delete_pulled(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
        local_id: str,
    ) -> None:
        local = await db.get(LocalRecord, (user_id, local_id))
        if local is not None:
            await db.delete(local)
        await self.delete_mappings(db, user_id, provider, local_id)

    # ============== Push bookkeeping ==============

    async def push_candidates(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
        entity_types: list[str],
    ) -> list[LocalRecord]:
        """Records tagged with this provider, plus user-created records marked for push."""
        result = await db.execute(
            select(LocalRecord)
            .where(
                LocalRecord.user_id == user_id,
                LocalRecord.entity_type.in_(entity_types),
                or_(
                    LocalRecord.source == provider,
                    (LocalRecord.source == LOCAL_SOURCE) & LocalRecord.push_eligible.is_(True),
                ),
            )
            .order_by(LocalRecord.created_at)
        )
        return list(result.scalars().all())

    async def mark_pushed(
        self,
        db: AsyncSession,
        user_id: str,
        provider: str,
        local: LocalRecord,
        remote_id: str,
        digest: str,
    ) -> None:
        if local.external_id is None:
            local.external_id = remote_id
        local.last_error = None
        local.rejected_hash = None
        await self.upsert_mapping(
            db, user_id, provider, local.entity_type, local.id, remote_id, digest
        )

    def mark_rejected(
        self,
        local: LocalRecord,
        error: str,
        digest: str,
    ) -> None:
        # Not pushed again until the content changes
        local.last_error = error
        local.rejected_hash = digest

    # ============== Local writes ==============

    async def get_record(
        self,
        db: AsyncSession,
        user_id: str,
        record_id: str,
    ) -> Optional[LocalRecord]:
        return await db.get(LocalRecord, (user_id, record_id))

    async def list_records(
        self,
        db: AsyncSession,
        user_id: str,
        source: Optional[str] = None,
    ) -> list[LocalRecord]:
        stmt = select(LocalRecord).where(LocalRecord.user_id == user_id)
        if source is not None:
            stmt = stmt.where(LocalRecord.source == source)
        result = await db.execute(stmt.order_by(LocalRecord.created_at))
        return list(result.scalars().all())

    async def create_local_record(
        self,
        db: AsyncSession,
        data: RecordCreate,
    ) -> LocalRecord:
        now = self.clock.now()
        fields = dict(data.fields)
        if data.title is not None:
            fields["title"] = data.title
        local = LocalRecord(
            user_id=data.user_id,
            id=str(uuid.uuid4()),
            entity_type=data.entity_type,
            category=data.category,
            source=LOCAL_SOURCE,
            title=fields.get("title"),
            fields=fields,
            content_hash=content_hash(fields),
            push_eligible=data.push_eligible,
            created_at=now,
            updated_at=now,
        )
        db.add(local)
        await db.flush()
        return local

    async def update_local_record(
        self,
        db: AsyncSession,
        record_id: str,
        data: RecordUpdate,
    ) -> Optional[LocalRecord]:
        local = await self.get_record(db, data.user_id, record_id)
        if local is None:
            return None

        fields = dict(local.fields)
        if data.fields is not None:
            fields.update(data.fields)
        if data.title is not None:
            fields["title"] = data.title
        if data.push_eligible is not None:
            local.push_eligible = data.push_eligible

        local.fields = fields
        local.title = fields.get("title")
        local.content_hash = content_hash(fields)
        local.updated_at = self.clock.now()
        await db.flush()
        return local

    async def delete_local_record(
        self,
        db: AsyncSession,
        user_id: str,
        record_id: str,
    ) -> bool:
        """Delete a local record and tombstone every mapping pointing at it.

        A tombstoned mapping keeps the remote id so the next push can delete
        the remote copy and the next pull does not bring the record back.
        """
        local = await self.get_record(db, user_id, record_id)
        if local is None:
            return False
        await db.delete(local)
        await db.execute(
            update(EntityMapping)
            .where(
                EntityMapping.user_id == user_id,
                EntityMapping.local_id == record_id,
                EntityMapping.deleted_at.is_(None),
            )
            .values(deleted_at=self.clock.now())
        )
        await db.flush()
        return True
