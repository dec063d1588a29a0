"""Helpers shared by the database-backed tests."""

import asyncio

from sqlalchemy import func, select

from lifesync.models import LocalRecord
from lifesync.schemas.integration import Credentials, SyncMode
from lifesync.schemas.sync import InboxItemCreate, RecordCreate

USER = "user-1"

EDUPLANR_CREDENTIALS = Credentials(email="ada@example.com", sync_token="sync-123")
GOOGLE_CREDENTIALS = Credentials(access_token="ya29.token")


async def connect(runtime, provider="eduplanr", mode=None, user_id=USER):
    credentials = EDUPLANR_CREDENTIALS if provider == "eduplanr" else GOOGLE_CREDENTIALS
    async with runtime.session_factory() as db:
        config = await runtime.integrations.connect(
            db, user_id, provider, credentials, sync_mode=SyncMode(mode) if mode else None
        )
        await db.commit()
    return config


async def count(session_factory, model, **filters) -> int:
    stmt = select(func.count()).select_from(model)
    for name, value in filters.items():
        stmt = stmt.where(getattr(model, name) == value)
    async with session_factory() as db:
        return (await db.execute(stmt)).scalar_one()


async def load_records(session_factory, user_id=USER) -> list[LocalRecord]:
    async with session_factory() as db:
        result = await db.execute(
            select(LocalRecord).where(LocalRecord.user_id == user_id).order_by(LocalRecord.id)
        )
        return list(result.scalars().all())


async def wait_until_fetching(provider, attempts=200):
    """Yield to the loop until a sync has reached the provider's fetch."""
    for _ in range(attempts):
        if provider.fetch_calls:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("provider was never called")


async def create_local(runtime, title, entity_type="task", push_eligible=True, user_id=USER, **fields):
    async with runtime.session_factory() as db:
        record = await runtime.records.create_local_record(
            db,
            RecordCreate(
                user_id=user_id,
                entity_type=entity_type,
                title=title,
                fields=fields,
                push_eligible=push_eligible,
            ),
        )
        await db.commit()
    return record


async def enqueue(runtime, provider, entity_type, payload, user_id=USER, **kwargs):
    async with runtime.session_factory() as db:
        item = await runtime.inbox.enqueue(
            db,
            provider,
            InboxItemCreate(user_id=user_id, entity_type=entity_type, payload=payload, **kwargs),
        )
        await db.commit()
    return item


async def delete_local(runtime, record_id, user_id=USER):
    async with runtime.session_factory() as db:
        deleted = await runtime.records.delete_local_record(db, user_id, record_id)
        await db.commit()
    return deleted
