"""
Local record endpoints. Every write notifies the change-trigger watcher.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from lifesync.api.deps import get_runtime
from lifesync.database import get_db
from lifesync.models import LOCAL_SOURCE, LocalRecord
from lifesync.schemas.integration import SyncMode
from lifesync.schemas.sync import (
    LocalChangeKind,
    LocalChangeRequest,
    RecordCreate,
    RecordUpdate,
    RecordView,
)
from lifesync.services.runtime import SyncRuntime

router = APIRouter()


async def push_targets(
    runtime: SyncRuntime,
    db: AsyncSession,
    user_id: str,
    provider: Optional[str] = None,
    record: Optional[LocalRecord] = None,
) -> list[str]:
    """Providers that would accept a push of ``record`` (or of any change)."""
    targets = []
    for config in await runtime.integrations.list_syncable(db, user_id):
        if provider is not None and config.provider != provider:
            continue
        if not runtime.registry.can_push(config.provider, SyncMode(config.sync_mode)):
            continue
        if record is not None:
            info = runtime.registry.describe(config.provider)
            if record.entity_type not in info.push_entity_types:
                continue
            if record.source == LOCAL_SOURCE and not record.push_eligible:
                continue
            if record.source not in (LOCAL_SOURCE, config.provider):
                continue
        targets.append(config.provider)
    return targets


async def _notify(
    runtime: SyncRuntime,
    db: AsyncSession,
    record: LocalRecord,
    change_kind: LocalChangeKind,
) -> list[str]:
    targets = await push_targets(runtime, db, record.user_id, record=record)
    for provider in targets:
        runtime.watcher.on_local_change(record.user_id, provider, change_kind)
    return targets


@router.get("/records", response_model=list[RecordView])
async def list_records(
    user_id: str = Query(...),
    source: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    runtime: SyncRuntime = Depends(get_runtime),
):
    return await runtime.records.list_records(db, user_id, source=source)


@router.post("/records", response_model=RecordView, status_code=201)
async def create_record(
    request: RecordCreate,
    db: AsyncSession = Depends(get_db),
    runtime: SyncRuntime = Depends(get_runtime),
):
    """Create a user-owned record; it is pushed only when ``push_eligible`` is set."""
    record = await runtime.records.create_local_record(db, request)
    await _notify(runtime, db, record, LocalChangeKind.CREATED)
    return record


@router.patch("/records/{record_id}", response_model=RecordView)
async def update_record(
    record_id: str,
    request: RecordUpdate,
    db: AsyncSession = Depends(get_db),
    runtime: SyncRuntime = Depends(get_runtime),
):
    record = await runtime.records.update_local_record(db, record_id, request)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    await _notify(runtime, db, record, LocalChangeKind.UPDATED)
    return record


@router.delete("/records/{record_id}")
async def delete_record(
    record_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    runtime: SyncRuntime = Depends(get_runtime),
):
    """
    Delete a record locally.

    Mappings of the record are kept as tombstones so pulls do not re-import
    it. Providers that accept deletes get one on the next push, which is
    scheduled here.
    """
    mappings = await runtime.records.list_mappings(db, user_id, record_id)
    deleted = await runtime.records.delete_local_record(db, user_id, record_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Record not found")

    mapped = {mapping.provider for mapping in mappings}
    targets = []
    for config in await runtime.integrations.list_syncable(db, user_id):
        if config.provider not in mapped:
            continue
        if runtime.registry.can_push_deletes(config.provider, SyncMode(config.sync_mode)):
            runtime.watcher.on_local_change(user_id, config.provider, LocalChangeKind.DELETED)
            targets.append(config.provider)
    return {"deleted": True, "id": record_id, "scheduled": targets}


@router.post("/changes")
async def notify_local_change(
    request: LocalChangeRequest,
    db: AsyncSession = Depends(get_db),
    runtime: SyncRuntime = Depends(get_runtime),
):
    """Report a local change made outside this API so it gets pushed."""
    targets = await push_targets(runtime, db, request.user_id, provider=request.provider)
    for provider in targets:
        runtime.watcher.on_local_change(request.user_id, provider, request.change_kind)
    return {"scheduled": targets}
