"""
Sync inbox endpoints: providers without a REST client deliver payloads here.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from lifesync.api.deps import get_runtime, http_error
from lifesync.core.errors import SyncError
from lifesync.database import get_db
from lifesync.schemas.sync import InboxItemCreate, InboxItemView, InboxStatus
from lifesync.services.runtime import SyncRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inbox")


@router.post("/{provider}", response_model=InboxItemView, status_code=201)
async def enqueue_payload(
    provider: str,
    request: InboxItemCreate,
    db: AsyncSession = Depends(get_db),
    runtime: SyncRuntime = Depends(get_runtime),
):
    """
    Queue a provider payload for import.

    The payload is imported by the next pull of that provider for the user,
    scheduled or manual. Nothing is written to local records here.
    """
    try:
        runtime.registry.describe(provider)
    except SyncError as e:
        raise http_error(e)

    item = await runtime.inbox.enqueue(db, provider, request)
    logger.info(f"Inbox: queued {request.entity_type} from {provider} for {request.user_id}")
    return item


@router.get("/{provider}", response_model=list[InboxItemView])
async def list_inbox(
    provider: str,
    user_id: str = Query(...),
    status: Optional[InboxStatus] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    runtime: SyncRuntime = Depends(get_runtime),
):
    """Recent inbox payloads for a provider, newest first."""
    return await runtime.inbox.list_items(db, user_id, provider, status=status, limit=limit)
