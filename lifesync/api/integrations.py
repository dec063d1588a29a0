"""
Integration API endpoints: provider catalog, connection management, status.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from lifesync.api.deps import get_runtime, http_error
from lifesync.core.errors import IntegrationNotConnected, SyncError
from lifesync.database import get_db
from lifesync.schemas.integration import (
    ConnectRequest,
    DisconnectRequest,
    IntegrationStatusView,
    ProviderDescription,
)
from lifesync.services.runtime import SyncRuntime

router = APIRouter(prefix="/integrations")


@router.get("/providers", response_model=list[ProviderDescription])
async def list_providers(runtime: SyncRuntime = Depends(get_runtime)):
    """List every provider in the catalog with its sync capabilities."""
    return runtime.registry.list_providers()


@router.get("/{provider}", response_model=IntegrationStatusView)
async def get_integration_status(
    provider: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    runtime: SyncRuntime = Depends(get_runtime),
):
    """Status read model: status, last sync, last error and last job counts."""
    try:
        return await runtime.integrations.get_status(db, user_id, provider)
    except IntegrationNotConnected as e:
        raise HTTPException(status_code=404, detail=e.describe())
    except SyncError as e:
        raise http_error(e)


@router.post("/{provider}/connect", response_model=IntegrationStatusView)
async def connect_integration(
    provider: str,
    request: ConnectRequest,
    db: AsyncSession = Depends(get_db),
    runtime: SyncRuntime = Depends(get_runtime),
):
    """
    Connect a provider for a user.

    Reconnecting replaces the stored credentials and re-enables sync.
    """
    try:
        await runtime.integrations.connect(
            db,
            request.user_id,
            provider,
            request.credentials,
            sync_mode=request.sync_mode,
            platform=request.platform,
            account_label=request.account_label,
        )
        return await runtime.integrations.get_status(db, request.user_id, provider)
    except SyncError as e:
        raise http_error(e)


@router.post("/{provider}/disconnect")
async def disconnect_integration(
    provider: str,
    request: DisconnectRequest,
    db: AsyncSession = Depends(get_db),
    runtime: SyncRuntime = Depends(get_runtime),
):
    """Disconnect a provider; pending pushes for it are cancelled."""
    try:
        runtime.registry.describe(provider)
    except SyncError as e:
        raise http_error(e)

    disconnected = await runtime.integrations.disconnect(db, request.user_id, provider)
    if not disconnected:
        raise HTTPException(status_code=404, detail=f"{provider} is not connected")

    runtime.watcher.cancel(request.user_id, provider)

    return {"status": "disconnected", "provider": provider}
