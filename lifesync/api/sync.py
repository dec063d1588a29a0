"""
Sync API endpoints.
"""

from fastapi import APIRouter, Depends, Query

from lifesync.api.deps import get_runtime, http_error
from lifesync.core.errors import SyncError
from lifesync.schemas.sync import (
    SchedulerResponse,
    SyncJobView,
    SyncLogView,
    SyncRequest,
    SyncRunResponse,
    SyncTrigger,
)
from lifesync.services.runtime import SyncRuntime

router = APIRouter(prefix="/sync")


@router.post("/{provider}", response_model=SyncRunResponse)
async def run_sync(
    provider: str,
    request: SyncRequest,
    runtime: SyncRuntime = Depends(get_runtime),
):
    """
    Run a reconciliation now and return its report.

    Returns 409 when a sync for this provider is already running.
    """
    try:
        report = await runtime.engine.reconcile(
            request.user_id,
            provider,
            trigger=SyncTrigger.MANUAL,
            direction=request.direction,
        )
    except SyncError as e:
        raise http_error(e)

    if report is None:
        return SyncRunResponse(
            ran=False,
            detail=f"'{request.direction.value}' has nothing to do in this provider's sync mode",
        )
    return SyncRunResponse(ran=True, report=report)


@router.get("/{provider}/jobs", response_model=list[SyncJobView])
async def list_sync_jobs(
    provider: str,
    user_id: str = Query(...),
    limit: int = Query(15, ge=1, le=100),
    runtime: SyncRuntime = Depends(get_runtime),
):
    """Recent sync jobs, newest first."""
    return await runtime.ledger.list_jobs(user_id, provider, limit=limit)


@router.get("/{provider}/logs", response_model=list[SyncLogView])
async def list_sync_logs(
    provider: str,
    user_id: str = Query(...),
    limit: int = Query(30, ge=1, le=200),
    runtime: SyncRuntime = Depends(get_runtime),
):
    return await runtime.ledger.list_logs(user_id, provider, limit=limit)


@router.post("/users/{user_id}/start", response_model=SchedulerResponse)
async def start_scheduled_sync(
    user_id: str,
    runtime: SyncRuntime = Depends(get_runtime),
):
    """Start the periodic sync loop for a user; the first pass runs immediately."""
    changed = runtime.scheduler.start(user_id)
    return SchedulerResponse(user_id=user_id, running=True, changed=changed)


@router.post("/users/{user_id}/stop", response_model=SchedulerResponse)
async def stop_scheduled_sync(
    user_id: str,
    runtime: SyncRuntime = Depends(get_runtime),
):
    """Stop the periodic loop and cancel the user's pending debounced pushes."""
    changed = runtime.scheduler.stop(user_id)
    runtime.watcher.teardown(user_id)
    return SchedulerResponse(user_id=user_id, running=False, changed=changed)
