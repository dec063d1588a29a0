"""
Shared API dependencies.
"""

from fastapi import HTTPException, Request

from lifesync.core.errors import (
    AlreadyRunning,
    IntegrationNotConnected,
    SyncError,
    UnknownProvider,
    UnsupportedSyncMode,
)
from lifesync.services.runtime import SyncRuntime

_STATUS_CODES = {
    AlreadyRunning: 409,
    IntegrationNotConnected: 409,
    UnknownProvider: 404,
    UnsupportedSyncMode: 400,
}


def get_runtime(request: Request) -> SyncRuntime:
    """The process-wide sync runtime built at startup."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Sync runtime not started")
    return runtime


def http_error(error: SyncError) -> HTTPException:
    """Map a sync error to the response the client should see."""
    for error_type, status_code in _STATUS_CODES.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.describe())
    return HTTPException(status_code=502, detail=error.describe())
