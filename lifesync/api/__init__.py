"""
API routes for the sync service.
"""

from fastapi import APIRouter

from lifesync.api.integrations import router as integrations_router
from lifesync.api.sync import router as sync_router
from lifesync.api.records import router as records_router
from lifesync.api.inbox import router as inbox_router
from lifesync.api.webhooks import router as webhooks_router

# Main API router
api_router = APIRouter(prefix="/api/v1")

# Include sub-routers
api_router.include_router(integrations_router, tags=["Integrations"])
api_router.include_router(sync_router, tags=["Sync"])
api_router.include_router(records_router, tags=["Records"])
api_router.include_router(inbox_router, tags=["Inbox"])
api_router.include_router(webhooks_router, tags=["Webhooks"])

__all__ = ["api_router"]
