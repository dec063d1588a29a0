"""
Webhook API endpoints for remote change notifications.
"""

import hashlib
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from lifesync.api.deps import get_runtime
from lifesync.core.errors import AlreadyRunning, SyncError, UnknownProvider
from lifesync.database import get_db
from lifesync.schemas.sync import SyncDirection, SyncTrigger, WebhookPayload, WebhookResponse
from lifesync.services.runtime import SyncRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")

SIGNATURE_PREFIX = "sha256="


def sign_webhook_body(body: bytes, secret: str) -> str:
    """Value of the ``X-Webhook-Signature`` header for a raw request body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


async def verify_webhook_signature(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
) -> bool:
    """Check the HMAC-SHA256 signature of the raw body against the shared secret.

    Without a configured secret every webhook is refused.
    """
    secret = get_runtime(request).settings.webhook_secret
    if not secret or not x_webhook_signature:
        return False
    expected = sign_webhook_body(await request.body(), secret)
    return hmac.compare_digest(x_webhook_signature.encode("utf-8"), expected.encode("utf-8"))


async def _reconcile_from_webhook(runtime: SyncRuntime, user_id: str, provider: str) -> None:
    try:
        await runtime.engine.reconcile(
            user_id,
            provider,
            trigger=SyncTrigger.WEBHOOK,
            direction=SyncDirection.PULL,
        )
    except AlreadyRunning as e:
        logger.info(f"Webhook sync coalesced: {e.message}")
    except SyncError as e:
        logger.warning(f"Webhook sync for {provider}/{user_id} not run: {e.describe()}")


@router.post("/{provider}", response_model=WebhookResponse)
async def provider_webhook(
    provider: str,
    payload: WebhookPayload,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    runtime: SyncRuntime = Depends(get_runtime),
    valid: bool = Depends(verify_webhook_signature),
):
    """
    Handle a provider's "data changed" notification.

    The pull runs in the background; the provider gets an immediate answer.
    """
    if not valid:
        logger.warning(f"Rejected webhook for {provider}: bad or missing signature")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        runtime.registry.describe(provider)
    except UnknownProvider:
        return WebhookResponse(scheduled=False, error=f"unknown provider '{provider}'")

    config = await runtime.integrations.get_config(db, payload.user_id, provider)
    if config is None or not config.connected or not config.sync_enabled:
        return WebhookResponse(scheduled=False, error=f"{provider} is not connected")

    background_tasks.add_task(_reconcile_from_webhook, runtime, payload.user_id, provider)
    logger.info(f"Webhook {payload.event_type} from {provider} for {payload.user_id}")
    return WebhookResponse(scheduled=True)
