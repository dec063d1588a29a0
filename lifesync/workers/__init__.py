"""
Celery workers for background sync.
"""

from lifesync.workers.celery_app import celery_app
from lifesync.workers.sync_tasks import (
    expire_stale_jobs,
    periodic_sync,
    reconcile_provider_task,
)

__all__ = [
    "celery_app",
    "expire_stale_jobs",
    "periodic_sync",
    "reconcile_provider_task",
]
