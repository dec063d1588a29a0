"""
Celery application configuration.
"""

from celery import Celery

from lifesync.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "lifesync",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["lifesync.workers.sync_tasks"],
)

# Configure Celery
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_track_started=True,
    task_time_limit=int(settings.stale_job_seconds),
    task_soft_time_limit=int(settings.sync_timeout_seconds) + 30,

    # Result backend
    result_expires=86400,  # Results expire after 24 hours

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Task routes
    task_routes={
        "lifesync.workers.sync_tasks.reconcile_provider_task": {"queue": "sync"},
        "lifesync.workers.sync_tasks.periodic_sync": {"queue": "sync"},
        "lifesync.workers.sync_tasks.expire_stale_jobs": {"queue": "maintenance"},
    },

    # Beat schedule for periodic tasks
    beat_schedule={
        "scheduled-sync": {
            "task": "lifesync.workers.sync_tasks.periodic_sync",
            "schedule": settings.scheduled_sync_interval_seconds,
        },
        "expire-stale-sync-jobs": {
            "task": "lifesync.workers.sync_tasks.expire_stale_jobs",
            "schedule": settings.stale_job_seconds,
        },
    },
)
