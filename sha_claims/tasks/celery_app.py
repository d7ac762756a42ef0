"""
Celery Application
Background task processing: workflow automation and the reconciliation sweep
Source: https://docs.celeryq.dev/en/stable/getting-started/first-steps-with-celery.html
Verified: 2025-11-02
"""

from celery import Celery

from sha_claims.api.config import get_settings

settings = get_settings()

celery_app = Celery(
    "sha_claims",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
)

# Periodic reconciliation with the insurer
# Source: https://docs.celeryq.dev/en/stable/userguide/periodic-tasks.html
celery_app.conf.beat_schedule = {
    "sha-reconciliation": {
        "task": "sha.reconcile",
        "schedule": float(settings.RECONCILIATION_INTERVAL_SECONDS),
    },
}

celery_app.autodiscover_tasks(["sha_claims.tasks"], related_name="sha_tasks")
