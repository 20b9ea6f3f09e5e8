"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "fulfilops",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.reconcile.*": {"queue": "payments"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # ── Payments ───────────────────────────────────────────────
        "sweep-pending-orders-15m": {
            "task": "workers.reconcile.sweep_pending_orders",
            "schedule": crontab(minute="*/15"),
            "options": {"queue": "payments"},
        },
        # ── Courier ────────────────────────────────────────────────
        "purge-courier-tokens-hourly": {
            "task": "workers.reconcile.purge_expired_courier_tokens",
            "schedule": crontab(minute=5),
            "options": {"queue": "payments"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"], related_name="reconcile")
