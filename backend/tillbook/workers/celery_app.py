"""
Celery application and beat schedule for periodic jobs.

Run from the backend directory (needs the broker from CELERY_BROKER_URL):
    celery -A tillbook.workers.celery_app worker -Q segmentation
    celery -A tillbook.workers.celery_app beat
"""

from datetime import timedelta

from celery import Celery

from ..config import Config

celery_app = Celery(
    "tillbook",
    broker=Config.CELERY_BROKER_URL,
    backend=Config.CELERY_RESULT_BACKEND,
    include=["tillbook.workers.segmentation"],
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
        "tillbook.workers.segmentation.*": {"queue": "segmentation"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        "recompute-segments": {
            "task": "tillbook.workers.segmentation.recompute_segments",
            "schedule": timedelta(seconds=Config.SEGMENTATION_INTERVAL_SECONDS),
            # A run still queued when the next one is due is dropped, not stacked
            "options": {"queue": "segmentation", "expires": Config.SEGMENTATION_INTERVAL_SECONDS},
        },
    },
)
