# backend/tillbook/config.py
from __future__ import annotations
import os


class Config:
    # SQLite DB stored next to the process by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tillbook.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Order line commits
    ROW_LOCK_TIMEOUT_SECONDS = float(os.environ.get("ROW_LOCK_TIMEOUT_SECONDS", "5"))
    COMMIT_RETRY_ATTEMPTS = int(os.environ.get("COMMIT_RETRY_ATTEMPTS", "3"))
    COMMIT_RETRY_BACKOFF_SECONDS = float(os.environ.get("COMMIT_RETRY_BACKOFF_SECONDS", "0.1"))

    # Customer segmentation (daily by default, via Celery beat)
    SEGMENTATION_INTERVAL_SECONDS = float(os.environ.get("SEGMENTATION_INTERVAL_SECONDS", "86400"))
    SEGMENTATION_LEASE_SECONDS = float(os.environ.get("SEGMENTATION_LEASE_SECONDS", "3600"))

    # Celery (results are not kept unless a backend is set)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND") or None
