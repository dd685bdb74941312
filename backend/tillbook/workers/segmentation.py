"""Celery task for the periodic RFM segmentation recompute."""

from __future__ import annotations

from flask import Flask, current_app, has_app_context

from ..services.scheduler import AlreadyRunning, run_segmentation
from ..time_utils import parse_iso_datetime
from .celery_app import celery_app

_worker_app: Flask | None = None


def _get_worker_app() -> Flask:
    """Flask app for task contexts, built once per worker process."""
    global _worker_app
    if _worker_app is None:
        from .. import create_app
        _worker_app = create_app()
    return _worker_app


def _run(as_of: str | None) -> dict:
    try:
        summary = run_segmentation(as_of=parse_iso_datetime(as_of))
    except AlreadyRunning:
        current_app.logger.info("Skipping scheduled segmentation; previous run still active")
        return {"status": "skipped"}

    if summary.partial:
        current_app.logger.warning("Scheduled segmentation skipped %s customer(s)", len(summary.skipped))
    status = "cancelled" if summary.cancelled else "success"
    return {"status": status, **summary.to_dict()}


@celery_app.task(
    name="tillbook.workers.segmentation.recompute_segments",
    acks_late=True,
    ignore_result=True,
)
def recompute_segments_task(as_of: str | None = None) -> dict:
    """
    Reclassify every customer with Paid orders.

    Runs inside the caller's app context when there is one (eager calls,
    tests), otherwise inside the worker's own app.
    """
    if has_app_context():
        return _run(as_of)
    with _get_worker_app().app_context():
        return _run(as_of)
