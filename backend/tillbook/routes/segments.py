# Overview: Flask API routes that run or cancel a segmentation recompute.

from flask import Blueprint, jsonify

from ..services.errors import TillbookError
from ..services.scheduler import run_segmentation, segmentation_flight
from .errors import error_response

segments_bp = Blueprint("segments", __name__, url_prefix="/api/segments")


@segments_bp.post("/recompute")
def recompute_route():
    """
    Run a full recompute now.

    409 when a run is already active anywhere (API, CLI or Celery worker).
    A run that skipped customers answers 207 with the summary listing them.
    """
    try:
        summary = run_segmentation()
        summary.raise_for_partial()
    except TillbookError as e:
        return error_response(e)
    return jsonify({"summary": summary.to_dict()}), 200


@segments_bp.post("/cancel")
def cancel_route():
    """Stop the active run before its next customer. Labels already written stay."""
    return jsonify({"cancelled": segmentation_flight.cancel()}), 200
