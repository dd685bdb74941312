from flask import Blueprint, jsonify, request

from ..services import reporting_service
from ..services.errors import TillbookError
from .errors import error_response


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/profitability")
def profitability_report():
    granularity = request.args.get("granularity", "month")
    start = request.args.get("start")
    end = request.args.get("end")

    try:
        rollup = reporting_service.profitability_rollup(granularity, start=start, end=end)
        rows = [row.to_dict() for row in rollup]
    except TillbookError as exc:
        return error_response(exc)

    return jsonify({"granularity": granularity, "rows": rows}), 200
