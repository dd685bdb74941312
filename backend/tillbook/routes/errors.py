# Overview: Translate service errors into JSON responses.

from flask import jsonify

from ..services.errors import (
    Conflict,
    Contention,
    InsufficientStock,
    InvalidArgument,
    NotFound,
    PartialBatchFailure,
    TillbookError,
)

STATUS_BY_ERROR = (
    (InvalidArgument, 400),
    (NotFound, 404),
    (InsufficientStock, 409),
    (Conflict, 409),
    (Contention, 503),
    (PartialBatchFailure, 207),
)


def error_response(exc: TillbookError):
    status = 400
    for error_cls, code in STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            status = code
            break
    return jsonify(exc.to_dict()), status
