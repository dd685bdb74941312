# Overview: Error kinds raised by the service layer; routes map them to HTTP responses.

from __future__ import annotations


class TillbookError(Exception):
    """Base class for service errors. details is surfaced to API callers."""
    kind = "Error"
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind,
            "retryable": self.retryable,
            "details": self.details,
        }


class InvalidArgument(TillbookError):
    """Malformed input, e.g. a non-positive quantity."""
    kind = "InvalidArgument"


class NotFound(TillbookError):
    """Referenced customer, product or order does not exist."""
    kind = "NotFound"


class Conflict(TillbookError):
    """Request clashes with current state (order not Pending, product in use)."""
    kind = "Conflict"


class InsufficientStock(TillbookError):
    """Business rule violation: not enough stock to sell the requested quantity."""
    kind = "InsufficientStock"

    def __init__(self, product_id: int, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"available {available}, requested {requested}",
            details={
                "product_id": product_id,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class Contention(TillbookError):
    """Concurrency conflict. Safe to retry with the same arguments."""
    kind = "Contention"
    retryable = True


class PartialBatchFailure(TillbookError):
    """One or more customers were skipped during a segmentation run."""
    kind = "PartialBatchFailure"

    def __init__(self, summary):
        super().__init__(
            f"Segmentation skipped {len(summary.skipped)} customer(s)",
            details=summary.to_dict(),
        )
        self.summary = summary
