# Overview: RFM customer segmentation; full recompute over Paid order history.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import (
    Customer,
    Order,
    ORDER_PAID,
    SEGMENT_AT_RISK,
    SEGMENT_CHAMPION,
    SEGMENT_NEW,
    SEGMENT_PROMISING,
)
from ..time_utils import days_between, to_utc_z, utcnow
from .errors import PartialBatchFailure


# Thresholds (money in cents)
CHAMPION_MIN_MONETARY_CENTS = 500_000
CHAMPION_MIN_FREQUENCY = 10
AT_RISK_MIN_RECENCY_DAYS = 90
AT_RISK_MIN_MONETARY_CENTS = 100_000
NEW_MAX_RECENCY_DAYS = 30
PROMISING_MIN_MONETARY_CENTS = 200_000


@dataclass(frozen=True)
class RfmMetrics:
    customer_id: int
    recency_days: int
    frequency: int
    monetary_cents: int

    @classmethod
    def from_aggregates(
        cls,
        customer_id: int,
        last_order_at: datetime | None,
        frequency: int | None,
        monetary_cents: int | None,
        *,
        as_of: datetime,
    ) -> "RfmMetrics":
        if last_order_at is None or frequency is None or monetary_cents is None:
            raise ValueError(
                f"incomplete aggregates (last_order_at={last_order_at}, "
                f"frequency={frequency}, monetary_cents={monetary_cents})"
            )
        return cls(
            customer_id=customer_id,
            recency_days=days_between(last_order_at, as_of),
            frequency=int(frequency),
            monetary_cents=int(monetary_cents),
        )


@dataclass(frozen=True)
class SegmentRule:
    name: str
    predicate: Callable[[RfmMetrics], bool]
    segment: str


# Evaluated top to bottom, first match wins. Order is the tie-break policy.
# NOTE: high_value and fallback both assign Promising, so every customer that
# misses the first three rules ends up Promising regardless of spend.
SEGMENT_RULES: tuple[SegmentRule, ...] = (
    SegmentRule(
        "champion",
        lambda m: m.monetary_cents > CHAMPION_MIN_MONETARY_CENTS and m.frequency > CHAMPION_MIN_FREQUENCY,
        SEGMENT_CHAMPION,
    ),
    SegmentRule(
        "at_risk",
        lambda m: m.recency_days > AT_RISK_MIN_RECENCY_DAYS and m.monetary_cents > AT_RISK_MIN_MONETARY_CENTS,
        SEGMENT_AT_RISK,
    ),
    SegmentRule(
        "new",
        lambda m: m.recency_days < NEW_MAX_RECENCY_DAYS and m.frequency == 1,
        SEGMENT_NEW,
    ),
    SegmentRule(
        "high_value",
        lambda m: m.monetary_cents > PROMISING_MIN_MONETARY_CENTS,
        SEGMENT_PROMISING,
    ),
    SegmentRule("fallback", lambda m: True, SEGMENT_PROMISING),
)


def classify(metrics: RfmMetrics, rules: tuple[SegmentRule, ...] = SEGMENT_RULES) -> str:
    for rule in rules:
        if rule.predicate(metrics):
            return rule.segment
    raise ValueError(f"No segment rule matched customer {metrics.customer_id}")


@dataclass(frozen=True)
class SkippedCustomer:
    customer_id: int
    reason: str


@dataclass
class SegmentationSummary:
    started_at: datetime
    finished_at: datetime | None = None
    succeeded: int = 0
    changed: int = 0
    skipped: list[SkippedCustomer] = field(default_factory=list)
    cancelled: bool = False

    @property
    def partial(self) -> bool:
        return bool(self.skipped)

    def raise_for_partial(self) -> None:
        if self.partial:
            raise PartialBatchFailure(self)

    def to_dict(self) -> dict:
        return {
            "started_at": to_utc_z(self.started_at),
            "finished_at": to_utc_z(self.finished_at),
            "succeeded": self.succeeded,
            "changed": self.changed,
            "skipped": [{"customer_id": s.customer_id, "reason": s.reason} for s in self.skipped],
            "cancelled": self.cancelled,
        }


def _paid_order_aggregates():
    return (
        db.session.query(
            Order.customer_id.label("customer_id"),
            func.max(Order.created_at).label("last_order_at"),
            func.count(func.distinct(Order.id)).label("frequency"),
            func.sum(Order.total_cents).label("monetary_cents"),
        )
        .filter(Order.status == ORDER_PAID)
        .group_by(Order.customer_id)
        .order_by(Order.customer_id.asc())
        .all()
    )


def compute_metrics(*, as_of: datetime | None = None) -> list[RfmMetrics]:
    """RFM metrics for every customer with at least one Paid order. Read-only."""
    as_of = as_of or utcnow()
    return [
        RfmMetrics.from_aggregates(
            row.customer_id,
            row.last_order_at,
            row.frequency,
            row.monetary_cents,
            as_of=as_of,
        )
        for row in _paid_order_aggregates()
    ]


def _apply_segment(customer_id: int, segment: str, as_of: datetime) -> bool:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise LookupError(f"Customer {customer_id} not found")
    changed = customer.segment != segment
    if changed:
        customer.segment = segment
        customer.segment_updated_at = as_of
    db.session.commit()
    return changed


def recompute_segments(
    *,
    as_of: datetime | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> SegmentationSummary:
    """
    Reclassify every customer that has at least one Paid order.

    Each customer is committed on its own. A failure for one customer rolls
    back that customer only and is recorded in the summary; the rest of the
    batch continues. should_stop is checked before each customer; labels
    already written stay in place when it fires.
    """
    as_of = as_of or utcnow()
    summary = SegmentationSummary(started_at=utcnow())
    logger = current_app.logger

    rows = _paid_order_aggregates()
    for row in rows:
        if should_stop is not None and should_stop():
            summary.cancelled = True
            logger.info("Segmentation cancelled after %s customer(s)", summary.succeeded + len(summary.skipped))
            break

        try:
            metrics = RfmMetrics.from_aggregates(
                row.customer_id,
                row.last_order_at,
                row.frequency,
                row.monetary_cents,
                as_of=as_of,
            )
            segment = classify(metrics)
            if _apply_segment(row.customer_id, segment, as_of):
                summary.changed += 1
            summary.succeeded += 1
        except Exception as exc:
            db.session.rollback()
            logger.warning("Skipping customer %s during segmentation: %s", row.customer_id, exc)
            summary.skipped.append(SkippedCustomer(customer_id=row.customer_id, reason=str(exc)))

    summary.finished_at = utcnow()
    logger.info(
        "Segmentation finished: %s succeeded, %s changed, %s skipped%s",
        summary.succeeded,
        summary.changed,
        len(summary.skipped),
        " (cancelled)" if summary.cancelled else "",
    )
    return summary
