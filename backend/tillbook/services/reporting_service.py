# Overview: Service-layer operations for reporting; read-only profitability rollup.

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterator

from sqlalchemy import case, desc, extract, func

from ..extensions import db
from ..models import Order, OrderLine, Product, ORDER_PAID
from ..time_utils import parse_iso_datetime
from .errors import InvalidArgument


GRANULARITIES = ("month", "quarter", "year")
UNCATEGORIZED = "Uncategorized"


def format_margin_percent(net_margin_cents: int, gross_revenue_cents: int) -> str:
    """netMargin / grossRevenue * 100, rounded half-up to one decimal, e.g. '25.0%'."""
    if gross_revenue_cents == 0:
        raise InvalidArgument("margin percent is undefined for zero revenue")
    pct = (Decimal(net_margin_cents) * 100 / Decimal(gross_revenue_cents)).quantize(
        Decimal("0.1"), rounding=ROUND_HALF_UP
    )
    return f"{pct}%"


@dataclass(frozen=True)
class ProfitabilityRow:
    year: int
    month: int | None
    quarter: int | None
    category: str
    gross_revenue_cents: int
    net_margin_cents: int
    margin_percent: str

    @property
    def month_name(self) -> str | None:
        return calendar.month_name[self.month] if self.month else None

    def to_dict(self) -> dict:
        return {
            "year": self.year,
            "month": self.month,
            "month_name": self.month_name,
            "quarter": self.quarter,
            "category": self.category,
            "gross_revenue_cents": self.gross_revenue_cents,
            "net_margin_cents": self.net_margin_cents,
            "margin_percent": self.margin_percent,
        }


def _parse_bound(value: str | datetime | None, name: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise InvalidArgument(f"{name} must be an ISO-8601 datetime", details={name: value})


class ProfitabilityRollup:
    """
    Gross revenue and net margin of Paid order lines per (year, period, category).

    Iterating runs the query again every time, so the sequence is lazy and
    restartable and always reflects current history. Groups with zero gross
    revenue are left out because their margin percent is undefined.
    """

    def __init__(
        self,
        *,
        granularity: str = "month",
        start: str | datetime | None = None,
        end: str | datetime | None = None,
    ):
        if granularity not in GRANULARITIES:
            raise InvalidArgument(
                f"granularity must be one of {', '.join(GRANULARITIES)}",
                details={"granularity": granularity},
            )
        self.granularity = granularity
        self.start = _parse_bound(start, "start")
        self.end = _parse_bound(end, "end")

    def _query(self):
        year_expr = extract("year", Order.created_at)
        month_expr = extract("month", Order.created_at)
        category_expr = func.coalesce(Product.category, UNCATEGORIZED)
        gross = func.sum(OrderLine.subtotal_cents)

        columns = [year_expr.label("year")]
        group_keys = ["year"]
        if self.granularity == "month":
            columns.append(month_expr.label("period"))
            group_keys.append("period")
        elif self.granularity == "quarter":
            quarter_expr = case(
                (month_expr <= 3, 1),
                (month_expr <= 6, 2),
                (month_expr <= 9, 3),
                else_=4,
            )
            columns.append(quarter_expr.label("period"))
            group_keys.append("period")

        columns.extend([
            category_expr.label("category"),
            gross.label("gross_revenue_cents"),
            func.sum(OrderLine.margin_cents).label("net_margin_cents"),
        ])

        query = (
            db.session.query(*columns)
            .select_from(OrderLine)
            .join(Order, OrderLine.order_id == Order.id)
            .join(Product, OrderLine.product_id == Product.id)
            .filter(Order.status == ORDER_PAID)
        )
        if self.start:
            query = query.filter(Order.created_at >= self.start)
        if self.end:
            query = query.filter(Order.created_at <= self.end)

        return (
            query.group_by(*group_keys, "category")
            .having(gross != 0)
            .order_by(*[desc(key) for key in group_keys], "category")
        )

    def _to_row(self, row) -> ProfitabilityRow:
        gross_cents = int(row.gross_revenue_cents)
        margin_cents = int(row.net_margin_cents or 0)
        period = int(row.period) if self.granularity != "year" else None
        return ProfitabilityRow(
            year=int(row.year),
            month=period if self.granularity == "month" else None,
            quarter=period if self.granularity == "quarter" else None,
            category=row.category,
            gross_revenue_cents=gross_cents,
            net_margin_cents=margin_cents,
            margin_percent=format_margin_percent(margin_cents, gross_cents),
        )

    def __iter__(self) -> Iterator[ProfitabilityRow]:
        for row in self._query().yield_per(500):
            yield self._to_row(row)


def profitability_rollup(
    granularity: str = "month",
    *,
    start: str | datetime | None = None,
    end: str | datetime | None = None,
) -> ProfitabilityRollup:
    return ProfitabilityRollup(granularity=granularity, start=start, end=end)
