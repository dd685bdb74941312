from datetime import datetime

import pytest

from tillbook.services import catalog_service, order_service
from tillbook.services.errors import InvalidArgument
from tillbook.services.reporting_service import format_margin_percent, profitability_rollup


@pytest.fixture
def sell(make_customer):
    customer = make_customer()

    def _sell(product, quantity, *, when, pay=True):
        order = order_service.create_order(customer.id, created_at=when)
        order_service.commit_line(order.id, product.id, quantity)
        if pay:
            order_service.mark_paid(order.id)
        return order
    return _sell


def test_margin_percent_for_a_month(make_product, sell):
    product = make_product(category="Books", price_cents=50_000, cost_cents=37_500, stock=10)
    sell(product, 2, when=datetime(2026, 3, 15, 10, 0))

    [row] = list(profitability_rollup())

    assert (row.year, row.month, row.month_name, row.category) == (2026, 3, "March", "Books")
    assert row.gross_revenue_cents == 100_000
    assert row.net_margin_cents == 25_000
    assert row.margin_percent == "25.0%"


def test_zero_revenue_groups_are_omitted(make_product, sell):
    freebie = make_product(category="Samples", price_cents=0, cost_cents=50, stock=10)
    paid = make_product(category="Books", price_cents=1_000, cost_cents=500, stock=10)
    sell(freebie, 3, when=datetime(2026, 3, 1))
    sell(paid, 1, when=datetime(2026, 3, 2))

    rows = list(profitability_rollup())

    assert [row.category for row in rows] == ["Books"]


def test_only_paid_orders_are_counted(make_product, sell):
    product = make_product(category="Books", price_cents=1_000, cost_cents=400, stock=20)
    sell(product, 1, when=datetime(2026, 3, 1))
    sell(product, 5, when=datetime(2026, 3, 2), pay=False)
    cancelled = sell(product, 7, when=datetime(2026, 3, 3))
    order_service.cancel_order(cancelled.id)

    [row] = list(profitability_rollup())

    assert row.gross_revenue_cents == 1_000
    assert row.net_margin_cents == 600


def test_groups_by_category_and_orders_newest_first(make_product, sell):
    books = make_product(category="Books", price_cents=1_000, cost_cents=800, stock=50)
    games = make_product(category="Games", price_cents=2_000, cost_cents=1_000, stock=50)
    sell(books, 1, when=datetime(2025, 12, 20))
    sell(games, 1, when=datetime(2026, 1, 5))
    sell(books, 2, when=datetime(2026, 1, 6))
    sell(books, 1, when=datetime(2026, 3, 9))

    rows = list(profitability_rollup("month"))

    assert [(r.year, r.month, r.category) for r in rows] == [
        (2026, 3, "Books"),
        (2026, 1, "Books"),
        (2026, 1, "Games"),
        (2025, 12, "Books"),
    ]
    jan_books = rows[1]
    assert jan_books.gross_revenue_cents == 2_000
    assert jan_books.margin_percent == "20.0%"


def test_quarter_and_year_granularity(make_product, sell):
    product = make_product(category="Books", price_cents=1_000, cost_cents=500, stock=50)
    sell(product, 1, when=datetime(2026, 1, 10))
    sell(product, 1, when=datetime(2026, 3, 10))
    sell(product, 1, when=datetime(2026, 5, 10))

    quarters = list(profitability_rollup("quarter"))
    years = list(profitability_rollup("year"))

    assert [(r.year, r.quarter, r.gross_revenue_cents) for r in quarters] == [(2026, 2, 1_000), (2026, 1, 2_000)]
    assert all(r.month is None for r in quarters)
    assert [(r.year, r.quarter, r.month, r.gross_revenue_cents) for r in years] == [(2026, None, None, 3_000)]


def test_date_range_bounds(make_product, sell):
    product = make_product(category="Books", price_cents=1_000, cost_cents=500, stock=50)
    sell(product, 1, when=datetime(2026, 1, 10))
    sell(product, 1, when=datetime(2026, 2, 10))

    rows = list(profitability_rollup(start="2026-02-01", end="2026-02-28T23:59:59Z"))

    assert [(r.year, r.month) for r in rows] == [(2026, 2)]


def test_empty_history_gives_empty_sequence(db_session):
    assert list(profitability_rollup()) == []


def test_rollup_is_restartable_and_not_cached(make_product, sell):
    product = make_product(category="Books", price_cents=1_000, cost_cents=500, stock=50)
    sell(product, 1, when=datetime(2026, 4, 1))
    rollup = profitability_rollup()

    first = list(rollup)
    again = list(rollup)
    assert first == again

    sell(product, 1, when=datetime(2026, 4, 2))
    catalog_service.update_product(product.id, patch={"price_cents": 5_000})
    [after] = list(rollup)
    assert after.gross_revenue_cents == 2_000


def test_unknown_granularity_rejected(db_session):
    with pytest.raises(InvalidArgument):
        profitability_rollup("week")


def test_margin_percent_rounds_half_up():
    assert format_margin_percent(1, 16) == "6.3%"
    assert format_margin_percent(-1, 8) == "-12.5%"
    assert format_margin_percent(250, 1000) == "25.0%"
    with pytest.raises(InvalidArgument):
        format_margin_percent(0, 0)
