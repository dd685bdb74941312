"""
Order store and order-line commit engine.

commit_line is the only path that sells stock. One call validates the
quantity, snapshots the product's price and cost, decrements stock, appends
the immutable line and bumps the order total, all in one transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Customer, Order, OrderLine, ORDER_PENDING, ORDER_PAID, ORDER_CANCELLED
from ..validation import require_positive_quantity
from .catalog_service import ProductSnapshot, decrement_stock, get_product_snapshot
from .concurrency import lock_for_update, row_locks, run_with_retry
from .errors import Conflict, InsufficientStock, InvalidArgument, NotFound


@dataclass(frozen=True)
class FrozenLine:
    """A line's values as of commit time. Later catalog edits cannot reach it."""
    order_id: int
    product_id: int
    quantity: int
    unit_price_cents: int
    unit_cost_cents: int

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    @property
    def margin_cents(self) -> int:
        return self.subtotal_cents - self.quantity * self.unit_cost_cents


def freeze_line(order_id: int, snapshot: ProductSnapshot, quantity: int) -> FrozenLine:
    """Copy the snapshot's price and cost into a line record. Unknown cost freezes as 0."""
    return FrozenLine(
        order_id=order_id,
        product_id=snapshot.product_id,
        quantity=quantity,
        unit_price_cents=snapshot.price_cents,
        unit_cost_cents=snapshot.cost_cents if snapshot.cost_cents is not None else 0,
    )


def _lock_timeout() -> float:
    return current_app.config.get("ROW_LOCK_TIMEOUT_SECONDS", 5.0)


def _load_order(order_id: int, *, for_update: bool = False) -> Order:
    query = db.session.query(Order).filter(Order.id == order_id)
    if for_update:
        query = lock_for_update(query)
    order = query.populate_existing().first()
    if order is None:
        raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def create_order(customer_id: int, *, created_at: datetime | None = None) -> Order:
    """Open a Pending order with a zero total."""
    if db.session.get(Customer, customer_id) is None:
        raise NotFound(f"Customer {customer_id} not found", details={"customer_id": customer_id})

    order = Order(customer_id=customer_id, status=ORDER_PENDING, total_cents=0)
    if created_at is not None:
        order.created_at = created_at

    db.session.add(order)
    db.session.commit()
    return order


def get_order(order_id: int) -> Order:
    return _load_order(order_id)


def append_line(frozen: FrozenLine) -> OrderLine:
    """Stage the immutable line row. Does not commit."""
    line = OrderLine(
        order_id=frozen.order_id,
        product_id=frozen.product_id,
        quantity=frozen.quantity,
        unit_price_cents_at_sale=frozen.unit_price_cents,
        unit_cost_cents_at_sale=frozen.unit_cost_cents,
        subtotal_cents=frozen.subtotal_cents,
        margin_cents=frozen.margin_cents,
    )
    db.session.add(line)
    db.session.flush()
    return line


def increment_total(order_id: int, amount_cents: int) -> None:
    """Add to the running total in one statement so increments never get lost. Does not commit."""
    result = db.session.execute(
        update(Order)
        .where(Order.id == order_id)
        .values(total_cents=Order.total_cents + amount_cents)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})


def _commit_line_locked(order_id: int, product_id: int, quantity: int) -> OrderLine:
    order = _load_order(order_id, for_update=True)
    if order.status != ORDER_PENDING:
        raise Conflict(
            f"Can only add lines to Pending orders (order {order_id} is {order.status})",
            details={"order_id": order_id, "status": order.status},
        )

    snapshot = get_product_snapshot(product_id, for_update=True)
    if not snapshot.is_active:
        raise InvalidArgument(
            f"Product {product_id} is inactive",
            details={"product_id": product_id},
        )
    if snapshot.stock < quantity:
        raise InsufficientStock(product_id=product_id, available=snapshot.stock, requested=quantity)

    frozen = freeze_line(order_id, snapshot, quantity)

    decrement_stock(product_id, quantity)
    line = append_line(frozen)
    increment_total(order_id, frozen.subtotal_cents)

    db.session.commit()
    return line


def commit_line(order_id: int, product_id: int, quantity: int) -> OrderLine:
    """
    Sell quantity units of a product on an order.

    Raises:
        InvalidArgument: quantity is not a positive int, or product inactive
        NotFound: order or product missing
        Conflict: order is not Pending
        InsufficientStock: stock < quantity (nothing is changed)
        Contention: row lock timed out or storage conflicts outlasted retries
    """
    require_positive_quantity(quantity)
    timeout = _lock_timeout()

    # Product before order, always, so two commits can never wait on each other in a cycle
    with row_locks.hold("product", product_id, timeout=timeout):
        with row_locks.hold("order", order_id, timeout=timeout):
            return run_with_retry(lambda: _commit_line_locked(order_id, product_id, quantity))


def _transition(order_id: int, target: str, allowed_from: tuple[str, ...]) -> Order:
    def _op():
        order = _load_order(order_id, for_update=True)
        if order.status == target:
            return order
        if order.status not in allowed_from:
            raise Conflict(
                f"Cannot move order {order_id} from {order.status} to {target}",
                details={"order_id": order_id, "status": order.status, "target": target},
            )
        order.status = target
        db.session.commit()
        return order

    with row_locks.hold("order", order_id, timeout=_lock_timeout()):
        return run_with_retry(_op)


def mark_paid(order_id: int) -> Order:
    return _transition(order_id, ORDER_PAID, (ORDER_PENDING,))


def cancel_order(order_id: int) -> Order:
    """Cancel a Pending or Paid order. Stock is not returned; lines stay as history."""
    return _transition(order_id, ORDER_CANCELLED, (ORDER_PENDING, ORDER_PAID))


def delete_order(order_id: int) -> None:
    """Delete an order together with its lines."""
    def _op():
        order = _load_order(order_id, for_update=True)
        db.session.delete(order)
        db.session.commit()

    with row_locks.hold("order", order_id, timeout=_lock_timeout()):
        run_with_retry(_op)


def list_lines(order_id: int) -> list[OrderLine]:
    return db.session.query(OrderLine).filter(OrderLine.order_id == order_id).order_by(OrderLine.id.asc()).all()


def list_paid_orders_by_customer(customer_id: int) -> list[Order]:
    """Paid orders of one customer, newest first."""
    return (
        db.session.query(Order)
        .filter(Order.customer_id == customer_id, Order.status == ORDER_PAID)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
