from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


ORDER_PENDING = "Pending"
ORDER_PAID = "Paid"
ORDER_CANCELLED = "Cancelled"

ORDER_STATUSES = (ORDER_PENDING, ORDER_PAID, ORDER_CANCELLED)


class Order(db.Model):
    """
    One purchase session.

    total_cents is derived: it only moves through order_service.increment_total,
    inside the same transaction that appends the line it accounts for.
    """
    __tablename__ = "orders"
    __table_args__ = (
        # Most dashboards filter by date and status together
        db.Index("ix_orders_created_status", "created_at", "status"),
        db.Index("ix_orders_customer_status", "customer_id", "status"),
        db.CheckConstraint(
            "status IN ('Pending', 'Paid', 'Cancelled')",
            name="ck_orders_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    # Set client-side so the rollup can bucket by it without a date dimension
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING, index=True)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "created_at": to_utc_z(self.created_at),
            "status": self.status,
            "total_cents": self.total_cents,
        }


class OrderLine(db.Model):
    """
    Immutable sold line.

    IMMUTABLE: unit price and unit cost are copies taken at commit time and
    must never follow later catalog changes. Rows are only removed by deleting
    their order.
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    quantity = db.Column(db.Integer, nullable=False)

    # Snapshots (frozen at commit)
    unit_price_cents_at_sale = db.Column(db.Integer, nullable=False)
    unit_cost_cents_at_sale = db.Column(db.Integer, nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    margin_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    order = db.relationship("Order", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents_at_sale": self.unit_price_cents_at_sale,
            "unit_cost_cents_at_sale": self.unit_cost_cents_at_sale,
            "subtotal_cents": self.subtotal_cents,
            "margin_cents": self.margin_cents,
            "created_at": to_utc_z(self.created_at),
        }


class ImmutableRowError(RuntimeError):
    """Raised when code tries to rewrite an append-only row."""


@event.listens_for(OrderLine, "before_update")
def _reject_order_line_update(mapper, connection, target):
    raise ImmutableRowError(f"OrderLine {target.id} is immutable")
