# Overview: Catalog store; owns current price, cost and stock per product.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Product, OrderLine
from ..validation import require_positive_quantity
from .concurrency import lock_for_update, row_locks
from .errors import Conflict, InsufficientStock, NotFound

PRODUCT_MUTABLE_FIELDS = {"sku", "name", "category", "cost_cents", "price_cents", "is_active"}


@dataclass(frozen=True)
class ProductSnapshot:
    """Values of one product row at a single instant."""
    product_id: int
    price_cents: int
    cost_cents: int | None
    stock: int
    is_active: bool


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def list_products(*, category: str | None = None, active_only: bool = False) -> list[Product]:
    query = db.session.query(Product)
    if category is not None:
        query = query.filter(Product.category == category)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product_snapshot(product_id: int, *, for_update: bool = False) -> ProductSnapshot:
    """
    Read price, cost and stock together.

    for_update=True locks the row until the surrounding transaction ends
    (on databases that honor SELECT ... FOR UPDATE).
    """
    query = db.session.query(Product).filter(Product.id == product_id)
    if for_update:
        query = lock_for_update(query)
    product = query.populate_existing().first()
    if product is None:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return ProductSnapshot(
        product_id=product.id,
        price_cents=product.price_cents,
        cost_cents=product.cost_cents,
        stock=product.stock,
        is_active=product.is_active,
    )


def decrement_stock(product_id: int, quantity: int) -> None:
    """
    Atomically remove quantity from stock.

    The WHERE clause makes check-and-decrement a single statement, so stock
    can never go negative even without a row lock. Does not commit.
    """
    require_positive_quantity(quantity)
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    current = db.session.query(Product.stock).filter(Product.id == product_id).scalar()
    if current is None:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    raise InsufficientStock(product_id=product_id, available=current, requested=quantity)


def restock(product_id: int, quantity: int) -> Product:
    """Receive quantity units into stock and commit."""
    require_positive_quantity(quantity)
    product = get_product(product_id)
    db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    db.session.refresh(product)
    return product


def create_product(*, patch: dict) -> Product:
    sku = patch.get("sku")
    if sku and db.session.query(Product.id).filter(Product.sku == sku).first():
        raise Conflict(f"SKU {sku} already exists", details={"sku": sku})

    product = Product(**patch)
    db.session.add(product)
    db.session.commit()
    return product


def update_product(product_id: int, *, patch: dict) -> Product:
    """
    Change catalog values. Already sold lines are unaffected because they
    carry their own price/cost copies.

    Holds the product lock so a concurrent commit_line sees either the old
    or the new price and cost, never a mix.
    """
    timeout = current_app.config.get("ROW_LOCK_TIMEOUT_SECONDS", 5.0)
    with row_locks.hold("product", product_id, timeout=timeout):
        product = get_product(product_id)

        sku = patch.get("sku")
        if sku and sku != product.sku:
            if db.session.query(Product.id).filter(Product.sku == sku, Product.id != product_id).first():
                raise Conflict(f"SKU {sku} already exists", details={"sku": sku})

        for k, v in patch.items():
            if k not in PRODUCT_MUTABLE_FIELDS:
                continue
            setattr(product, k, v)

        db.session.commit()
    return product


def delete_product(product_id: int) -> None:
    """
    Delete a product; rejected once any order line references it.

    Runs under the product lock so no commit_line can sell the product between
    the line count and the delete.
    """
    timeout = current_app.config.get("ROW_LOCK_TIMEOUT_SECONDS", 5.0)
    with row_locks.hold("product", product_id, timeout=timeout):
        product = lock_for_update(db.session.query(Product).filter(Product.id == product_id)).first()
        if product is None:
            raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})

        line_count = db.session.query(OrderLine.id).filter(OrderLine.product_id == product_id).count()
        if line_count:
            db.session.rollback()
            raise Conflict(
                f"Product {product_id} has sold lines and cannot be deleted",
                details={"product_id": product_id, "order_lines": line_count},
            )

        db.session.delete(product)
        db.session.commit()
