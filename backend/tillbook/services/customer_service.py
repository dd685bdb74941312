# Overview: Customer master data operations.

from __future__ import annotations

from ..extensions import db
from ..models import Customer, SEGMENTS, SEGMENT_NEW
from .errors import Conflict, InvalidArgument, NotFound


def create_customer(*, patch: dict) -> Customer:
    """New customers always start in the New segment."""
    email = patch.get("email")
    if email and db.session.query(Customer.id).filter(Customer.email == email).first():
        raise Conflict(f"Email {email} already registered", details={"email": email})

    customer = Customer(**patch)
    customer.segment = SEGMENT_NEW
    db.session.add(customer)
    db.session.commit()
    return customer


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFound(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def list_customers(*, segment: str | None = None) -> list[Customer]:
    query = db.session.query(Customer)
    if segment is not None:
        if segment not in SEGMENTS:
            raise InvalidArgument(
                f"Unknown segment {segment}",
                details={"segment": segment, "allowed": list(SEGMENTS)},
            )
        query = query.filter(Customer.segment == segment)
    return query.order_by(Customer.id.asc()).all()
