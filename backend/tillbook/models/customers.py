from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SEGMENT_NEW = "New"
SEGMENT_PROMISING = "Promising"
SEGMENT_CHAMPION = "Champion"
SEGMENT_AT_RISK = "At-Risk"
SEGMENT_LOST = "Lost"

SEGMENTS = (SEGMENT_NEW, SEGMENT_PROMISING, SEGMENT_CHAMPION, SEGMENT_AT_RISK, SEGMENT_LOST)


class Customer(db.Model):
    """
    Customer master data with the behavioral segment label.

    WHY: segment is owned by the segmentation pass. Order processing never
    writes it, so a label only changes when recompute_segments runs.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_customers_email"),
        db.CheckConstraint(
            "segment IN ('New', 'Promising', 'Champion', 'At-Risk', 'Lost')",
            name="ck_customers_segment",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(64), nullable=True)
    state = db.Column(db.String(2), nullable=True)

    segment = db.Column(db.String(16), nullable=False, default=SEGMENT_NEW, index=True)
    loyalty_score = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    segment_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "city": self.city,
            "state": self.state,
            "segment": self.segment,
            "loyalty_score": str(self.loyalty_score) if self.loyalty_score is not None else None,
            "segment_updated_at": to_utc_z(self.segment_updated_at) if self.segment_updated_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
