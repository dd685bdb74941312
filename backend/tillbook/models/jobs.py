from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class JobLease(db.Model):
    """
    Cross-process single-flight lease for a named background job.

    One row per job name. holder is the token of the run that owns the job,
    NULL when idle. A lease past expires_at can be taken over, so a worker
    that died mid-run does not block the job forever. Times are naive UTC.
    """
    __tablename__ = "job_leases"

    name = db.Column(db.String(64), primary_key=True)
    holder = db.Column(db.String(64), nullable=True)
    acquired_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "holder": self.holder,
            "acquired_at": to_utc_z(self.acquired_at),
            "expires_at": to_utc_z(self.expires_at),
        }
