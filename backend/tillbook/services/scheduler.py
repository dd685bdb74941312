# Overview: Single-flight guard for background jobs, held as a lease row in the database.

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator
from uuid import uuid4

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import JobLease
from ..time_utils import utcnow
from .errors import Conflict
from .segmentation_service import SegmentationSummary, recompute_segments


class AlreadyRunning(Conflict):
    """A run of the same job is still active in this or another process."""
    kind = "AlreadyRunning"


@dataclass(frozen=True)
class Lease:
    name: str
    token: str
    expires_at: datetime

    def lost(self) -> bool:
        """True once the lease was cancelled, expired or taken over. Fits should_stop."""
        row = (
            db.session.query(JobLease.holder, JobLease.expires_at)
            .filter(JobLease.name == self.name)
            .first()
        )
        return row is None or row.holder != self.token or row.expires_at <= utcnow()


class SingleFlight:
    """
    At most one run of a named job at a time, across every process that
    shares the database (API workers, CLI, Celery workers).

    Overlapping requests are rejected with AlreadyRunning, not queued. The
    lease expires after ttl_seconds (default SEGMENTATION_LEASE_SECONDS) so a
    crashed holder cannot block the job forever; a run that outlives its
    lease sees lost() and stops.
    """

    def __init__(self, name: str, *, ttl_seconds: float | None = None):
        self.name = name
        self.ttl_seconds = ttl_seconds

    def _ttl(self) -> float:
        if self.ttl_seconds is not None:
            return self.ttl_seconds
        return current_app.config.get("SEGMENTATION_LEASE_SECONDS", 3600.0)

    def _ensure_row(self) -> None:
        if db.session.query(JobLease.name).filter(JobLease.name == self.name).first() is not None:
            return
        db.session.add(JobLease(name=self.name))
        try:
            db.session.commit()
        except IntegrityError:
            # Created concurrently by another process
            db.session.rollback()

    @property
    def active(self) -> bool:
        row = (
            db.session.query(JobLease.holder, JobLease.expires_at)
            .filter(JobLease.name == self.name)
            .first()
        )
        return row is not None and row.holder is not None and row.expires_at > utcnow()

    def acquire(self) -> Lease:
        """Take the lease or raise AlreadyRunning. Commits the session."""
        self._ensure_row()
        now = utcnow()
        token = uuid4().hex
        expires_at = now + timedelta(seconds=self._ttl())

        result = db.session.execute(
            update(JobLease)
            .where(
                JobLease.name == self.name,
                or_(JobLease.holder.is_(None), JobLease.expires_at <= now),
            )
            .values(holder=token, acquired_at=now, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        acquired = result.rowcount == 1
        db.session.commit()

        if not acquired:
            raise AlreadyRunning(f"{self.name} is already running", details={"task": self.name})
        return Lease(name=self.name, token=token, expires_at=expires_at)

    def release(self, lease: Lease) -> None:
        """Give the lease back. A no-op when it was already cancelled or taken over."""
        db.session.rollback()
        db.session.execute(
            update(JobLease)
            .where(JobLease.name == lease.name, JobLease.holder == lease.token)
            .values(holder=None, acquired_at=None, expires_at=None)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

    def cancel(self) -> bool:
        """
        Drop the lease whoever holds it.

        The running job notices through Lease.lost() before its next unit of
        work and stops. Returns False when nothing was running.
        """
        result = db.session.execute(
            update(JobLease)
            .where(JobLease.name == self.name, JobLease.holder.is_not(None))
            .values(holder=None, acquired_at=None, expires_at=None)
            .execution_options(synchronize_session=False)
        )
        cancelled = result.rowcount == 1
        db.session.commit()
        return cancelled

    @contextmanager
    def hold(self) -> Iterator[Lease]:
        lease = self.acquire()
        try:
            yield lease
        finally:
            self.release(lease)


# Shared by the API trigger, the CLI and the Celery beat task
segmentation_flight = SingleFlight("segmentation")


def run_segmentation(
    *,
    as_of: datetime | None = None,
    flight: SingleFlight = segmentation_flight,
) -> SegmentationSummary:
    """Full recompute behind the lease. Stops early when the lease is cancelled or expires."""
    with flight.hold() as lease:
        return recompute_segments(as_of=as_of, should_stop=lease.lost)
