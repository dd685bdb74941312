# Overview: Service-layer concurrency helpers: row locks, keyed in-process locks and retry.

from __future__ import annotations

import math
import threading
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import Contention


def lock_timeout_statement(dialect_name: str, seconds: float):
    """
    Statement that bounds row-lock waits for the current transaction, or None.

    PostgreSQL scopes the setting to the transaction. MySQL only has a session
    setting with whole-second resolution (minimum 1). SQLite has no row locks;
    its file lock waits are bounded by the driver's busy timeout.
    """
    if dialect_name == "postgresql":
        return text("SELECT set_config('lock_timeout', :value, true)").bindparams(
            value=f"{max(1, int(seconds * 1000))}ms"
        )
    if dialect_name in ("mysql", "mariadb"):
        return text(f"SET SESSION innodb_lock_wait_timeout = {max(1, math.ceil(seconds))}")
    return None


def apply_lock_timeout(seconds: float | None = None) -> None:
    """A blocked locking read then fails with OperationalError instead of hanging."""
    if seconds is None:
        seconds = current_app.config.get("ROW_LOCK_TIMEOUT_SECONDS", 5.0)
    statement = lock_timeout_statement(db.session.get_bind().dialect.name, seconds)
    if statement is not None:
        db.session.execute(statement)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The keyed locks below cover the single-process SQLite case.
    """
    apply_lock_timeout()
    return query.with_for_update()


class _KeyedLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class RowLockRegistry:
    """
    One lock per (namespace, key) while anyone holds or waits on it.

    Calls on different keys never block each other. acquire() is bounded by a
    timeout and raises Contention instead of waiting forever. Entries are
    reference counted and dropped when the last user leaves, so the registry
    only grows with the number of keys in use at once.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, int], _KeyedLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, namespace: str, key: int) -> _KeyedLock:
        with self._guard:
            entry = self._locks.get((namespace, key))
            if entry is None:
                entry = _KeyedLock()
                self._locks[(namespace, key)] = entry
            entry.users += 1
            return entry

    def _checkin(self, namespace: str, key: int, entry: _KeyedLock) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[(namespace, key)]

    @contextmanager
    def hold(self, namespace: str, key: int, *, timeout: float):
        entry = self._checkout(namespace, key)
        try:
            if not entry.lock.acquire(timeout=timeout):
                raise Contention(
                    f"Timed out waiting for {namespace} {key}",
                    details={"resource": namespace, "id": key, "timeout_seconds": timeout},
                )
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(namespace, key, entry)


row_locks = RowLockRegistry()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). When attempts run out the failure is
    raised as Contention so callers can retry later with the same arguments.
    """
    if attempts is None:
        attempts = current_app.config.get("COMMIT_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("COMMIT_RETRY_BACKOFF_SECONDS", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise Contention(
                    "Storage contention, retry later",
                    details={"attempts": attempts},
                ) from exc
            current_app.logger.info("Retrying after storage conflict (attempt %s): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise Contention("Storage contention, retry later", details={"attempts": attempts})
