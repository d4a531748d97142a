# Overview: Retry and row-locking helpers shared by every transactional service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class RetryDeadlineExceeded(Exception):
    """Raised when a transactional step keeps failing past its deadline."""


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _policy(attempts, backoff_base, deadline):
    config = current_app.config
    if attempts is None:
        attempts = config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = config.get("DB_RETRY_BACKOFF_SECONDS", 0.1)
    if deadline is None:
        deadline = config.get("DB_RETRY_DEADLINE_SECONDS", 5.0)
    return attempts, backoff_base, deadline


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None,
                   deadline: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). The session is rolled back before each
    retry so a retried operation always starts from a clean transaction.
    Retrying stops after `attempts` tries or once `deadline` seconds have
    elapsed, whichever comes first.
    """
    attempts, backoff_base, deadline = _policy(attempts, backoff_base, deadline)
    started = time.monotonic()
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            delay = backoff_base * (2 ** attempt)
            if time.monotonic() - started + delay > deadline:
                raise RetryDeadlineExceeded(
                    f"Gave up after {attempt + 1} attempt(s): deadline of {deadline}s exceeded"
                ) from exc
            time.sleep(delay)
    if last_exc:
        raise last_exc


def commit_with_retry(*, attempts: int | None = None, backoff_base: float | None = None):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
