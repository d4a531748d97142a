import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from orderdesk.services.concurrency import RetryDeadlineExceeded, run_with_retry


def _locked():
    return OperationalError("UPDATE products", {}, Exception("database is locked"))


def test_retries_transient_failures(db_session):
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise StaleDataError("version mismatch")
        return "ok"

    assert run_with_retry(flaky, attempts=3, backoff_base=0) == "ok"
    assert len(calls) == 3


def test_reraises_after_last_attempt(db_session):
    def always_locked():
        raise _locked()

    with pytest.raises(OperationalError):
        run_with_retry(always_locked, attempts=2, backoff_base=0)


def test_deadline_stops_retrying(db_session):
    calls = []

    def always_locked():
        calls.append(1)
        raise _locked()

    with pytest.raises(RetryDeadlineExceeded):
        run_with_retry(always_locked, attempts=5, backoff_base=1.0, deadline=0.5)
    assert len(calls) == 1


def test_other_errors_are_not_retried(db_session):
    calls = []

    def broken():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        run_with_retry(broken, attempts=3, backoff_base=0)
    assert len(calls) == 1
