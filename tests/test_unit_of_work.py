import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from stockledger.core.errors import ConcurrencyConflictError, InsufficientInventoryError
from stockledger.services.unit_of_work import is_unique_violation, run_atomic


class FakeSession:
    def __init__(self):
        self.commits = 0
        self.rollbacks = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class Flaky:
    def __init__(self, failures):
        self.failures = list(failures)
        self.calls = 0

    def __call__(self, session):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "done"


def _locked():
    return OperationalError("UPDATE inventory_items", {}, Exception("database is locked"))


def _duplicate():
    return IntegrityError("INSERT INTO inventory_items", {}, Exception("UNIQUE constraint failed"))


def test_commits_on_first_success():
    session = FakeSession()
    assert run_atomic(session, "noop", lambda db: 42) == 42
    assert (session.commits, session.rollbacks) == (1, 0)


def test_transient_errors_are_retried_with_backoff():
    session = FakeSession()
    delays = []
    operation = Flaky([_locked(), _duplicate(), StaleDataError("version mismatch")])

    result = run_atomic(
        session,
        "reserve",
        operation,
        attempts=4,
        backoff_seconds=0.01,
        sleep=delays.append,
    )

    assert result == "done"
    assert operation.calls == 4
    assert session.rollbacks == 3
    assert session.commits == 1
    assert delays == pytest.approx([0.01, 0.02, 0.04])


def test_conflict_after_last_attempt():
    session = FakeSession()
    operation = Flaky([_locked(), _locked(), _locked()])

    with pytest.raises(ConcurrencyConflictError) as exc_info:
        run_atomic(session, "transfer", operation, attempts=3, backoff_seconds=0, sleep=lambda _: None)

    assert exc_info.value.attempts == 3
    assert exc_info.value.details == {"action": "transfer", "attempts": 3}
    assert isinstance(exc_info.value.__cause__, OperationalError)
    assert session.commits == 0
    assert session.rollbacks == 3


def test_domain_errors_are_not_retried():
    session = FakeSession()
    operation = Flaky([InsufficientInventoryError("short", requested=5, available=1)])

    with pytest.raises(InsufficientInventoryError):
        run_atomic(session, "sale", operation, attempts=3, sleep=lambda _: pytest.fail("slept"))

    assert operation.calls == 1
    assert session.rollbacks == 1


def test_zero_backoff_never_sleeps():
    session = FakeSession()
    operation = Flaky([_locked()])
    run_atomic(session, "sale", operation, attempts=2, backoff_seconds=0, sleep=lambda _: pytest.fail("slept"))
    assert operation.calls == 2


class PgUniqueViolation(Exception):
    sqlstate = "23505"


class PgCheckViolation(Exception):
    sqlstate = "23514"


class PgNotNullViolation(Exception):
    sqlstate = "23502"


def test_unique_violations_are_recognised_by_sqlstate_or_message():
    assert is_unique_violation(_duplicate())
    assert is_unique_violation(IntegrityError("INSERT", {}, PgUniqueViolation("duplicate key value")))
    assert not is_unique_violation(IntegrityError("UPDATE", {}, PgCheckViolation("violates check constraint")))
    assert not is_unique_violation(
        IntegrityError("UPDATE", {}, Exception("CHECK constraint failed: ck_inventory_items_on_hand_non_negative"))
    )


def test_check_violations_fail_fast_without_retry():
    session = FakeSession()
    violation = IntegrityError(
        "UPDATE inventory_items",
        {},
        Exception("CHECK constraint failed: ck_inventory_items_on_hand_non_negative"),
    )
    operation = Flaky([violation])

    with pytest.raises(IntegrityError):
        run_atomic(session, "sale", operation, attempts=3, sleep=lambda _: pytest.fail("slept"))

    assert operation.calls == 1
    assert (session.commits, session.rollbacks) == (0, 1)


def test_not_null_violation_from_postgres_is_not_a_conflict():
    session = FakeSession()
    violation = IntegrityError("INSERT INTO stock_movements", {}, PgNotNullViolation("null value in column 'actor'"))
    operation = Flaky([violation])

    with pytest.raises(IntegrityError):
        run_atomic(session, "restock", operation, attempts=3, backoff_seconds=0)

    assert operation.calls == 1
