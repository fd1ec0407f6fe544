# Overview: Pytest coverage for transaction-boundary helpers (retry, rollback, timeouts).

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from hera.extensions import db
from hera.models import CoreEntity
from hera.services.concurrency import (
    StorageError,
    commit_or_rollback,
    is_transient,
    run_with_retry,
    statement_timeout,
    write_boundary,
)


def _locked():
    return OperationalError("UPDATE core_entities", {}, Exception("database is locked"))


def _constraint():
    return IntegrityError("INSERT INTO core_entities", {}, Exception("UNIQUE constraint failed"))


class TestRunWithRetry:
    def test_retries_transient_then_succeeds(self, db_session):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise _locked()
            return "ok"

        assert run_with_retry(flaky, attempts=3, backoff_base=0) == "ok"
        assert len(attempts) == 3

    def test_exhausted_retries_raise_transient_storage_error(self, db_session):
        def always_locked():
            raise _locked()

        with pytest.raises(StorageError) as excinfo:
            run_with_retry(always_locked, attempts=2, backoff_base=0)
        assert excinfo.value.transient is True
        assert isinstance(excinfo.value.original, OperationalError)

    def test_integrity_error_not_retried(self, db_session):
        attempts = []

        def conflict():
            attempts.append(1)
            raise _constraint()

        with pytest.raises(StorageError) as excinfo:
            run_with_retry(conflict, attempts=3, backoff_base=0)
        assert len(attempts) == 1
        assert excinfo.value.transient is False

    def test_domain_errors_pass_through(self, db_session):
        def invalid():
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            run_with_retry(invalid, attempts=3, backoff_base=0)


class TestWriteBoundary:
    def test_commits_on_success(self, db_session, org_a):
        with write_boundary():
            db.session.add(CoreEntity(org_id=org_a.id, entity_type="product", entity_name="Tea", entity_code="T-1"))
        db.session.rollback()
        assert db_session.query(CoreEntity).count() == 1

    def test_rolls_back_on_error(self, db_session, org_a):
        with pytest.raises(RuntimeError):
            with write_boundary():
                db.session.add(CoreEntity(org_id=org_a.id, entity_type="product", entity_name="Tea", entity_code="T-1"))
                db.session.flush()
                raise RuntimeError("boom")
        assert db_session.query(CoreEntity).count() == 0

    def test_constraint_violation_becomes_storage_error(self, db_session, org_a):
        with pytest.raises(StorageError) as excinfo:
            with write_boundary():
                db.session.add(CoreEntity(org_id=org_a.id, entity_type="product", entity_name="A", entity_code="T-1"))
                db.session.add(CoreEntity(org_id=org_a.id, entity_type="product", entity_name="B", entity_code="T-1"))
                db.session.flush()
        assert excinfo.value.transient is False
        assert db_session.query(CoreEntity).count() == 0

    def test_commit_or_rollback(self, db_session, org_a):
        db.session.add(CoreEntity(org_id=org_a.id, entity_type="product", entity_name="Tea", entity_code="T-1"))
        commit_or_rollback()
        assert db_session.query(CoreEntity).count() == 1


class TestStatementTimeout:
    def test_noop_without_timeout(self, db_session):
        with statement_timeout(None):
            pass

    def test_rejects_non_positive(self, db_session):
        with pytest.raises(ValueError):
            with statement_timeout(0):
                pass

    def test_sqlite_runs_without_server_limit(self, db_session, org_a):
        with statement_timeout(0.5):
            assert db_session.query(CoreEntity).count() == 0


class TestIsTransient:
    def test_classification(self):
        assert is_transient(_locked()) is True
        assert is_transient(_constraint()) is False
        assert is_transient(StorageError("x", transient=True)) is True
        assert is_transient(ValueError("x")) is False
