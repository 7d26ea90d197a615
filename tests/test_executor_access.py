from __future__ import annotations

import io

import pytest

from async_import.core.db import TransactionOutcome
from async_import.imports.access import can_view, visible_jobs
from async_import.imports.errors import EngineError
from async_import.imports.executor import TransactionalExecutor
from async_import.imports.job import Job
from async_import.imports.models import Caller
from conftest import FailingCommitStore, articles, count_rows


class _InsertingEngine:
    def __init__(self, fail: bool = False):
        self.fail = fail

    def import_records(self, handle, collection, media_type, stream):
        with handle.connection() as conn:
            conn.execute(articles.insert().values(id=1, title=stream.read().decode()))
        if self.fail:
            raise EngineError("Record 2: invalid value")
        return 1


def test_executor_commits_engine_writes(store):
    handle = store.begin()
    result = TransactionalExecutor(_InsertingEngine()).run(
        handle, "articles", "text/plain", io.BytesIO(b"hello")
    )

    assert result.committed
    assert result.records == 1
    assert result.error is None
    assert handle.outcome is TransactionOutcome.COMMITTED
    assert count_rows(store) == 1


def test_executor_rolls_back_on_engine_error(store):
    handle = store.begin()
    result = TransactionalExecutor(_InsertingEngine(fail=True)).run(
        handle, "articles", None, io.BytesIO(b"hello")
    )

    assert not result.committed
    assert isinstance(result.error, EngineError)
    assert handle.outcome is TransactionOutcome.ROLLED_BACK
    assert handle.rollback_reason == "Record 2: invalid value"
    assert count_rows(store) == 0


def test_executor_does_not_commit_released_handle(store):
    class _AbortingEngine:
        def import_records(self, handle, collection, media_type, stream):
            handle.rollback("Job aborted!")
            return 3

    handle = store.begin()
    result = TransactionalExecutor(_AbortingEngine()).run(
        handle, "articles", None, io.BytesIO(b"")
    )

    assert result.committed is False
    assert result.records == 3
    assert handle.rollback_reason == "Job aborted!"



class _ReadingEngine:
    def import_records(self, handle, collection, media_type, stream):
        with handle.connection():
            return len(stream.read().splitlines())


def test_executor_reports_failed_commit():
    store = FailingCommitStore()
    handle = store.begin()

    result = TransactionalExecutor(_ReadingEngine()).run(
        handle, "articles", "text/csv", io.BytesIO(b"id\n1\n2\n")
    )

    assert result.committed is False
    assert result.records == 3
    assert "disk full" in str(result.error)
    assert handle.outcome is TransactionOutcome.ROLLED_BACK
    assert store.connections[0].transaction.rolled_back


@pytest.fixture
def jobs(store, make_upload):
    executor = TransactionalExecutor(_InsertingEngine())
    return [
        Job("articles", "alice", make_upload(), store=store, executor=executor),
        Job("authors", "bob", make_upload(), store=store, executor=executor),
        Job("books", "alice", make_upload(), store=store, executor=executor),
    ]


def test_owner_sees_only_own_jobs(jobs):
    alice = Caller(identity="alice")

    assert [job.collection for job in visible_jobs(jobs, alice)] == ["articles", "books"]
    assert not can_view(jobs[1], alice)


def test_privileged_caller_sees_everything(jobs):
    admin = Caller(identity="root", is_privileged=True)

    assert visible_jobs(jobs, admin) == jobs


def test_anonymous_caller_sees_nothing(jobs):
    assert visible_jobs(jobs, Caller()) == []
    assert not Caller().is_authenticated
