"""Tests for the import job state machine."""

from __future__ import annotations

import threading

import pytest

from async_import.engine import SqlImportEngine
from async_import.imports.executor import TransactionalExecutor
from async_import.imports.job import ABORT_REASON, Job
from async_import.imports.models import JobStatus
from conftest import BlockingEngine, CountingStore, FailingCommitStore, count_rows


def _job(store, upload, engine, **kwargs) -> Job:
    return Job(
        "articles",
        "alice",
        upload,
        store=store,
        executor=TransactionalExecutor(engine),
        **kwargs,
    )


def _run_in_thread(job: Job) -> threading.Thread:
    thread = threading.Thread(target=job.run)
    thread.start()
    return thread


def test_successful_import_commits(store, make_upload):
    upload = make_upload(b"id,title,views\n1,First,10\n2,Second,\n")
    job = _job(store, upload, SqlImportEngine())

    assert job.status is JobStatus.CREATED
    assert job.run() is JobStatus.COMMITTED

    snap = job.snapshot()
    assert snap.status is JobStatus.COMMITTED
    assert snap.error is None
    assert snap.records == 2
    assert snap.aborted_at is None
    assert snap.started_at <= snap.ended_at
    assert snap.filename == "articles.csv"
    assert snap.mime_type == "text/csv"
    assert snap.size == upload.size
    assert count_rows(store) == 2
    assert not upload.path.exists()
    assert upload.released


def test_engine_failure_rolls_back_and_records_error(store, make_upload):
    upload = make_upload(b"id,title,color\n1,First,red\n")
    job = _job(store, upload, SqlImportEngine())

    assert job.run() is JobStatus.FAILED

    snap = job.snapshot()
    assert "unknown field(s) color" in snap.error
    assert snap.aborted_at is None
    assert snap.ended_at is not None
    assert count_rows(store) == 0
    assert not upload.path.exists()


def test_abort_while_running_rolls_back(store, make_upload):
    engine = BlockingEngine()
    job = _job(store, make_upload(), engine)
    thread = _run_in_thread(job)
    assert engine.started.wait(timeout=5)

    assert job.status is JobStatus.RUNNING
    assert job.abort() is True
    engine.proceed.set()
    thread.join(timeout=5)

    snap = job.snapshot()
    assert snap.status is JobStatus.ABORTED
    assert snap.error == ABORT_REASON
    assert snap.aborted_at is not None
    assert snap.aborted_at <= snap.ended_at
    assert job.upload.released


def test_abort_before_start_skips_transaction(store, make_upload):
    counting = CountingStore(store)
    engine = BlockingEngine()
    job = _job(counting, make_upload(), engine)

    assert job.abort() is True
    assert job.is_terminal
    assert job.status is JobStatus.ABORTED
    assert job.upload.released
    assert job.abort() is False
    assert job.run() is JobStatus.ABORTED

    assert counting.begins == 0
    assert engine.calls == []
    assert job.error == ABORT_REASON
    assert job.aborted_at is not None
    assert job.upload.released


def test_abort_after_commit_is_a_no_op(store, make_upload):
    job = _job(store, make_upload(), SqlImportEngine())
    job.run()

    assert job.abort() is False
    snap = job.snapshot()
    assert snap.status is JobStatus.COMMITTED
    assert snap.aborted_at is None
    assert count_rows(store) == 1


def test_second_abort_while_running_reports_nothing_to_do(store, make_upload):
    engine = BlockingEngine()
    job = _job(store, make_upload(), engine)
    thread = _run_in_thread(job)
    assert engine.started.wait(timeout=5)

    assert job.abort() is True
    first = job.aborted_at
    assert job.abort() is False
    assert job.aborted_at == first

    engine.proceed.set()
    thread.join(timeout=5)
    assert job.status is JobStatus.ABORTED


def test_job_runs_only_once(store, make_upload):
    job = _job(store, make_upload(), SqlImportEngine())
    job.run()

    with pytest.raises(RuntimeError):
        job.run()


def test_transaction_that_cannot_open_fails_job(store, make_upload):
    counting = CountingStore(store, fail=True)
    job = _job(counting, make_upload(), BlockingEngine())

    assert job.run() is JobStatus.FAILED
    assert job.error == "Could not open transaction: database unavailable"
    assert job.upload.released


def test_discard_finishes_job_and_releases_upload(store, make_upload):
    job = _job(store, make_upload(), BlockingEngine())

    job.discard("Import runner unavailable")

    assert job.is_terminal
    assert job.status is JobStatus.FAILED
    assert job.error == "Import runner unavailable"
    assert job.upload.released
    assert job.wait(timeout=0)


def test_job_log_written_per_job(store, make_upload, tmp_path):
    log_dir = tmp_path / "jobs"
    job = _job(store, make_upload(), SqlImportEngine(), log_dir=log_dir)

    job.run()

    assert job.log_path == log_dir / f"{job.id}.log"
    text = job.log_path.read_text(encoding="utf-8")
    assert "import into articles started" in text
    assert "status=committed" in text


def test_wait_times_out_while_running(store, make_upload):
    engine = BlockingEngine()
    job = _job(store, make_upload(), engine)
    thread = _run_in_thread(job)
    assert engine.started.wait(timeout=5)

    assert job.wait(timeout=0.01) is False
    assert not job.is_terminal

    engine.proceed.set()
    thread.join(timeout=5)
    assert job.wait(timeout=1) is True
    assert job.status is JobStatus.COMMITTED


class _LineCountingEngine:
    def import_records(self, handle, collection, media_type, stream):
        with handle.connection():
            return len(stream.read().splitlines()) - 1


def test_failed_commit_fails_job(make_upload):
    store = FailingCommitStore()
    job = _job(store, make_upload(), _LineCountingEngine())

    assert job.run() is JobStatus.FAILED

    snap = job.snapshot()
    assert "disk full" in snap.error
    assert snap.aborted_at is None
    assert snap.ended_at is not None
    assert job.upload.released
    assert store.connections[0].transaction.rolled_back
    assert store.connections[0].closed


def test_engine_error_matching_abort_message_is_a_failure(store, make_upload):
    engine = BlockingEngine(fail_with=ABORT_REASON)
    engine.proceed.set()
    job = _job(store, make_upload(), engine)

    assert job.run() is JobStatus.FAILED
    assert job.error == ABORT_REASON
    assert job.aborted_at is None


def test_abort_of_queued_job_finishes_it_immediately(store, make_upload):
    job = _job(store, make_upload(), BlockingEngine())

    assert job.abort() is True

    snap = job.snapshot()
    assert snap.status is JobStatus.ABORTED
    assert snap.started_at is None
    assert snap.aborted_at <= snap.ended_at
    assert job.wait(timeout=0)
    assert not job.upload.path.exists()

    job.discard("Import runner unavailable")
    assert job.status is JobStatus.ABORTED
