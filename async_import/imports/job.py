"""State machine for a single import attempt.

A job moves ``created → running → committed | failed | aborted`` and never
changes again once terminal. Its transaction handle is the arbiter between
the execution path and :meth:`Job.abort`: whichever releases the handle first
decides the outcome, the other finds it released and does nothing.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol
from uuid import UUID, uuid4

from ..app_logging import close_job_logger, open_job_logger
from ..core.db import TransactionHandle, TransactionOutcome
from .executor import ExecutionResult, TransactionalExecutor, describe_error
from .models import JobSnapshot, JobStatus
from .upload import ImportUpload

logger = logging.getLogger(__name__)

ABORT_REASON = "Job aborted!"
INTERRUPTED_REASON = "Job interrupted"


class TransactionSource(Protocol):
    def begin(self) -> TransactionHandle: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Job:
    """One import of an uploaded payload into ``collection`` on behalf of ``owner``."""

    def __init__(
        self,
        collection: str,
        owner: str,
        upload: ImportUpload,
        *,
        store: TransactionSource,
        executor: TransactionalExecutor,
        log_dir: Path | None = None,
    ):
        self.id: UUID = uuid4()
        self.collection = collection
        self.owner = owner
        self.upload = upload
        self.log_path: Path | None = None
        self._store = store
        self._executor = executor
        self._log_dir = log_dir

        self._lock = threading.Lock()
        self._done = threading.Event()
        self._claimed = False
        self._cancelled = False
        self._abort_requested = False
        self._handle: TransactionHandle | None = None
        self._status = JobStatus.CREATED
        self._started_at: datetime | None = None
        self._ended_at: datetime | None = None
        self._aborted_at: datetime | None = None
        self._error: str | None = None
        self._records: int | None = None

    def __repr__(self) -> str:
        return f"<Job {self.id} collection={self.collection!r} status={self.status.value}>"

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def status(self) -> JobStatus:
        with self._lock:
            return self._status

    @property
    def ended_at(self) -> datetime | None:
        with self._lock:
            return self._ended_at

    @property
    def aborted_at(self) -> datetime | None:
        with self._lock:
            return self._aborted_at

    @property
    def error(self) -> str | None:
        with self._lock:
            return self._error

    @property
    def is_terminal(self) -> bool:
        with self._lock:
            return self._ended_at is not None

    def snapshot(self) -> JobSnapshot:
        with self._lock:
            fields = dict(
                status=self._status,
                started_at=self._started_at,
                ended_at=self._ended_at,
                aborted_at=self._aborted_at,
                error=self._error,
                records=self._records,
            )
        return JobSnapshot(
            id=self.id,
            collection=self.collection,
            filename=self.upload.filename,
            mime_type=self.upload.media_type,
            size=self.upload.size,
            **fields,
        )

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the job is terminal; return ``False`` on timeout."""

        return self._done.wait(timeout)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def abort(self) -> bool:
        """Request the job to stop and roll back its transaction.

        A job still waiting for a worker is finished on the spot, so its
        collection is free again when this returns. A job whose worker has not
        opened the transaction yet is aborted as soon as it does.

        Returns ``True`` if this call aborted the job (or queued the abort),
        ``False`` if there was nothing to abort.
        """

        with self._lock:
            if self._ended_at is not None:
                return False
            queued = not self._claimed
            handle = self._handle
            if queued:
                self._claimed = self._cancelled = True
            if handle is None:
                if self._abort_requested:
                    return False
                self._abort_requested = True
                self._aborted_at = _utcnow()
                if not queued:
                    return True

        if handle is None:
            self.upload.release()
            logger.info("Import job %s aborted before it started", self.id)
            self._finish(JobStatus.ABORTED, ABORT_REASON, None)
            return True

        if not handle.rollback(ABORT_REASON, aborted=True):
            return False
        with self._lock:
            if self._aborted_at is None:
                self._aborted_at = handle.released_at or _utcnow()
        return True

    def run(self) -> JobStatus:
        """Execute the import on the current thread and return the final status."""

        if not self._claim():
            self._done.wait()
            return self.status
        job_logger = self._open_log()
        status, error, records = JobStatus.FAILED, "Import did not complete", None
        try:
            status, error, records = self._execute(job_logger)
        except Exception as exc:
            logger.exception("Import job %s crashed", self.id)
            status, error = JobStatus.FAILED, describe_error(exc)
        finally:
            self.upload.release()
            job_logger.info("import finished status=%s records=%s error=%s", status.value, records, error)
            if job_logger is not logger:
                close_job_logger(job_logger)
            status = self._finish(status, error, records)
        return status

    def discard(self, reason: str) -> None:
        """Finish a job that was never started, releasing its upload."""

        if not self._claim():
            return
        self.upload.release()
        self._finish(JobStatus.FAILED, reason, None)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _claim(self) -> bool:
        """Take the job for execution; ``False`` if it was aborted while queued."""

        with self._lock:
            if self._cancelled:
                return False
            if self._claimed:
                raise RuntimeError(f"Job {self.id} was already started")
            self._claimed = True
            return True

    def _open_log(self) -> logging.Logger | logging.LoggerAdapter:
        if self._log_dir is None:
            return logger
        try:
            job_logger, self.log_path = open_job_logger(self.id, self._log_dir)
        except OSError:
            logger.warning("Could not open log file for job %s", self.id, exc_info=True)
            return logger
        return job_logger

    def _execute(
        self, job_logger: logging.Logger | logging.LoggerAdapter
    ) -> tuple[JobStatus, str | None, int | None]:
        with self._lock:
            if self._abort_requested:
                return JobStatus.ABORTED, ABORT_REASON, None
            self._status = JobStatus.RUNNING
            self._started_at = _utcnow()

        job_logger.info(
            "import into %s started file=%s type=%s size=%s",
            self.collection,
            self.upload.filename,
            self.upload.media_type,
            self.upload.size,
        )
        try:
            handle = self._store.begin()
        except Exception as exc:
            job_logger.error("could not open transaction: %s", exc)
            return JobStatus.FAILED, f"Could not open transaction: {describe_error(exc)}", None

        with self._lock:
            self._handle = handle
            abort_requested = self._abort_requested
        if abort_requested:
            handle.rollback(ABORT_REASON, aborted=True)
            return JobStatus.ABORTED, ABORT_REASON, None

        result: ExecutionResult | None = None
        try:
            with self.upload.open() as stream:
                result = self._executor.run(
                    handle, self.collection, self.upload.media_type, stream
                )
        finally:
            if handle.rollback(INTERRUPTED_REASON):
                job_logger.warning("transaction rolled back after an unexpected exit")

        status, error = self._classify(handle, result)
        if result.error is not None and status is JobStatus.FAILED:
            job_logger.error("import failed: %s", error)
        return status, error, result.records

    @staticmethod
    def _classify(handle: TransactionHandle, result: ExecutionResult) -> tuple[JobStatus, str | None]:
        if result.committed:
            return JobStatus.COMMITTED, None
        if handle.outcome is TransactionOutcome.ROLLED_BACK and handle.aborted:
            return JobStatus.ABORTED, ABORT_REASON
        if result.error is not None:
            return JobStatus.FAILED, describe_error(result.error)
        return JobStatus.FAILED, handle.rollback_reason or "Transaction was released before commit"

    def _finish(self, status: JobStatus, error: str | None, records: int | None) -> JobStatus:
        now = _utcnow()
        with self._lock:
            # an abort accepted before any transaction existed wins over a failure
            if self._abort_requested and status is JobStatus.FAILED:
                status, error = JobStatus.ABORTED, ABORT_REASON
            self._status = status
            self._error = None if status is JobStatus.COMMITTED else error
            self._records = records
            if status is JobStatus.ABORTED and self._aborted_at is None:
                self._aborted_at = now
            self._ended_at = now
        self._done.set()
        return status
