"""Import service: the operations exposed to the HTTP layer.

Responsibilities
----------------
- Validate import requests before touching any shared state.
- Register jobs in the :class:`JobRegistry` (single job per collection) and
  hand them to the :class:`ImportRunner`.
- Abort the running job of a collection.
- Expose job snapshots and per-job logs filtered by caller visibility.
"""

from __future__ import annotations

import logging
from pathlib import Path
from uuid import UUID

from ..config import ImportSettings
from ..core.db import TransactionalStore
from ..engine import SqlImportEngine
from ..engine.base import ImportEngine
from .access import can_view, visible_jobs
from .errors import ImportJobError, InvalidRequestError, NotFoundError, UnauthorizedError
from .executor import TransactionalExecutor
from .job import Job, TransactionSource
from .models import Caller, JobLogSlice, JobSnapshot
from .registry import JobRegistry
from .runner import ImportRunner
from .upload import ImportUpload

logger = logging.getLogger(__name__)


class ImportService:
    """Coordinates import jobs for one process."""

    def __init__(
        self,
        *,
        store: TransactionSource,
        engine: ImportEngine,
        registry: JobRegistry | None = None,
        runner: ImportRunner | None = None,
        job_log_dir: Path | None = None,
    ):
        self.store = store
        self.engine = engine
        self.executor = TransactionalExecutor(engine)
        self.registry = registry or JobRegistry()
        self.runner = runner or ImportRunner()
        self.job_log_dir = job_log_dir

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start_import(
        self, collection: str | None, caller: Caller | None, upload: ImportUpload | None
    ) -> Job:
        """Register and schedule an import; the job runs asynchronously.

        Raises :class:`InvalidRequestError`, :class:`UnauthorizedError` or
        :class:`~async_import.imports.errors.ConflictError` without registering
        anything. The upload is released whenever no job takes ownership of it.
        """

        try:
            if not collection:
                raise InvalidRequestError("Collection parameter is missing!")
            if upload is None:
                raise InvalidRequestError("No file uploaded!")
            if caller is None or not caller.is_authenticated:
                raise UnauthorizedError()
            job = Job(
                collection,
                str(caller.identity),
                upload,
                store=self.store,
                executor=self.executor,
                log_dir=self.job_log_dir,
            )
            self.registry.try_register(job)
        except ImportJobError:
            if upload is not None:
                upload.release()
            raise

        try:
            self.runner.submit(job.run)
        except RuntimeError as exc:
            job.discard(f"Import runner unavailable: {exc}")
            raise
        logger.info(
            "Accepted import job %s into %s from %s", job.id, collection, caller.identity
        )
        return job

    def abort_import(self, collection: str | None, caller: Caller | None) -> JobSnapshot:
        """Abort the running import of ``collection`` and return its snapshot."""

        if not collection:
            raise InvalidRequestError("Collection parameter is missing!")
        if caller is None or not caller.is_authenticated:
            raise UnauthorizedError()
        job = self.registry.find_active(collection)
        if job is None or not can_view(job, caller):
            raise NotFoundError("There's currently no job running for this collection")
        if job.abort():
            logger.info("Import job %s aborted by %s", job.id, caller.identity)
        return job.snapshot()

    def shutdown(self, wait: bool = True) -> None:
        self.runner.shutdown(wait=wait)
        if isinstance(self.store, TransactionalStore):
            self.store.dispose()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_jobs(self, caller: Caller | None) -> list[JobSnapshot]:
        if caller is None or not caller.is_authenticated:
            raise UnauthorizedError()
        return [job.snapshot() for job in visible_jobs(self.registry.all(), caller)]

    def get_job(self, job_id: UUID, caller: Caller | None) -> Job:
        if caller is None or not caller.is_authenticated:
            raise UnauthorizedError()
        job = self.registry.get(job_id)
        if job is None or not can_view(job, caller):
            raise NotFoundError("Job not found")
        return job

    def wait_for_job(self, job_id: UUID, timeout: float | None = None) -> JobSnapshot:
        """Block until the given job finishes (used by tooling and tests)."""

        job = self.registry.get(job_id)
        if job is None:
            raise NotFoundError("Job not found")
        if not job.wait(timeout):
            raise TimeoutError(f"Job {job_id} did not finish within {timeout} seconds")
        return job.snapshot()

    def read_job_log(
        self,
        job_id: UUID,
        caller: Caller | None,
        *,
        offset: int = 0,
        limit: int = 16_384,
    ) -> JobLogSlice:
        """Read a portion of a job log.

        ``status`` is only filled in once the job is terminal, so pollers know
        when the log is complete.
        """

        job = self.get_job(job_id, caller)
        snapshot = job.snapshot()
        status = snapshot.status if snapshot.status.is_terminal else None
        if job.log_path is None or not job.log_path.exists():
            return JobLogSlice(content="", next_offset=offset, status=status)

        with job.log_path.open("rb") as f:
            f.seek(offset)
            data = f.read(limit)
        return JobLogSlice(
            content=data.decode("utf-8", errors="ignore"),
            next_offset=offset + len(data),
            status=status,
        )


def build_import_service(settings: ImportSettings) -> ImportService:
    """Wire the default store, engine and runner from ``settings``."""

    store = TransactionalStore.from_url(settings.database_url)
    return ImportService(
        store=store,
        engine=SqlImportEngine(batch_size=settings.batch_size),
        runner=ImportRunner(max_workers=settings.max_workers),
        job_log_dir=settings.job_log_dir,
    )
