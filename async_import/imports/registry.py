"""In-memory registry of every import job created by this process."""

from __future__ import annotations

import threading
from uuid import UUID

from .errors import ConflictError
from .job import Job


class JobRegistry:
    """Append-only job list plus a ``collection → job`` index.

    The index holds the most recent job per collection; a collection is busy
    while that job has not ended. Lock order is registry then job, never the
    reverse.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: list[Job] = []
        self._by_id: dict[UUID, Job] = {}
        self._latest: dict[str, Job] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def try_register(self, job: Job) -> None:
        """Insert ``job`` unless its collection already has a running job."""

        with self._lock:
            current = self._latest.get(job.collection)
            if current is not None and not current.is_terminal:
                raise ConflictError(job.collection)
            self._latest[job.collection] = job
            self._by_id[job.id] = job
            self._jobs.append(job)

    def find_active(self, collection: str) -> Job | None:
        with self._lock:
            job = self._latest.get(collection)
            if job is None or job.is_terminal:
                return None
            return job

    def get(self, job_id: UUID) -> Job | None:
        with self._lock:
            return self._by_id.get(job_id)

    def all(self) -> tuple[Job, ...]:
        """Every job in registration order."""

        with self._lock:
            return tuple(self._jobs)
