"""Visibility rules for import jobs."""

from __future__ import annotations

from collections.abc import Iterable

from .job import Job
from .models import Caller


def can_view(job: Job, caller: Caller) -> bool:
    if caller.is_privileged:
        return True
    return caller.is_authenticated and job.owner == caller.identity


def visible_jobs(jobs: Iterable[Job], caller: Caller) -> list[Job]:
    """Jobs the caller may see, in the order given."""

    return [job for job in jobs if can_view(job, caller)]
