"""Pydantic models and value types for import jobs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class JobStatus(str, Enum):
    """Lifecycle status values for an import job."""

    CREATED = "created"
    RUNNING = "running"
    COMMITTED = "committed"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMMITTED, JobStatus.FAILED, JobStatus.ABORTED})


@dataclass(frozen=True, slots=True)
class Caller:
    """Identity of the party calling the service, as resolved from its token."""

    identity: str | None = None
    is_privileged: bool = False

    @property
    def is_authenticated(self) -> bool:
        return bool(self.identity)


class JobSnapshot(BaseModel):
    """Point-in-time, immutable view of a job."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    status: JobStatus
    collection: str | None = None
    filename: str | None = None
    mime_type: str | None = None
    size: int | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    aborted_at: datetime | None = None
    error: str | None = None
    records: int | None = None


class ImportAccepted(BaseModel):
    """Response returned once an import has been registered."""

    accepted: bool = True
    job_id: UUID


class AbortResponse(BaseModel):
    job: JobSnapshot


class JobLogSlice(BaseModel):
    """Portion of a job log plus the offset to resume reading from."""

    content: str
    next_offset: int
    status: JobStatus | None = None
