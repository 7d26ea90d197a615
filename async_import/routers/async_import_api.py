"""Async import API endpoints.

Clients upload a file into a collection and get ``202 Accepted`` back
immediately; the import runs in the background inside a single database
transaction. Only one import may run per collection at a time. Jobs are
listed, inspected and aborted through the same router. Access is controlled
by bearer access tokens (see :mod:`async_import.security`).
"""

from __future__ import annotations

from typing import Annotated, NoReturn
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, status

from ..config import ImportSettings, get_settings
from ..imports.errors import ImportJobError, UnauthorizedError
from ..imports.models import AbortResponse, Caller, ImportAccepted, JobLogSlice, JobSnapshot
from ..imports.service import ImportService
from ..imports.upload import ImportUpload, UploadTooLargeError
from ..security.auth import get_caller

router = APIRouter(prefix="/async-import", tags=["async-import"])


def get_import_service(request: Request) -> ImportService:
    service = getattr(request.app.state, "import_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Import service not ready")
    return service


def get_import_settings(request: Request) -> ImportSettings:
    return getattr(request.app.state, "settings", None) or get_settings()


CallerDep = Annotated[Caller, Depends(get_caller)]
ServiceDep = Annotated[ImportService, Depends(get_import_service)]
SettingsDep = Annotated[ImportSettings, Depends(get_import_settings)]
OptionalUpload = Annotated[UploadFile | None, File()]
OffsetParam = Annotated[int, Query(ge=0)]
LogLimit = Annotated[int, Query(ge=1)]


def _raise_http(exc: ImportJobError) -> NoReturn:
    raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


def _spool(file: UploadFile, settings: ImportSettings) -> ImportUpload:
    """Copy the multipart upload to the upload directory or raise HTTP 413."""
    try:
        return ImportUpload.spool(
            file.file,
            filename=file.filename,
            media_type=file.content_type,
            upload_dir=settings.upload_dir,
            max_size=settings.upload_max_size,
        )
    except UploadTooLargeError as exc:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="File too large"
        ) from exc
    finally:
        file.file.close()


@router.get("/", response_model=list[JobSnapshot])
def list_jobs(caller: CallerDep, service: ServiceDep) -> list[JobSnapshot]:
    """List the jobs visible to the caller (all jobs for admins)."""
    try:
        return service.list_jobs(caller)
    except ImportJobError as exc:
        _raise_http(exc)


@router.get("/jobs/{job_id}", response_model=JobSnapshot)
def get_job(job_id: UUID, caller: CallerDep, service: ServiceDep) -> JobSnapshot:
    try:
        return service.get_job(job_id, caller).snapshot()
    except ImportJobError as exc:
        _raise_http(exc)


@router.get("/jobs/{job_id}/logs", response_model=JobLogSlice)
def get_job_logs(
    job_id: UUID,
    caller: CallerDep,
    service: ServiceDep,
    offset: OffsetParam = 0,
    limit: LogLimit = 16_384,
) -> JobLogSlice:
    """Return a slice of the job log starting at ``offset``."""
    try:
        return service.read_job_log(job_id, caller, offset=offset, limit=limit)
    except ImportJobError as exc:
        _raise_http(exc)


@router.post("/{collection}/abort", response_model=AbortResponse)
def abort_import(collection: str, caller: CallerDep, service: ServiceDep) -> AbortResponse:
    """Abort the running import of ``collection``; its transaction is rolled back."""
    try:
        return AbortResponse(job=service.abort_import(collection, caller))
    except ImportJobError as exc:
        _raise_http(exc)


@router.post(
    "/{collection}",
    response_model=ImportAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
def start_import(
    collection: str,
    caller: CallerDep,
    service: ServiceDep,
    settings: SettingsDep,
    file: OptionalUpload = None,
) -> ImportAccepted:
    """Accept a file for import into ``collection``.

    The response only confirms the job was registered; poll
    ``/async-import/jobs/{job_id}`` for its outcome.
    """
    upload = None
    if file is not None:
        if not caller.is_authenticated:
            _raise_http(UnauthorizedError())
        upload = _spool(file, settings)
    try:
        job = service.start_import(collection, caller, upload)
    except ImportJobError as exc:
        _raise_http(exc)
    return ImportAccepted(job_id=job.id)


__all__ = ["get_import_service", "get_import_settings", "router"]
