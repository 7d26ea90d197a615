"""Errors raised by the import service.

Validation errors (:class:`InvalidRequestError`, :class:`UnauthorizedError`,
:class:`ConflictError`, :class:`NotFoundError`) are raised synchronously to
the caller before any state changes. :class:`EngineError` is raised inside a
running job and is recorded on the job instead of reaching the caller.
"""

from __future__ import annotations


class ImportJobError(RuntimeError):
    """Base class for errors surfaced to callers of the import service."""

    status_code = 500


class InvalidRequestError(ImportJobError):
    status_code = 400


class UnauthorizedError(ImportJobError):
    status_code = 401

    def __init__(self, message: str = "Authentication required."):
        super().__init__(message)


class ConflictError(ImportJobError):
    status_code = 409

    def __init__(self, collection: str):
        self.collection = collection
        super().__init__(f"Only one import is allowed per collection ({collection!r} is busy)")


class NotFoundError(ImportJobError):
    status_code = 404


class EngineError(RuntimeError):
    """Failure while importing records; recorded on the job as its error."""


__all__ = [
    "ConflictError",
    "EngineError",
    "ImportJobError",
    "InvalidRequestError",
    "NotFoundError",
    "UnauthorizedError",
]
