"""Run an import engine inside a transaction that is closed exactly once."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import BinaryIO

from ..core.db import TransactionHandle
from ..engine.base import ImportEngine

logger = logging.getLogger(__name__)


def describe_error(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of one engine run.

    ``committed`` is only true when this run's commit took effect. ``error``
    carries the engine or commit exception for the job to classify.
    """

    committed: bool
    records: int | None = None
    error: BaseException | None = None


class TransactionalExecutor:
    """Bridge between a job's byte stream and the :class:`ImportEngine`."""

    def __init__(self, engine: ImportEngine):
        self.engine = engine

    def run(
        self,
        handle: TransactionHandle,
        collection: str,
        media_type: str | None,
        stream: BinaryIO,
    ) -> ExecutionResult:
        try:
            records = self.engine.import_records(handle, collection, media_type, stream)
        except Exception as exc:
            # no-op when an abort already rolled the transaction back
            handle.rollback(describe_error(exc))
            return ExecutionResult(committed=False, error=exc)

        try:
            committed = handle.commit()
        except Exception as exc:
            logger.warning("Commit failed for collection %s: %s", collection, exc)
            return ExecutionResult(committed=False, records=records, error=exc)
        return ExecutionResult(committed=committed, records=records)
