"""Interface implemented by import engines."""

from __future__ import annotations

from typing import BinaryIO, Protocol, runtime_checkable

from ..core.db import TransactionHandle


@runtime_checkable
class ImportEngine(Protocol):
    """Turns an uploaded byte stream into records written through ``handle``.

    Implementations must perform every write through
    :meth:`TransactionHandle.connection` so that an abort invalidates them, and
    should raise :class:`~async_import.imports.errors.EngineError` for payload
    problems. The return value is the number of records written.
    """

    def import_records(
        self,
        handle: TransactionHandle,
        collection: str,
        media_type: str | None,
        stream: BinaryIO,
    ) -> int: ...
