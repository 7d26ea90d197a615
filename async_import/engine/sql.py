"""Import engine that upserts records into the table named by the collection."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from contextlib import closing
from datetime import date, datetime, time
from decimal import Decimal
from itertools import islice
from typing import Any, BinaryIO

import sqlalchemy as sa
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from ..core.db import TransactionClosedError, TransactionHandle
from ..imports.errors import EngineError
from .records import Record, iter_records

_TRUE = {"1", "true", "t", "yes", "y", "on"}
_FALSE = {"0", "false", "f", "no", "n", "off"}


def _batched(items: Iterable[Record], size: int) -> Iterator[list[Record]]:
    iterator = iter(items)
    while batch := list(islice(iterator, size)):
        yield batch


def _convert(column: sa.Column, value: Any) -> Any:
    """Coerce textual values (CSV cells) to the column's Python type."""

    if not isinstance(value, str):
        return value
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if python_type is str:
        return value
    if value == "":
        return None
    if python_type is bool:
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(value)
    if python_type in (int, float, Decimal):
        return python_type(value.strip())
    if python_type is datetime:
        return datetime.fromisoformat(value.strip())
    if python_type is date:
        return date.fromisoformat(value.strip())
    if python_type is time:
        return time.fromisoformat(value.strip())
    if python_type in (dict, list):
        return json.loads(value)
    return value


class SqlImportEngine:
    """Write records into an existing table, updating rows whose key exists.

    The collection must name an existing table. Fields must match its
    columns; records that carry the (single-column) primary key of an
    existing row update that row, the rest are inserted. Records are written
    in batches, checking between batches that the transaction is still live.
    """

    def __init__(self, batch_size: int = 500, *, logger: logging.Logger | None = None):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self.logger = logger or logging.getLogger(__name__)

    def import_records(
        self,
        handle: TransactionHandle,
        collection: str,
        media_type: str | None,
        stream: BinaryIO,
    ) -> int:
        records = iter_records(stream, media_type)
        with handle.connection() as conn:
            table = self._reflect(conn, collection)

        total = 0
        with closing(records):
            for batch in _batched(records, self.batch_size):
                if not handle.is_live:
                    raise TransactionClosedError(handle.outcome, handle.rollback_reason)
                rows = [
                    self._coerce(table, record, total + offset)
                    for offset, record in enumerate(batch, start=1)
                ]
                with handle.connection() as conn:
                    self._write(conn, table, rows)
                total += len(rows)
                self.logger.debug("collection=%s records=%d", collection, total)
        return total

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _reflect(conn: sa.Connection, collection: str) -> sa.Table:
        try:
            return sa.Table(collection, sa.MetaData(), autoload_with=conn)
        except NoSuchTableError:
            raise EngineError(f"Collection {collection!r} does not exist") from None
        except SQLAlchemyError as exc:
            raise EngineError(f"Could not read collection {collection!r}: {exc}") from exc

    @staticmethod
    def _coerce(table: sa.Table, record: Record, number: int) -> Record:
        unknown = sorted(set(record) - set(table.columns.keys()))
        if unknown:
            raise EngineError(f"Record {number}: unknown field(s) {', '.join(unknown)}")
        row: Record = {}
        for key, value in record.items():
            column = table.columns[key]
            try:
                row[key] = _convert(column, value)
            except (ValueError, TypeError) as exc:
                raise EngineError(
                    f"Record {number}: invalid value {value!r} for field {key!r}"
                ) from exc
        return row

    def _write(self, conn: sa.Connection, table: sa.Table, rows: list[Record]) -> None:
        primary_key = list(table.primary_key.columns)
        existing: set[Any] = set()
        pk = primary_key[0] if len(primary_key) == 1 else None
        if pk is not None:
            keys = [row[pk.key] for row in rows if row.get(pk.key) is not None]
            if keys:
                try:
                    existing = set(conn.execute(sa.select(pk).where(pk.in_(keys))).scalars())
                except SQLAlchemyError as exc:
                    raise EngineError(f"Failed to look up existing records: {exc}") from exc

        inserts: dict[tuple[str, ...], list[Record]] = {}
        try:
            for row in rows:
                if pk is not None and row.get(pk.key) in existing:
                    values = {k: v for k, v in row.items() if k != pk.key}
                    if values:
                        conn.execute(
                            table.update().where(pk == row[pk.key]).values(**values)
                        )
                    continue
                inserts.setdefault(tuple(sorted(row)), []).append(row)
            for group in inserts.values():
                conn.execute(table.insert(), group)
        except SQLAlchemyError as exc:
            detail = getattr(exc, "orig", None) or exc
            raise EngineError(f"Failed to write to {table.name!r}: {detail}") from exc
