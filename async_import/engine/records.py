"""Readers turning an uploaded byte stream into flat records."""

from __future__ import annotations

import csv
import io
import json
import logging
from collections.abc import Iterator
from typing import Any, BinaryIO

from ..imports.errors import EngineError

logger = logging.getLogger(__name__)

Record = dict[str, Any]

CSV = "csv"
JSON = "json"
NDJSON = "ndjson"

MEDIA_TYPES = {
    "text/csv": CSV,
    "application/csv": CSV,
    "application/json": JSON,
    "application/x-ndjson": NDJSON,
    "application/ndjson": NDJSON,
    "application/jsonl": NDJSON,
    "application/x-jsonlines": NDJSON,
}


def resolve_format(media_type: str | None) -> str:
    """Map a media type (parameters allowed) to a reader name."""

    essence = (media_type or "").split(";", 1)[0].strip().lower()
    try:
        return MEDIA_TYPES[essence]
    except KeyError:
        raise EngineError(f"Can't import files of type {media_type or 'unknown'!r}") from None


def _text(stream: BinaryIO) -> io.TextIOWrapper:
    return io.TextIOWrapper(stream, encoding="utf-8-sig", newline="")


def read_csv_records(stream: BinaryIO) -> Iterator[Record]:
    """Yield one record per CSV row, keyed by the header line."""

    wrapper = _text(stream)
    try:
        reader = csv.DictReader(wrapper)
        if not reader.fieldnames:
            return
        for row in reader:
            if None in row:
                raise EngineError(f"CSV row {reader.line_num} has more values than headers")
            yield {key: value for key, value in row.items() if key}
    except csv.Error as exc:
        raise EngineError(f"Invalid CSV payload: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise EngineError("CSV payload must be UTF-8 encoded") from exc
    finally:
        wrapper.detach()


def read_json_records(stream: BinaryIO) -> Iterator[Record]:
    """Yield the objects of a JSON array (a single object counts as one record)."""

    try:
        payload = json.load(stream)
    except (ValueError, UnicodeDecodeError) as exc:
        raise EngineError(f"Invalid JSON payload: {exc}") from exc
    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        raise EngineError("JSON payload must be an object or an array of objects")
    for index, item in enumerate(payload, start=1):
        if not isinstance(item, dict):
            raise EngineError(f"JSON item {index} is not an object")
        yield item


def read_ndjson_records(stream: BinaryIO) -> Iterator[Record]:
    """Yield one record per non-blank line of newline-delimited JSON."""

    wrapper = _text(stream)
    try:
        for line_number, line in enumerate(wrapper, start=1):
            if not line.strip():
                continue
            try:
                item = json.loads(line)
            except ValueError as exc:
                raise EngineError(f"Invalid JSON on line {line_number}: {exc}") from exc
            if not isinstance(item, dict):
                raise EngineError(f"Line {line_number} is not a JSON object")
            yield item
    except UnicodeDecodeError as exc:
        raise EngineError("NDJSON payload must be UTF-8 encoded") from exc
    finally:
        wrapper.detach()


_READERS = {
    CSV: read_csv_records,
    JSON: read_json_records,
    NDJSON: read_ndjson_records,
}


def iter_records(stream: BinaryIO, media_type: str | None) -> Iterator[Record]:
    return _READERS[resolve_format(media_type)](stream)
