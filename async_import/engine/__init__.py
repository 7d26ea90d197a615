"""Import engines: parse uploaded payloads and write them transactionally."""

from __future__ import annotations

from .base import ImportEngine
from .records import MEDIA_TYPES, iter_records, resolve_format
from .sql import SqlImportEngine

__all__ = [
    "ImportEngine",
    "MEDIA_TYPES",
    "SqlImportEngine",
    "iter_records",
    "resolve_format",
]
