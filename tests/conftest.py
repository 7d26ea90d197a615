import io
import os
import pathlib
import sys
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path

import pytest
import sqlalchemy as sa
from sqlalchemy.exc import OperationalError

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

# importing async_import.main builds a module-level app; keep it quiet
os.environ.setdefault("METRICS_ENABLED", "false")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="async-import-logs-"))

from async_import.core.db import TransactionalStore, TransactionHandle
from async_import.imports.errors import EngineError
from async_import.imports.upload import ImportUpload
from async_import.security import create_access_token, reset_jwt_settings_cache

metadata = sa.MetaData()

articles = sa.Table(
    "articles",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("title", sa.String(200), nullable=False),
    sa.Column("views", sa.Integer),
    sa.Column("published", sa.Boolean),
)


@pytest.fixture(autouse=True)
def token_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Token settings shared by the API and security tests."""

    monkeypatch.setenv("TOKEN_SECRET", "test-secret-key-with-enough-bytes")
    monkeypatch.setenv("TOKEN_AUDIENCE", "async-import")
    monkeypatch.setenv("TOKEN_ISSUER", "auth.async-import")
    monkeypatch.setenv("TOKEN_ALGORITHM", "HS256")
    reset_jwt_settings_cache()
    yield
    reset_jwt_settings_cache()


def bearer(user_id: str, *roles: str) -> dict[str, str]:
    token, _ = create_access_token(user_id, roles)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def store(tmp_path: Path) -> TransactionalStore:
    """A SQLite-backed store with an empty ``articles`` table."""

    store = TransactionalStore.from_url(f"sqlite+pysqlite:///{tmp_path / 'imports.db'}")
    metadata.create_all(store.engine)
    yield store
    store.dispose()


def count_rows(store: TransactionalStore, table: sa.Table = articles) -> int:
    with store.engine.connect() as conn:
        return conn.execute(sa.select(sa.func.count()).select_from(table)).scalar_one()


@pytest.fixture
def make_upload(tmp_path: Path):
    upload_dir = tmp_path / "uploads"

    def _make(
        data: bytes = b"id,title\n1,Hello\n",
        *,
        filename: str = "articles.csv",
        media_type: str = "text/csv",
    ) -> ImportUpload:
        return ImportUpload.spool(
            io.BytesIO(data),
            filename=filename,
            media_type=media_type,
            upload_dir=upload_dir,
        )

    return _make


@dataclass
class BlockingEngine:
    """Engine that parks inside the transaction until ``proceed`` is set.

    After being released it touches the connection once, so an abort that
    happened meanwhile surfaces as a closed transaction.
    """

    records: int = 1
    fail_with: str | None = None
    started: threading.Event = field(default_factory=threading.Event)
    proceed: threading.Event = field(default_factory=threading.Event)
    calls: list[str] = field(default_factory=list)

    def import_records(self, handle, collection, media_type, stream):
        self.calls.append(collection)
        stream.read()
        self.started.set()
        if not self.proceed.wait(timeout=5):
            raise RuntimeError("test engine was never released")
        if self.fail_with:
            raise EngineError(self.fail_with)
        with handle.connection() as conn:
            conn.execute(sa.text("SELECT 1"))
        return self.records


@dataclass
class CountingStore:
    """Wraps a store and counts transactions opened through it."""

    inner: TransactionalStore
    begins: int = 0
    fail: bool = False

    def begin(self):
        self.begins += 1
        if self.fail:
            raise RuntimeError("database unavailable")
        return self.inner.begin()


class _FailingCommit:
    def __init__(self) -> None:
        self.rolled_back = False

    def commit(self) -> None:
        raise OperationalError("COMMIT", {}, Exception("disk full"))

    def rollback(self) -> None:
        self.rolled_back = True


class FailingCommitConnection:
    """Stands in for a connection whose transaction cannot be committed."""

    def __init__(self) -> None:
        self.transaction = _FailingCommit()
        self.closed = False

    def begin(self):
        return self.transaction

    def close(self) -> None:
        self.closed = True


@dataclass
class FailingCommitStore:
    """Store whose transactions accept work but fail on commit."""

    connections: list[FailingCommitConnection] = field(default_factory=list)

    def begin(self) -> TransactionHandle:
        connection = FailingCommitConnection()
        self.connections.append(connection)
        return TransactionHandle(connection)
