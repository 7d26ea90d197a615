from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from async_import.config import ImportSettings
from async_import.security import decode_access_token
from async_import.engine import SqlImportEngine
from async_import.imports.runner import ImportRunner
from async_import.imports.service import ImportService
from async_import.main import create_app
from conftest import count_rows
from tools import import_file, issue_token, print_log_config

HOST = "http://testserver"


@pytest.fixture
def client(store, tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    settings = ImportSettings(
        upload_dir=tmp_path / "uploads",
        log_dir=tmp_path / "logs",
        metrics_enabled=False,
    )
    service = ImportService(
        store=store,
        engine=SqlImportEngine(),
        runner=ImportRunner(max_workers=1),
        job_log_dir=settings.job_log_dir,
    )
    with TestClient(create_app(service, settings=settings)) as client:
        yield client
    service.runner.shutdown(wait=True)


def test_issue_token_prints_valid_token(capsys):
    issue_token.main(["alice", "--role", "admin"])

    token = capsys.readouterr().out.strip()
    payload = decode_access_token(token)
    assert payload["user_id"] == "alice"
    assert payload["roles"] == ["admin"]


def test_import_file_uploads_and_follows_job(client, store, tmp_path, capsys):
    token, _ = issue_token.create_access_token("alice")
    path = tmp_path / "articles.csv"
    path.write_bytes(b"id,title\n1,One\n2,Two\n")

    job_id = import_file.start_import(
        client, HOST, token=token, collection="articles", path=path
    )
    import_file.follow_logs(client, HOST, token=token, job_id=job_id, poll_seconds=0.01)
    job = import_file.poll_job(client, HOST, token=token, job_id=job_id, poll_seconds=0.01)

    assert job["status"] == "committed"
    assert job["mime_type"] == "text/csv"
    assert count_rows(store) == 2
    out = capsys.readouterr().out
    assert "import into articles started" in out
    assert f"job={job_id} status=committed records=2" in out


def test_import_file_reports_http_errors(client):
    token, _ = issue_token.create_access_token("alice")

    with pytest.raises(RuntimeError, match="404"):
        import_file.abort_import(client, HOST, token=token, collection="articles")


def test_import_file_arguments():
    args = import_file.parse_args(["--token", "t", "upload", "articles", "data.csv", "--follow-logs"])

    assert args.command == "upload"
    assert args.collection == "articles"
    assert args.path.name == "data.csv"
    assert args.follow_logs is True


def test_print_log_config(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setattr(print_log_config, "get_settings", lambda: ImportSettings(log_dir=tmp_path))

    config = print_log_config.get_log_config()

    assert config["log_level"] == "DEBUG"
    assert config["job_log_dir"] == str(tmp_path / "jobs")
