"""Utility CLI for uploading a file into a collection and monitoring the import."""

from __future__ import annotations

import argparse
import mimetypes
import sys
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import requests

DEFAULT_POLL_SECONDS = 2.0
TERMINAL_STATUSES = {"committed", "failed", "aborted"}


def _build_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _request(
    session: requests.Session,
    method: str,
    host: str,
    path: str,
    *,
    token: str,
    **kwargs: Any,
) -> requests.Response:
    url = host.rstrip("/") + path
    headers = kwargs.pop("headers", {})
    headers.update(_build_headers(token))
    resp = session.request(method, url, headers=headers, timeout=30, **kwargs)
    if resp.status_code >= 400:
        raise RuntimeError(f"{method} {path} failed: {resp.status_code} {resp.text}")
    return resp


def start_import(
    session: requests.Session,
    host: str,
    *,
    token: str,
    collection: str,
    path: Path,
    media_type: Optional[str] = None,
) -> str:
    media_type = media_type or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    with path.open("rb") as fh:
        resp = _request(
            session,
            "POST",
            host,
            f"/async-import/{collection}",
            token=token,
            files={"file": (path.name, fh, media_type)},
        )
    return resp.json()["job_id"]


def abort_import(session: requests.Session, host: str, *, token: str, collection: str) -> Dict[str, Any]:
    resp = _request(session, "POST", host, f"/async-import/{collection}/abort", token=token)
    return resp.json()["job"]


def poll_job(
    session: requests.Session,
    host: str,
    *,
    token: str,
    job_id: str,
    poll_seconds: float,
) -> Dict[str, Any]:
    while True:
        resp = _request(session, "GET", host, f"/async-import/jobs/{job_id}", token=token)
        job = resp.json()
        status = job.get("status")
        print(f"job={job_id} status={status} records={job.get('records')}")
        if status in TERMINAL_STATUSES:
            return job
        time.sleep(poll_seconds)


def follow_logs(
    session: requests.Session,
    host: str,
    *,
    token: str,
    job_id: str,
    poll_seconds: float,
) -> None:
    offset = 0
    while True:
        resp = _request(
            session,
            "GET",
            host,
            f"/async-import/jobs/{job_id}/logs",
            token=token,
            params={"offset": offset},
        )
        payload = resp.json()
        content = payload.get("content") or ""
        if content:
            sys.stdout.write(content)
            sys.stdout.flush()
        offset = payload.get("next_offset", offset)
        if payload.get("status") in TERMINAL_STATUSES:
            break
        time.sleep(poll_seconds)


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--host", default="http://localhost:8000", help="FastAPI base URL")
    parser.add_argument("--token", required=True, help="Bearer access token")
    parser.add_argument("--poll-seconds", type=float, default=DEFAULT_POLL_SECONDS)

    subparsers = parser.add_subparsers(dest="command", required=True)

    up = subparsers.add_parser("upload", help="Upload a file and wait for the import")
    up.add_argument("collection")
    up.add_argument("path", type=Path)
    up.add_argument("--media-type", help="Override the guessed media type")
    up.add_argument("--follow-logs", action="store_true", help="Stream job logs until it ends")
    up.add_argument("--no-wait", action="store_true", help="Return once the job is accepted")

    ab = subparsers.add_parser("abort", help="Abort the running import of a collection")
    ab.add_argument("collection")

    return parser.parse_args(argv)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    session = requests.Session()

    if args.command == "abort":
        job = abort_import(session, args.host, token=args.token, collection=args.collection)
        print(f"job={job.get('id')} status={job.get('status')} error={job.get('error')}")
        return 0

    job_id = start_import(
        session,
        args.host,
        token=args.token,
        collection=args.collection,
        path=args.path,
        media_type=args.media_type,
    )
    print(f"accepted job_id={job_id}")
    if args.no_wait:
        return 0

    if args.follow_logs:
        follow_logs(
            session,
            args.host,
            token=args.token,
            job_id=job_id,
            poll_seconds=args.poll_seconds,
        )
    job = poll_job(
        session,
        args.host,
        token=args.token,
        job_id=job_id,
        poll_seconds=args.poll_seconds,
    )
    if job.get("status") != "committed":
        print(f"import did not commit: {job.get('error')}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
