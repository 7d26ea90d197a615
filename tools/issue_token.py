"""Print a signed access token for local use against the import API.

Reads ``TOKEN_SECRET``, ``TOKEN_ISSUER`` and ``TOKEN_AUDIENCE`` from the
environment (or a ``.env`` file).
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Iterable, Optional

from dotenv import load_dotenv

from async_import.security.tokens import create_access_token


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("user_id", help="Identity placed in the token's user_id claim")
    parser.add_argument(
        "--role",
        action="append",
        default=[],
        dest="roles",
        help="Role to grant (repeatable); 'admin' sees every job",
    )
    parser.add_argument("--email")
    parser.add_argument("--json", action="store_true", help="Print token and expiry as JSON")
    return parser.parse_args(argv)


def main(argv: Optional[Iterable[str]] = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    token, expires_at = create_access_token(args.user_id, args.roles, email=args.email)
    if args.json:
        payload = {"access_token": token, "expires_at": expires_at.isoformat()}
        sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    else:
        sys.stdout.write(token + "\n")


if __name__ == "__main__":
    main()
