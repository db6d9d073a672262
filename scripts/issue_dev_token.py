#!/usr/bin/env python3
"""Mint a bearer token for connecting to a development Zap server."""

from __future__ import annotations

import argparse
import os
import re
import secrets
import sys
from datetime import timedelta
from pathlib import Path

from app.config import get_settings
from zap.realtime.auth import ConnectionAuthenticator

DEFAULT_SECRET_BYTES = 48
ENV_VAR_NAME = "JWT_SECRET_KEY"


def update_env_file(path: Path, secret: str) -> None:
    """Insert or replace the signing secret in an env-style file."""
    lines: list[str]
    if path.exists():
        pattern = re.compile(rf"^{re.escape(ENV_VAR_NAME)}=")
        lines = [
            line
            for line in path.read_text(encoding="utf-8").splitlines()
            if not pattern.match(line)
        ]
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = []
    lines.append(f"{ENV_VAR_NAME}={secret}")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    try:
        os.chmod(path, 0o600)
    except OSError:
        # Not every platform supports chmod
        pass


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("user_id", help="Value of the userId claim.")
    parser.add_argument("username", help="Value of the username claim.")
    parser.add_argument(
        "--minutes",
        type=int,
        default=None,
        help="Token lifetime in minutes (defaults to ACCESS_TOKEN_EXPIRE_MINUTES).",
    )
    parser.add_argument(
        "--secret",
        default=None,
        help="Signing secret (defaults to JWT_SECRET_KEY from the environment).",
    )
    parser.add_argument(
        "--new-secret",
        type=Path,
        metavar="PATH",
        help="Generate a fresh signing secret, store it in PATH and sign with it.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()

    secret = args.secret or settings.jwt_secret_key
    if args.new_secret:
        secret = secrets.token_urlsafe(DEFAULT_SECRET_BYTES)
        update_env_file(args.new_secret, secret)
        print(f"Updated {args.new_secret} with {ENV_VAR_NAME}.", file=sys.stderr)

    minutes = args.minutes if args.minutes is not None else settings.access_token_expire_minutes
    if minutes <= 0:
        print(f"token lifetime must be positive (got {minutes})", file=sys.stderr)
        return 2

    authenticator = ConnectionAuthenticator(secret, algorithm=settings.jwt_algorithm)
    print(authenticator.issue(args.user_id, args.username, expires_delta=timedelta(minutes=minutes)))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
