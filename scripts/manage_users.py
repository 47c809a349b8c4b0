#!/usr/bin/env python3
"""Management helpers for shop accounts and sessions."""
from __future__ import annotations

import argparse
import logging
import secrets
import sys
from pathlib import Path
from typing import Dict, Iterable, List

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from shopauth import database
from shopauth.auth.controller import email_format_error, password_policy_error
from shopauth.auth.errors import DuplicateEmail
from shopauth.auth.passwords import hash_password
from shopauth.auth.service import init_auth_storage, record_audit_event
from shopauth.auth.sessions import SessionManager
from shopauth.auth.store import UserStore, normalize_email
from shopauth.config import settings


def _update_env_file(env_path: Path, updates: Dict[str, str]) -> None:
    lines: List[str]
    if env_path.exists():
        lines = env_path.read_text().splitlines()
    else:
        lines = []

    rendered: List[str] = []
    seen: set[str] = set()
    for line in lines:
        key, sep, _ = line.partition("=")
        stripped_key = key.strip()
        if sep and stripped_key in updates:
            rendered.append(f"{stripped_key}={updates[stripped_key]}")
            seen.add(stripped_key)
        else:
            rendered.append(line)

    for key, value in updates.items():
        if key not in seen:
            rendered.append(f"{key}={value}")

    env_path.write_text("\n".join(rendered) + "\n")


def _command_create_user(args: argparse.Namespace) -> int:
    email = normalize_email(args.email)
    problem = email_format_error(email) or password_policy_error(args.password)
    if problem:
        print(problem, file=sys.stderr)
        return 2

    init_auth_storage()
    with database.SessionLocal() as session:
        store = UserStore(session)
        existing = store.find_by_email(email)
        if existing:
            if not args.force:
                print(f"User '{email}' already exists; skipping")
                return 0
            existing.hashed_password = hash_password(args.password)
            existing.close_reset_window()
            store.save(existing)
            assert existing.id is not None
            SessionManager().revoke_user_sessions(session, existing.id)
            record_audit_event(
                session,
                actor_id=existing.id,
                action="password_rotated",
                summary=f"Rotated credentials for {existing.email}",
            )
            print(f"Updated password for existing user '{existing.email}'")
            return 0

        try:
            user = store.create(email, hash_password(args.password))
        except DuplicateEmail:
            print(f"User '{email}' already exists; skipping")
            return 0
        record_audit_event(
            session,
            actor_id=user.id,
            action="signup",
            summary=f"Account created for {user.email} from the CLI",
        )
        print(f"Created user '{user.email}' (id={user.id})")
        return 0


def _command_purge_sessions(args: argparse.Namespace) -> int:
    init_auth_storage()
    with database.SessionLocal() as session:
        removed = SessionManager().purge_expired(session)
    print(f"Removed {removed} expired sessions")
    return 0


def _command_rotate_secrets(args: argparse.Namespace) -> int:
    env_path = Path(args.env_file).expanduser().resolve()
    updates = {"SESSION_SECRET": secrets.token_urlsafe(48)}
    env_path.parent.mkdir(parents=True, exist_ok=True)
    _update_env_file(env_path, updates)
    init_auth_storage()
    with database.SessionLocal() as session:
        record_audit_event(
            session,
            action="secrets_rotated",
            summary="Generated a new session secret",
            data={"env_file": str(env_path), "keys": sorted(updates)},
        )
    print(f"Wrote new secrets to {env_path}; existing sessions are now invalid")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--database-url",
        dest="database_url",
        help="Override the shop database URL",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    create_user = subparsers.add_parser(
        "create-user", help="Create an account or reset its password",
    )
    create_user.add_argument("--email", required=True)
    create_user.add_argument("--password", required=True)
    create_user.add_argument(
        "--force",
        action="store_true",
        help="Update the password if the account already exists",
    )
    create_user.set_defaults(func=_command_create_user)

    purge = subparsers.add_parser(
        "purge-sessions", help="Delete sessions whose lifetime has elapsed",
    )
    purge.set_defaults(func=_command_purge_sessions)

    rotate = subparsers.add_parser(
        "rotate-secrets", help="Generate a new session secret and update the env file",
    )
    rotate.add_argument(
        "--env-file",
        default=".env",
        help="Path to the environment file (default: %(default)s)",
    )
    rotate.set_defaults(func=_command_rotate_secrets)

    return parser


def main(argv: Iterable[str] | None = None) -> int:
    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.database_url:
        database.reset_session_factory(args.database_url)

    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1

    return handler(args)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
