#!/usr/bin/env python3
"""
LoginGuard -- operator CLI for verification codes and login sessions.

Usage:
  python main.py issue-code +15551234567
  python main.py verify-code +15551234567 482913
  python main.py sessions 6f1c2a7e-0d7b-4d35-9a53-0f4f7b0c9e21
  python main.py revoke 0b8e5c52-5f3e-4f0e-9d0c-8c1d2c3b4a59
  python main.py revoke-all 6f1c2a7e-0d7b-4d35-9a53-0f4f7b0c9e21
  python main.py sweep
  python main.py sweep --loop --interval 3600

Environment variables:
  SECRET_KEY     Required unless DEBUG=true (see core/config.py).
  DATABASE_URL   SQLAlchemy URL. Defaults to loginguard.db next to this file.

Exit status: 0 success, 1 rejected / not found, 2 storage unavailable.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional
from uuid import UUID

from core.config import get_settings
from core.errors import StorageUnavailable
from core.phone import normalize_phone_number
from otp.issuer import CredentialIssuer
from otp.store import CredentialStore
from sessions.store import SessionStore
from sessions.sweeper import ExpirySweeper

logger = logging.getLogger("loginguard.cli")

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_UNAVAILABLE = 2


def _uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not a valid UUID") from None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loginguard",
        description="Manage verification codes and login sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py issue-code 9876543210
  python main.py sessions 6f1c2a7e-0d7b-4d35-9a53-0f4f7b0c9e21
  DATABASE_URL=postgresql://user:pw@host/db python main.py sweep
        """,
    )
    parser.add_argument(
        "--db-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("issue-code", help="Issue a verification code and print it")
    p.add_argument("phone", help="Phone number; national numbers get the default country code")

    p = sub.add_parser("verify-code", help="Verify (and consume) a verification code")
    p.add_argument("phone")
    p.add_argument("code")

    p = sub.add_parser("sessions", help="List live sessions for a principal, newest first")
    p.add_argument("principal_id", type=_uuid)

    p = sub.add_parser("revoke", help="Delete one session")
    p.add_argument("session_id", type=_uuid)

    p = sub.add_parser("revoke-all", help="Delete every session for a principal")
    p.add_argument("principal_id", type=_uuid)

    p = sub.add_parser("sweep", help="Delete expired sessions and codes")
    p.add_argument("--loop", action="store_true", help="Keep sweeping until interrupted")
    p.add_argument(
        "--interval",
        type=int,
        default=None,
        metavar="SECONDS",
        help="Seconds between sweeps with --loop (default: SWEEP_INTERVAL_SECONDS)",
    )
    return parser


def _run(args: argparse.Namespace, db_url: Optional[str]) -> int:
    if args.command in ("issue-code", "verify-code"):
        try:
            phone = normalize_phone_number(args.phone, get_settings().default_country_code)
        except ValueError as e:
            print(f"  [!] {e}")
            return EXIT_REJECTED
        store = CredentialStore(db_url)
        try:
            issuer = CredentialIssuer(store)
            if args.command == "issue-code":
                print(issuer.issue_code(phone))
                return EXIT_OK
            result = issuer.verify_code(phone, args.code)
            if not result:
                print(f"  [!] {result.public_message} ({result.reason.value})")
                return EXIT_REJECTED
            print(f"Verified {phone}")
            return EXIT_OK
        finally:
            store.close()

    if args.command == "sweep":
        sessions, credentials = SessionStore(db_url), CredentialStore(db_url)
        try:
            sweeper = ExpirySweeper(sessions, credentials)
            if args.loop:
                try:
                    asyncio.run(sweeper.run_forever(args.interval))
                except KeyboardInterrupt:
                    pass
                return EXIT_OK
            result = sweeper.run_once()
            print(f"Removed {result.sessions_deleted} session(s), {result.credentials_deleted} code(s).")
            return EXIT_OK
        finally:
            sessions.close()
            credentials.close()

    store = SessionStore(db_url)
    try:
        if args.command == "sessions":
            live = store.list_live(args.principal_id)
            if not live:
                print("No live sessions.")
                return EXIT_OK
            for s in live:
                print(
                    f"{s.session_id}  {s.device_label or '-':<20}  "
                    f"created {s.created_at:%Y-%m-%d %H:%M}  "
                    f"last seen {s.last_seen_at:%Y-%m-%d %H:%M}  "
                    f"expires {s.expires_at:%Y-%m-%d}"
                )
            return EXIT_OK
        if args.command == "revoke":
            if not store.delete(args.session_id):
                print(f"  [!] No session {args.session_id}")
                return EXIT_REJECTED
            print(f"Revoked {args.session_id}")
            return EXIT_OK
        # revoke-all
        count = store.delete_all_for_principal(args.principal_id)
        print(f"Revoked {count} session(s)")
        return EXIT_OK
    finally:
        store.close()


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not args.command:
        parser.print_help()
        return EXIT_OK

    try:
        return _run(args, args.db_url)
    except StorageUnavailable as e:
        print(f"  [!] {e}. Try again later.")
        return EXIT_UNAVAILABLE


if __name__ == "__main__":
    sys.exit(main())
