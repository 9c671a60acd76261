#!/usr/bin/env python3
"""
SessionAuth -- command-line driver for the authentication core.

Runs one AuthService operation and prints its result envelope as JSON.
Exit status is 0 when the envelope has status true, 1 otherwise.

Usage:
  python main.py register alice alice@example.com pass123 [--phone +15550100]
  python main.py login alice@example.com pass123
  python main.py refresh <refresh-token>
  python main.py logout <user-id> <refresh-token>
  python main.py logout-all <user-id>
  python main.py forgot-password alice@example.com
  python main.py reset-password <user-id> <otp> <new-password>
  python main.py me <user-id>

Environment variables (see core/config.py for the full list):
  DEBUG                  true to auto-generate signing secrets for local use
  ACCESS_TOKEN_SECRET    HS256 key for access tokens (>= 32 chars)
  REFRESH_TOKEN_SECRET   HS256 key for refresh tokens (>= 32 chars, different)
  DATABASE_URL           SQLAlchemy URL of the user store
"""

import argparse
import json
import logging
import sys
from typing import Optional

from auth.schemas import AuthResult
from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("sessionauth.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sessionauth",
        description="Register, log in, rotate and revoke sessions, and reset passwords.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--db-url", metavar="URL", help="Override DATABASE_URL for this run")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    p = sub.add_parser("register", help="Create an account and open a first session")
    p.add_argument("username")
    p.add_argument("email")
    p.add_argument("password")
    p.add_argument("--phone", help="Phone number for SMS reset codes")

    p = sub.add_parser("login", help="Open a new session with email and password")
    p.add_argument("email")
    p.add_argument("password")

    p = sub.add_parser("refresh", help="Rotate a refresh token into a new token pair")
    p.add_argument("refresh_token")

    p = sub.add_parser("logout", help="Revoke the session behind one refresh token")
    p.add_argument("user_id")
    p.add_argument("refresh_token")

    p = sub.add_parser("logout-all", help="Revoke every session for a user")
    p.add_argument("user_id")

    p = sub.add_parser("forgot-password", help="Send a password reset code")
    p.add_argument("email")

    p = sub.add_parser("reset-password", help="Reset a password with a reset code")
    p.add_argument("user_id")
    p.add_argument("otp")
    p.add_argument("new_password")

    p = sub.add_parser("me", help="Show a user's public profile")
    p.add_argument("user_id")

    return parser


def run(service: AuthService, args: argparse.Namespace) -> AuthResult:
    """Dispatch parsed arguments to the matching AuthService operation."""
    command = args.command
    if command == "register":
        return service.register(args.username, args.email, args.password, phone_number=args.phone)
    if command == "login":
        return service.login(args.email, args.password)
    if command == "refresh":
        return service.refresh(args.refresh_token)
    if command == "logout":
        return service.logout(args.user_id, args.refresh_token)
    if command == "logout-all":
        return service.logout_all(args.user_id)
    if command == "forgot-password":
        return service.forgot_password(args.email)
    if command == "reset-password":
        return service.verify_otp_and_reset(args.user_id, args.otp, args.new_password)
    return service.me(args.user_id)


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    settings = get_settings()
    store = UserStore(args.db_url or settings.database_url, timeout=settings.store_timeout_seconds)
    try:
        result = run(AuthService(store, settings), args)
    finally:
        store.close()

    print(json.dumps(result.to_envelope(), indent=2))
    return 0 if result.status else 1


if __name__ == "__main__":
    sys.exit(main())
