#!/usr/bin/env python3
"""
Gatehouse admin CLI -- account operations that must not be reachable over HTTP.

Usage:
  python main.py create-admin --email admin@example.com --username admin
  python main.py unlock --email alice@example.com
  python main.py insights --email alice@example.com
  python main.py insights --email alice@example.com --json
  python main.py sessions --email alice@example.com

The CLI talks to the same databases as the API (AUTH_DB_URL, ANALYTICS_DB_URL)
and reads the same Settings. Passwords are prompted with getpass and never
accepted on the command line, where they would land in shell history.
"""

import argparse
import getpass
import json
import sys
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError

from analytics.risk import RiskScorer
from analytics.store import AnalyticsLog
from auth.credentials import CredentialVerifier
from auth.lockout import LockoutPolicy
from auth.models import Account, Role
from auth.sessions import SessionRegistry
from auth.store import AccountStore
from core.config import Settings, get_settings


def _open_stores(settings: Settings) -> tuple[AccountStore, AnalyticsLog]:
    store = AccountStore(settings.auth_db_url) if settings.auth_db_url else AccountStore()
    log = AnalyticsLog(settings.analytics_db_url) if settings.analytics_db_url else AnalyticsLog()
    return store, log


def _require_account(store: AccountStore, email: str) -> Optional[Account]:
    account = store.get_by_email(email)
    if account is None:
        print(f"  [!] No account with email '{email}'.", file=sys.stderr)
    return account


def _prompt_password(min_length: int) -> Optional[str]:
    password = getpass.getpass("  Password: ")
    if len(password) < min_length:
        print(f"  [!] Password must be at least {min_length} characters.", file=sys.stderr)
        return None
    if getpass.getpass("  Confirm:  ") != password:
        print("  [!] Passwords do not match.", file=sys.stderr)
        return None
    return password


def cmd_create_admin(args: argparse.Namespace, settings: Settings, store: AccountStore, log: AnalyticsLog) -> int:
    password = _prompt_password(settings.password_min_length)
    if password is None:
        return 1
    credentials = CredentialVerifier(store, rounds=settings.bcrypt_rounds, history_depth=settings.password_history_depth)
    account = Account(
        email=args.email,
        username=args.username or args.email.split("@", 1)[0],
        role=Role.admin.value,
        hashed_password=credentials.hash(password),
    )
    try:
        account_id = store.create_account(account)
    except IntegrityError:
        print(f"  [!] '{args.email}' is already registered.", file=sys.stderr)
        return 1
    print(f"  Admin account {account_id} created for {args.email.lower()}.")
    return 0


def cmd_unlock(args: argparse.Namespace, settings: Settings, store: AccountStore, log: AnalyticsLog) -> int:
    account = _require_account(store, args.email)
    if account is None:
        return 1
    LockoutPolicy(store, max_attempts=settings.max_login_attempts).record_success(account.id)
    print(f"  Lockout cleared for {account.email} (was {account.login_attempts} failed attempt(s)).")
    return 0


def cmd_insights(args: argparse.Namespace, settings: Settings, store: AccountStore, log: AnalyticsLog) -> int:
    account = _require_account(store, args.email)
    if account is None:
        return 1
    scorer = RiskScorer(log, max_addresses=settings.risk_max_addresses, max_devices=settings.risk_max_devices)
    insights = scorer.security_insights(
        account.id,
        window=timedelta(hours=settings.insights_window_hours),
        last_login=account.last_login,
        created_at=account.created_at,
    )
    if args.json:
        print(
            json.dumps(
                {
                    "email": account.email,
                    "security_score": insights.security_score,
                    "failed_attempts": insights.failed_attempts,
                    "successful_logins": insights.successful_logins,
                    "unique_ips": insights.unique_ips,
                    "unique_devices": insights.unique_devices,
                    "recommendations": insights.recommendations,
                    "last_login": insights.last_login.isoformat() if insights.last_login else None,
                    "account_age_days": insights.account_age_days,
                },
                indent=2,
            )
        )
        return 0
    print(f"\n  Security insights for {account.email} (last {settings.insights_window_hours}h)")
    print("  " + "-" * 40)
    print(f"  Score:            {insights.security_score}/100")
    print(f"  Failed attempts:  {insights.failed_attempts}")
    print(f"  Successful:       {insights.successful_logins}")
    print(f"  Unique IPs:       {insights.unique_ips}")
    print(f"  Unique devices:   {insights.unique_devices}")
    for line in insights.recommendations:
        print(f"  - {line}")
    print()
    return 0


def cmd_sessions(args: argparse.Namespace, settings: Settings, store: AccountStore, log: AnalyticsLog) -> int:
    account = _require_account(store, args.email)
    if account is None:
        return 1
    registry = SessionRegistry(
        store, max_sessions=settings.max_sessions, idle_window=timedelta(hours=settings.session_idle_hours)
    )
    sessions = registry.list_active(account.id)
    if not sessions:
        print(f"  No active sessions for {account.email}.")
        return 0
    for s in sessions:
        print(f"  {s.id}  {s.ip:<15}  last active {s.last_activity:%Y-%m-%d %H:%M}  {s.device[:60]}")
    return 0


_COMMANDS = {
    "create-admin": cmd_create_admin,
    "unlock": cmd_unlock,
    "insights": cmd_insights,
    "sessions": cmd_sessions,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="Gatehouse account administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email admin@example.com
  python main.py unlock --email alice@example.com
  python main.py insights --email alice@example.com --json
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("create-admin", help="Create an admin account (password is prompted)")
    p.add_argument("--email", required=True, help="Email address of the new admin")
    p.add_argument("--username", default=None, help="Display name (default: the email's local part)")

    p = sub.add_parser("unlock", help="Clear the failed-login lockout on an account")
    p.add_argument("--email", required=True)

    p = sub.add_parser("insights", help="Print the 24h security insights report for an account")
    p.add_argument("--email", required=True)
    p.add_argument("--json", action="store_true", help="Output structured JSON")

    p = sub.add_parser("sessions", help="List an account's active sessions")
    p.add_argument("--email", required=True)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    settings = get_settings()
    store, log = _open_stores(settings)
    try:
        return _COMMANDS[args.command](args, settings, store, log)
    finally:
        log.close()
        store.close()


if __name__ == "__main__":
    sys.exit(main())
