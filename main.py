#!/usr/bin/env python3
"""
AccountDesk operator CLI -- inspect and seed the application tables.

The web UI can only be administered by an admin, so the first admin has to
be promoted from here after signing up normally.

Usage:
  python main.py users
  python main.py users --json
  python main.py promote alice@example.com admin
  python main.py audit
  python main.py audit --limit 20

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the application tables (defaults to the
                local SQLite file used in development).
"""

import argparse
import json
from dataclasses import asdict
from typing import Optional

from admin.service import AdminService
from auth.models import ROLES
from auth.store import ProfileStore


def _print_users(store: ProfileStore, as_json: bool) -> int:
    profiles = store.list_profiles()
    if as_json:
        print(json.dumps([asdict(p) for p in profiles], indent=2))
        return 0
    if not profiles:
        print("  No profiles yet. Sign up through the web UI first.")
        return 0
    print(f"\n  {'EMAIL':<36} {'ROLE':<10} {'ACTIVE':<7} CREATED")
    print("  " + "─" * 72)
    for p in profiles:
        active = "yes" if p.is_active else "no"
        print(f"  {p.email:<36} {p.role:<10} {active:<7} {(p.created_at or '')[:10]}")
    print(f"\n  {len(profiles)} profile(s).\n")
    return 0


def _promote(store: ProfileStore, email: str, role: str) -> int:
    """Set a profile's role. Used to create the first admin."""
    if role not in ROLES:
        print(f"  [!] Unknown role '{role}'. Choose one of: {', '.join(ROLES)}.")
        return 2
    profile = store.get_profile_by_email(email)
    if profile is None:
        print(f"  [!] No profile for '{email}'. The user must sign in once before being promoted.")
        return 1
    store.update_profile(profile.id, role=role)
    AdminService(store).log_action(
        "UPDATE_USER_ROLE",
        {"userId": profile.id, "newRole": role, "via": "cli"},
        resource_type="user_profile",
        resource_id=profile.id,
    )
    print(f"  {profile.email}: {profile.role} -> {role}")
    return 0


def _print_audit(store: ProfileStore, limit: int) -> int:
    entries = AdminService(store).get_audit_logs(limit=limit)
    if not entries:
        print("  Audit log is empty.")
        return 0
    for e in entries:
        details = json.dumps(e.details) if e.details else ""
        print(f"  {(e.created_at or '')[:19]}  {e.action:<18} {e.user_id or '-':<36} {details}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="accountdesk",
        description="Operator commands for the AccountDesk application tables.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py users
  python main.py promote alice@example.com admin
  python main.py audit --limit 20
        """,
    )
    parser.add_argument(
        "--db",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command")

    users = sub.add_parser("users", help="List user profiles")
    users.add_argument("--json", action="store_true", help="Output structured JSON")

    promote = sub.add_parser("promote", help="Change a user's role")
    promote.add_argument("email", help="Email address of the profile")
    promote.add_argument("role", help=f"New role ({', '.join(ROLES)})")

    audit = sub.add_parser("audit", help="Show the most recent audit log entries")
    audit.add_argument("--limit", type=int, default=50, help="Number of entries to show (default: 50)")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    store = ProfileStore(db_url=args.db)
    try:
        if args.command == "users":
            return _print_users(store, args.json)
        if args.command == "promote":
            return _promote(store, args.email, args.role)
        return _print_audit(store, args.limit)
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
