#!/usr/bin/env python3
"""
FitClub -- operator command line.

Day-to-day work goes through the HTTP API. These commands cover the jobs an
operator does from a shell: producing or checking a PIN hash for branch_staff, and
checking the stored procedures against a live database.

Usage:
  python main.py hash-pin 1234
  python main.py check-hash 1234 '$2b$12$...'
  python main.py verify-pin <staff-id> 1234
  python main.py eligibility <member-id>
  python main.py eligibility <member-id> --json

Environment variables (or .env):
  SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY   required for verify-pin and eligibility
  DEBUG=true                                lets the CLI run without SECRET_KEY
"""

import argparse
import json
import sys

from auth.tokens import hash_pin, is_valid_pin, verify_pin
from clubdb import ClubDatabase, ClubDatabaseError
from core.config import get_settings


def _club_db() -> ClubDatabase:
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_service_role_key:
        print("  [!] SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set.", file=sys.stderr)
        sys.exit(2)
    return ClubDatabase(settings.supabase_url, settings.supabase_service_role_key, settings.supabase_anon_key)


def _cmd_hash_pin(args: argparse.Namespace) -> int:
    if not is_valid_pin(args.pin):
        print("  [!] PIN must be exactly 4 digits.", file=sys.stderr)
        return 2
    print(hash_pin(args.pin))
    return 0


def _cmd_check_hash(args: argparse.Namespace) -> int:
    if verify_pin(args.pin, args.hashed):
        print("  PIN matches hash.")
        return 0
    print("  PIN does not match hash.")
    return 1


def _cmd_verify_pin(args: argparse.Namespace) -> int:
    if not is_valid_pin(args.pin):
        print("  [!] PIN must be exactly 4 digits.", file=sys.stderr)
        return 2
    result = _club_db().rpc_first("verify_staff_pin", {"p_staff_id": args.staff_id, "p_pin": args.pin}) or {}
    if args.json:
        print(json.dumps(result, indent=2, default=str))
    elif result.get("is_valid"):
        staff = result.get("staff_data") or {}
        name = f"{staff.get('first_name', '')} {staff.get('last_name', '')}".strip() or args.staff_id
        print(f"  PIN valid for {name} ({staff.get('role', 'unknown role')}).")
    else:
        print(f"  PIN rejected: {result.get('error_message') or 'no reason given'}")
    return 0 if result.get("is_valid") else 1


def _cmd_eligibility(args: argparse.Namespace) -> int:
    result = _club_db().rpc_first("check_renewal_eligibility", {"p_member_id": args.member_id}) or {}
    if args.json:
        print(json.dumps(result, indent=2, default=str))
        return 0
    if not result:
        print(f"  [!] No eligibility result for member {args.member_id}.")
        return 1
    verdict = "eligible" if result.get("is_eligible") else "not eligible"
    print(f"  Member {args.member_id}: {verdict} for renewal")
    print(f"    status:       {result.get('member_status')}")
    print(f"    expiry date:  {result.get('expiry_date')}")
    print(f"    days left:    {result.get('days_until_expiry')}")
    if result.get("message"):
        print(f"    note:         {result['message']}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="fitclub",
        description="FitClub operator commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py hash-pin 4821
  python main.py verify-pin 0b5e...-...-... 4821
  python main.py eligibility 7f3a...-...-... --json
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_hash = sub.add_parser("hash-pin", help="Print the bcrypt hash of a 4-digit staff PIN")
    p_hash.add_argument("pin", help="4-digit PIN")
    p_hash.set_defaults(func=_cmd_hash_pin)

    p_check = sub.add_parser("check-hash", help="Check a PIN against a stored pin_hash without touching the database")
    p_check.add_argument("pin", help="4-digit PIN")
    p_check.add_argument("hashed", metavar="HASH", help="bcrypt hash from branch_staff.pin_hash")
    p_check.set_defaults(func=_cmd_check_hash)

    p_verify = sub.add_parser("verify-pin", help="Check a staff PIN with the verify_staff_pin procedure")
    p_verify.add_argument("staff_id", metavar="STAFF-ID", help="branch_staff id")
    p_verify.add_argument("pin", help="4-digit PIN")
    p_verify.add_argument("--json", action="store_true", help="Print the raw procedure row as JSON")
    p_verify.set_defaults(func=_cmd_verify_pin)

    p_elig = sub.add_parser("eligibility", help="Check whether a member can renew")
    p_elig.add_argument("member_id", metavar="MEMBER-ID", help="members id")
    p_elig.add_argument("--json", action="store_true", help="Print the raw procedure row as JSON")
    p_elig.set_defaults(func=_cmd_eligibility)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    try:
        return args.func(args)
    except ClubDatabaseError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
