#!/usr/bin/env python3
"""
Campus RBAC -- authentication and role-based access control for university services.

Usage:
  python main.py init-rbac
  python main.py init-rbac --catalog catalog.json
  python main.py init-rbac --initiator deploy-bot
  python main.py init-rbac --json

Environment variables (see core/config.py for the full list):
  DATABASE_URL             SQLAlchemy URL of the store (default: campus_rbac.db beside the package)
  SECRET_KEY               JWT signing key; required unless DEBUG=true
  FALLBACK_ADMIN_EMAIL     Email of the bootstrap admin (default: system@university.edu)
  FALLBACK_ADMIN_PASSWORD  Password for a newly created bootstrap admin; generated when unset
"""

import argparse
import json
import logging
import sys
from typing import Optional

from auth.errors import PersistenceError, ValidationError
from auth.store import UserStore
from core.config import get_settings
from rbac.bootstrap import RBACReport, initialize_rbac
from rbac.catalog import Catalog
from rbac.store import RBACStore

logger = logging.getLogger("campusrbac.cli")


def _print_section(title: str, section_key: str, report_section) -> None:
    print(f"  {title}: {report_section.created} created, {report_section.updated} updated")
    for item in report_section.errors:
        print(f"    [!] {item.get(section_key)}: {item['error']}")


def print_report(report: RBACReport) -> None:
    """Write a human-readable bootstrap summary to stdout."""
    print("\nCampus RBAC -- Initialization Report")
    print("-" * 40)
    _print_section("Permissions", "permission", report.permissions)
    _print_section("Roles", "role", report.roles)
    if report.admin is not None:
        state = "created" if report.admin.created else "already present"
        print(f"  Fallback admin: {report.admin.email} ({state})")
        if report.admin.temporary_password:
            print()
            print(f"  [!] Temporary password: {report.admin.temporary_password}")
            print("  [!] It is shown once and must be changed at first login (POST /api/v1/auth/password).")
    if not report.ok:
        print("\n  [!] Some catalog entries were not applied. Fix them and re-run; applied entries are kept.")
    print()


def init_rbac(args: argparse.Namespace) -> int:
    """Run the bootstrap. Returns the process exit code."""
    catalog: Optional[Catalog] = None
    if args.catalog:
        try:
            catalog = Catalog.from_file(args.catalog)
        except ValidationError as exc:
            print(f"  [!] Invalid catalog '{args.catalog}': {exc}", file=sys.stderr)
            return 1

    rbac_store: Optional[RBACStore] = None
    user_store: Optional[UserStore] = None
    try:
        rbac_store = RBACStore()
        user_store = UserStore()
        report = initialize_rbac(rbac_store, user_store, initiator=args.initiator, catalog=catalog)
    except PersistenceError as exc:
        print(f"  [!] RBAC initialization failed: {exc}", file=sys.stderr)
        return 1
    finally:
        if rbac_store is not None:
            rbac_store.close()
        if user_store is not None:
            user_store.close()

    if args.json:
        data = report.to_dict()
        # --json is for automation; the one-time password is still surfaced so
        # a pipeline can hand it to a secret store.
        if report.admin is not None and report.admin.temporary_password:
            data["admin"]["temporary_password"] = report.admin.temporary_password
        print(json.dumps(data, indent=2))
    else:
        print_report(report)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="campus-rbac",
        description="Role-based access control for university services.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-rbac
  python main.py init-rbac --catalog catalog.json --initiator deploy-bot
  DATABASE_URL=postgresql://user:pw@db/campus python main.py init-rbac --json
        """,
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    init_parser = subparsers.add_parser(
        "init-rbac",
        help="Seed permissions and roles, and create the fallback admin if missing",
    )
    init_parser.add_argument(
        "--catalog",
        metavar="PATH",
        help="JSON file with {\"permissions\": [...], \"roles\": [...]} (default: built-in university catalog)",
    )
    init_parser.add_argument(
        "--initiator",
        default="system",
        metavar="NAME",
        help="Identity recorded as created_by on new catalog rows (default: system)",
    )
    init_parser.add_argument(
        "--json",
        action="store_true",
        help="Output the report as JSON",
    )
    init_parser.set_defaults(handler=init_rbac)

    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 1

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
