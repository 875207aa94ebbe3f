#!/usr/bin/env python3
"""
Civic Desk Management CLI

Commands for operating the reporting service:
- init-db: Create the PostgreSQL tables
- seed-demo: Load the demo identities and sample reports
- create-agent: Create a municipality agent account
- list-reports: Print the report feed
- export-reports: Export all reports to JSON
- hash-password: Generate an Argon2 password hash
- health-check: Run store and environment checks

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage init-db
    python -m tools.manage create-agent --email ward5@bhimdatta.gov.np --name "Ward 5 Office"
    python -m tools.manage list-reports --status pending
"""

import argparse
import json
import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def _services():
    from civicdesk.web.shared_state import get_services
    return get_services()


def cmd_init_db(args):
    """Create tables and indexes from schema.sql."""
    from civicdesk.db.config import get_database_config
    from civicdesk.db.postgres import apply_schema
    from civicdesk.web.shared_state import connection_factory_for

    config = get_database_config()
    if config is None:
        print("Error: No database configured. Set DATABASE_URL or DATABASE_HOST.")
        return 1

    print(f"Applying schema to {config.to_url(include_password=False)} ...")
    apply_schema(connection_factory_for(config))
    print("[OK] Schema applied")
    return 0


def cmd_seed_demo(args):
    """Seed demo identities and sample reports into empty stores."""
    from civicdesk.web.shared_state import DEMO_PASSWORD, seed_demo_data

    reports, accounts = _services()
    if seed_demo_data(reports, accounts, force=True):
        print(f"[OK] Seeded {accounts.identity_count} identities and {reports.report_count} reports")
        print(f"  Demo password for both accounts: {DEMO_PASSWORD}")
        return 0

    print("Stores are not empty; nothing seeded.")
    return 1


def cmd_create_agent(args):
    """Create a municipality agent."""
    from civicdesk.core import CivicDeskError
    from civicdesk.schemas import Role

    if args.password:
        password = args.password
    else:
        import getpass
        password = getpass.getpass("Agent password: ")

    _, accounts = _services()
    try:
        agent = accounts.create_identity(args.email, password, args.name, role=Role.AGENT)
    except CivicDeskError as e:
        print(f"Error: {e}")
        return 1

    print("\n[OK] Agent created!")
    print(f"  ID: {agent.id}")
    print(f"  Name: {agent.name}")
    print(f"  Email: {agent.email}")
    return 0


def cmd_list_reports(args):
    """Print the feed, most recently updated first."""
    from civicdesk.schemas import ReportStatus

    status = None
    if args.status and args.status != "all":
        try:
            status = ReportStatus(args.status)
        except ValueError:
            print(f"Error: Unknown status: {args.status}")
            return 1

    reports, _ = _services()
    items = reports.list_reports(query=args.query or "", status=status)
    for report in items:
        print(
            f"{report.id}  {report.status.label:<17}  "
            f"{report.updated_at:%Y-%m-%d %H:%M}  {report.title}  ({report.location})"
        )
    print(f"\n{len(items)} report(s)")
    return 0


def cmd_export_reports(args):
    """Export all reports to a JSON file."""
    reports, _ = _services()
    items = reports.list_reports()

    export_data = [r.model_dump(mode="json") for r in items]

    output_file = args.output or "reports_export.json"
    with open(output_file, "w") as f:
        json.dump(export_data, f, indent=2)

    print(f"[OK] Exported {len(items)} reports to {output_file}")
    return 0


def cmd_hash_password(args):
    """Generate an Argon2 password hash."""
    from civicdesk.core.passwords import hash_password

    if args.password:
        password = args.password
    else:
        import getpass
        password = getpass.getpass("Enter password: ")

    print("\nPassword hash:")
    print(hash_password(password))
    return 0


def cmd_health_check(args):
    """Run comprehensive health checks."""
    from civicdesk.db.config import StoreDriver, get_database_config, get_store_driver
    from civicdesk.observability import check_health

    driver = get_store_driver()

    print("=== Civic Desk Health Check ===\n")

    print("Database:")
    config = get_database_config()
    if driver == StoreDriver.POSTGRES and config is not None:
        print("  Type: PostgreSQL")
        print(f"  Host: {config.host}:{config.port}/{config.database}")
    else:
        print("  Type: In-Memory")

    reports, accounts = _services()
    status = check_health(report_store=reports.store, identity_store=accounts.store)
    print("\nStores:")
    for name, check in status.checks.items():
        if check["status"] == "healthy":
            detail = f" ({check['count']} records)" if "count" in check else ""
            print(f"  {name}: [OK]{detail}")
        else:
            print(f"  {name}: [FAIL] {check.get('error')}")

    print("\nEnvironment:")
    session_secret = os.environ.get("CIVICDESK_SESSION_SECRET", "")
    if len(session_secret) >= 16:
        print("  Session secret: [OK] Set")
    else:
        print("  Session secret: [WARN] Using default (development)")

    print("\n=== Health Check Complete ===")
    return 0 if status.healthy else 1


def main():
    parser = argparse.ArgumentParser(
        description="Civic Desk Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-db", help="Create PostgreSQL tables")
    subparsers.add_parser("seed-demo", help="Seed demo identities and reports")

    p_agent = subparsers.add_parser("create-agent", help="Create a municipality agent")
    p_agent.add_argument("--email", required=True, help="Agent login email")
    p_agent.add_argument("--name", required=True, help="Agent display name")
    p_agent.add_argument("--password", help="Password (prompts if not provided)")

    p_list = subparsers.add_parser("list-reports", help="Print the report feed")
    p_list.add_argument("--status", help="pending, watched, observed, success or all")
    p_list.add_argument("--query", "-q", help="Search title, description and location")

    p_export = subparsers.add_parser("export-reports", help="Export all reports to JSON")
    p_export.add_argument("--output", "-o", help="Output file (default: reports_export.json)")

    p_hash = subparsers.add_parser("hash-password", help="Generate an Argon2 password hash")
    p_hash.add_argument("--password", help="Password to hash (prompts if not provided)")

    subparsers.add_parser("health-check", help="Run comprehensive health checks")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "init-db": cmd_init_db,
        "seed-demo": cmd_seed_demo,
        "create-agent": cmd_create_agent,
        "list-reports": cmd_list_reports,
        "export-reports": cmd_export_reports,
        "hash-password": cmd_hash_password,
        "health-check": cmd_health_check,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())
