# app/cli/retention.py
"""
CLI commands for retention management.

Usage:
    python -m app.cli.retention status
    python -m app.cli.retention list-policies
    python -m app.cli.retention run
    python -m app.cli.retention run --policy export-requests-cleanup
    python -m app.cli.retention expire-exports
    python -m app.cli.retention purge-project <project-id> --confirm
"""

import argparse
import sys

from dotenv import load_dotenv

load_dotenv()


def get_db_session():
    """Get a database session."""
    from app.database import SessionLocal

    return SessionLocal()


def _print_sweep(label: str, result) -> None:
    print(f"{label}")
    print(f"  Processed: {result.items_processed}")
    print(f"  Deleted: {result.items_deleted}")
    print(f"  Storage freed: {result.storage_freed} bytes")
    if result.errors:
        print("  Errors:")
        for error in result.errors:
            print(f"    - {error}")


def cmd_status(args):
    """Show configured policies and the next scheduled run."""
    from app.services.retention import get_retention_status

    status = get_retention_status()

    print("\n=== Retention Status ===\n")
    print(f"Policies: {status['total_policies']} ({status['enabled_policies']} enabled)")
    print(f"Next execution: {status['next_execution'].isoformat()}Z")
    print()


def cmd_list_policies(args):
    """List all retention policies."""
    from app.services.retention import get_retention_policies, validate_policy

    print("\n=== Retention Policies ===\n")
    for policy in get_retention_policies():
        status = "[ENABLED]" if policy.enabled else "[DISABLED]"
        print(f"{policy.name} {status}")
        print(f"  {policy.description}")
        print(f"  Retention: {policy.retention_period_days} days")
        print(f"  Applies to: archived={policy.apply_to_archived} active={policy.apply_to_active}")
        print(f"  Data types: {', '.join(policy.data_types)}")
        problems = validate_policy(policy)
        if problems:
            print(f"  INVALID: {'; '.join(problems)}")
        print()


def cmd_run(args):
    """Run retention policies (all enabled, or one by name)."""
    from app.services.retention import (
        execute_all_policies,
        execute_policy,
        expire_ready_exports,
        get_retention_policy,
    )
    from app.storage.factory import get_storage_provider

    storage = get_storage_provider()
    db = get_db_session()
    try:
        failed = False

        if not args.skip_expiry:
            expired = expire_ready_exports(db, storage=storage)
            _print_sweep("\nExpired exports", expired)
            failed = failed or bool(expired.errors)

        if args.policy:
            policy = get_retention_policy(args.policy)
            if not policy:
                print(f"Error: Policy '{args.policy}' not found")
                sys.exit(1)
            reports = [execute_policy(db, policy, storage=storage)]
        else:
            reports = execute_all_policies(db, storage=storage)

        for report in reports:
            _print_sweep(f"\nPolicy {report.policy.name}", report)
            failed = failed or not report.success

        print()
        if failed:
            sys.exit(1)
    finally:
        db.close()


def cmd_expire_exports(args):
    """Expire ready exports past their expiry."""
    from app.services.retention import expire_ready_exports
    from app.storage.factory import get_storage_provider

    db = get_db_session()
    try:
        result = expire_ready_exports(db, storage=get_storage_provider())
        _print_sweep("\nExpired exports", result)
        print()
        if result.errors:
            sys.exit(1)
    finally:
        db.close()


def cmd_cleanup_stale_exports(args):
    """Fail exports orphaned in queued/processing."""
    from app.config import get_settings
    from app.services.export.export_job_manager import ExportJobManager

    db = get_db_session()
    try:
        hours = args.hours or get_settings().EXPORT_STALE_HOURS
        count = ExportJobManager.cleanup_stale_exports(db, stale_hours=hours)
        print(f"Marked {count} stale exports as failed")
    finally:
        db.close()


def cmd_purge_project(args):
    """Permanently delete one project."""
    from app.errors import LifecycleError
    from app.services.retention import delete_project_completely
    from app.storage.factory import get_storage_provider

    if not args.confirm:
        print("Error: purge-project requires --confirm")
        print("This permanently deletes the project, its stories, media and exports.")
        sys.exit(1)

    db = get_db_session()
    try:
        try:
            result = delete_project_completely(db, get_storage_provider(), args.project_id)
        except LifecycleError as e:
            print(f"Error: {e.message}")
            sys.exit(1)

        print(f"\nPurged project {result.project_id}")
        print(f"  Blobs deleted: {result.blobs_deleted}")
        print(f"  Storage freed: {result.storage_freed} bytes")
        print("  Records deleted:")
        for table, count in result.records_deleted.items():
            print(f"    {table}: {count}")
        print()
    finally:
        db.close()


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Archival Lifecycle Retention CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Daily cron entry (02:00 UTC)
  python -m app.cli.retention run

  # Run one policy only
  python -m app.cli.retention run --policy temp-files-cleanup

  # Delete a project right away
  python -m app.cli.retention purge-project 6f1c... --confirm
        """,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # status command
    status_parser = subparsers.add_parser("status", help="Show retention status")
    status_parser.set_defaults(func=cmd_status)

    # list-policies command
    list_parser = subparsers.add_parser("list-policies", help="List all policies")
    list_parser.set_defaults(func=cmd_list_policies)

    # run command
    run_parser = subparsers.add_parser("run", help="Run retention policies")
    run_parser.add_argument("--policy", help="Run only this policy")
    run_parser.add_argument("--skip-expiry", action="store_true", help="Do not expire overdue exports first")
    run_parser.set_defaults(func=cmd_run)

    # expire-exports command
    expire_parser = subparsers.add_parser("expire-exports", help="Expire ready exports past their expiry")
    expire_parser.set_defaults(func=cmd_expire_exports)

    # cleanup-stale-exports command
    stale_parser = subparsers.add_parser("cleanup-stale-exports", help="Fail exports stuck in queued/processing")
    stale_parser.add_argument("--hours", type=int, default=None, help="Age threshold (default: EXPORT_STALE_HOURS)")
    stale_parser.set_defaults(func=cmd_cleanup_stale_exports)

    # purge-project command
    purge_parser = subparsers.add_parser("purge-project", help="Permanently delete a project")
    purge_parser.add_argument("project_id", help="Project UUID")
    purge_parser.add_argument("--confirm", action="store_true", help="Confirm permanent deletion")
    purge_parser.set_defaults(func=cmd_purge_project)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
