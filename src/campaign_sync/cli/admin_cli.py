"""
Admin CLI for the campaign sync store.

Usage:
    campaign-sync-admin init-db [--schema-file docker/init-db.sql]
    campaign-sync-admin status
    campaign-sync-admin add-tenant --name "Acme Dental"
    campaign-sync-admin list-tenants [--all]
    campaign-sync-admin deactivate-tenant --tenant-id <id>
    campaign-sync-admin list-windows [--source <source>] [--tenant-id <id>] [--kind file|month]
    campaign-sync-admin reset-window --source <source> --window-key <key> [--tenant-id <id>]
    campaign-sync-admin reset-source --source <source> --yes
    campaign-sync-admin list-campaigns [--source <source>] [--tenant-id <id>] [--unlinked-only]
    campaign-sync-admin link-campaign --campaign-id <id> --tenant-id <id>
    campaign-sync-admin unlink-campaign --campaign-id <id> [--no-pin]
"""

import argparse
import sys

from campaign_sync.core.errors import ConfigurationError
from campaign_sync.observability.logger import get_logger
from campaign_sync.utils.validation import ValidationError, validate_source
from campaign_sync.warehouse.fetch_tracker import FetchWindowTracker
from campaign_sync.warehouse.merge import RecordMerger
from campaign_sync.warehouse.schema import DEFAULT_SCHEMA_FILE, apply_schema, table_counts
from campaign_sync.warehouse.tenants import TenantStore

from .common import add_common_arguments, format_timestamp, open_pool, settings_from_args

logger = get_logger(__name__)


def init_db_command(args, pool):
    """Apply the schema file."""
    apply_schema(pool, args.schema_file)
    print(f"Schema applied from {args.schema_file}")


def status_command(args, pool):
    counts = table_counts(pool)
    print(f"\n{'Table':<20} {'Rows':>10}")
    print(f"{'-' * 31}")
    for table, count in counts.items():
        print(f"{table:<20} {count:>10}")
    print()


def add_tenant_command(args, pool):
    tenant = TenantStore(pool).add_tenant(args.name)
    print(f"Tenant {tenant.tenant_id}: {tenant.name}")


def list_tenants_command(args, pool):
    tenants = TenantStore(pool).list_tenants(active_only=not args.all)
    if not tenants:
        print("No tenants found.")
        return

    print(f"\n{'ID':<6} {'Name':<40} {'Active':<8} {'Created'}")
    print(f"{'-' * 80}")
    for tenant in tenants:
        print(
            f"{tenant.tenant_id:<6} {tenant.name:<40} "
            f"{'yes' if tenant.is_active else 'no':<8} {format_timestamp(tenant.created_at)}"
        )
    print()


def deactivate_tenant_command(args, pool):
    if TenantStore(pool).set_active(args.tenant_id, False):
        print(f"Tenant {args.tenant_id} deactivated; scheduled syncs will skip it.")
    else:
        print(f"Tenant {args.tenant_id} not found.")
        sys.exit(1)


def list_windows_command(args, pool):
    source = validate_source(args.source) if args.source else None
    windows = FetchWindowTracker(pool).list_windows(source, tenant_id=args.tenant_id, kind=args.kind)
    if not windows:
        print("No fetch windows recorded.")
        return

    print(f"\n{'Source':<15} {'Tenant':<8} {'Window':<40} {'Records':>8}  {'From':<20} {'To':<20}")
    print(f"{'-' * 115}")
    for window in windows:
        tenant = str(window.tenant_id) if window.tenant_id is not None else "-"
        print(
            f"{window.source.value:<15} {tenant:<8} {window.window_key:<40} {window.record_count:>8}  "
            f"{format_timestamp(window.window_from):<20} {format_timestamp(window.window_to):<20}"
        )
    print(f"\nTotal: {len(windows)}\n")


def reset_window_command(args, pool):
    source = validate_source(args.source)
    deleted = FetchWindowTracker(pool).reset_window(source, args.tenant_id, args.window_key)
    if deleted:
        print(f"Window {args.window_key} will be fetched again on the next {source.value} sync.")
    else:
        print(f"No window {args.window_key} recorded for {source.value}.")


def reset_source_command(args, pool):
    """Delete all data and fetch markers of one source."""
    source = validate_source(args.source)
    if not args.yes:
        print(f"This deletes every record, campaign and fetch window of {source.value}.")
        print("Re-run with --yes to confirm.")
        sys.exit(1)

    deleted = RecordMerger(pool).reset_source(source)
    windows = FetchWindowTracker(pool).reset_source(source)
    print(
        f"Reset {source.value}: {deleted['records']} records, "
        f"{deleted['campaigns']} campaigns and {windows} fetch windows deleted."
    )


def list_campaigns_command(args, pool):
    source = validate_source(args.source) if args.source else None
    campaigns = RecordMerger(pool).list_campaigns(
        source, tenant_id=args.tenant_id, unlinked_only=args.unlinked_only
    )
    if not campaigns:
        print("No campaigns found.")
        return

    print(f"\n{'ID':<8} {'Source':<15} {'Tenant':<8} {'Manual':<7} {'Records':>8}  {'Name'}")
    print(f"{'-' * 90}")
    for campaign in campaigns:
        tenant = str(campaign.tenant_id) if campaign.tenant_id is not None else "-"
        print(
            f"{campaign.campaign_id:<8} {campaign.source.value:<15} {tenant:<8} "
            f"{'yes' if campaign.manually_linked else 'no':<7} {campaign.record_count:>8}  {campaign.campaign_name}"
        )
    print()


def link_campaign_command(args, pool):
    if TenantStore(pool).get_tenant(args.tenant_id) is None:
        print(f"Tenant {args.tenant_id} not found.")
        sys.exit(1)
    if RecordMerger(pool).link_campaign(args.campaign_id, args.tenant_id):
        print(f"Campaign {args.campaign_id} linked to tenant {args.tenant_id}.")
    else:
        print(f"Campaign {args.campaign_id} not found.")
        sys.exit(1)


def unlink_campaign_command(args, pool):
    if RecordMerger(pool).unlink_campaign(args.campaign_id, pin=not args.no_pin):
        print(f"Campaign {args.campaign_id} unlinked.")
    else:
        print(f"Campaign {args.campaign_id} not found.")
        sys.exit(1)


COMMANDS = {
    "init-db": init_db_command,
    "status": status_command,
    "add-tenant": add_tenant_command,
    "list-tenants": list_tenants_command,
    "deactivate-tenant": deactivate_tenant_command,
    "list-windows": list_windows_command,
    "reset-window": reset_window_command,
    "reset-source": reset_source_command,
    "list-campaigns": list_campaigns_command,
    "link-campaign": link_campaign_command,
    "unlink-campaign": unlink_campaign_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Campaign sync administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    add_common_arguments(parser)

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init-db", help="Create tables and indexes")
    init_parser.add_argument(
        "--schema-file",
        default=DEFAULT_SCHEMA_FILE,
        help=f"DDL file to apply (default: {DEFAULT_SCHEMA_FILE})"
    )

    subparsers.add_parser("status", help="Row counts of the pipeline tables")

    add_tenant_parser = subparsers.add_parser("add-tenant", help="Create a tenant")
    add_tenant_parser.add_argument("--name", required=True, help="Tenant name used for correlation")

    list_tenants_parser = subparsers.add_parser("list-tenants", help="List tenants")
    list_tenants_parser.add_argument("--all", action="store_true", help="Include inactive tenants")

    deactivate_parser = subparsers.add_parser("deactivate-tenant", help="Stop syncing a tenant")
    deactivate_parser.add_argument("--tenant-id", type=int, required=True, help="Tenant ID")

    windows_parser = subparsers.add_parser("list-windows", help="List fetched files and months")
    windows_parser.add_argument("--source", help="Filter by source (optional)")
    windows_parser.add_argument("--tenant-id", type=int, help="Filter by tenant (optional)")
    windows_parser.add_argument("--kind", choices=["file", "month"], help="Filter by window kind (optional)")

    reset_window_parser = subparsers.add_parser("reset-window", help="Fetch one file or month again")
    reset_window_parser.add_argument("--source", required=True, help="Source tag")
    reset_window_parser.add_argument("--window-key", required=True, help="File name or YYYY-MM")
    reset_window_parser.add_argument("--tenant-id", type=int, help="Tenant (month windows)")

    reset_source_parser = subparsers.add_parser("reset-source", help="Delete all data of a source")
    reset_source_parser.add_argument("--source", required=True, help="Source tag")
    reset_source_parser.add_argument("--yes", action="store_true", help="Confirm the deletion")

    campaigns_parser = subparsers.add_parser("list-campaigns", help="List campaigns")
    campaigns_parser.add_argument("--source", help="Filter by source (optional)")
    campaigns_parser.add_argument("--tenant-id", type=int, help="Filter by tenant (optional)")
    campaigns_parser.add_argument("--unlinked-only", action="store_true", help="Only campaigns without a tenant")

    link_parser = subparsers.add_parser("link-campaign", help="Manually link a campaign to a tenant")
    link_parser.add_argument("--campaign-id", type=int, required=True, help="Campaign ID")
    link_parser.add_argument("--tenant-id", type=int, required=True, help="Tenant ID")

    unlink_parser = subparsers.add_parser("unlink-campaign", help="Remove a campaign's tenant link")
    unlink_parser.add_argument("--campaign-id", type=int, required=True, help="Campaign ID")
    unlink_parser.add_argument(
        "--no-pin",
        action="store_true",
        help="Let name correlation relink the campaign on the next sync"
    )

    return parser


def main(argv: list[str] | None = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    pool = None
    try:
        settings = settings_from_args(args)
        pool = open_pool(settings)
        COMMANDS[args.command](args, pool)

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except (ConfigurationError, ValidationError, ValueError) as e:
        print(f"\nError: {e}")
        sys.exit(2)
    except Exception as e:
        logger.error(f"Command {args.command} failed: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)
    finally:
        if pool is not None:
            pool.close()


if __name__ == "__main__":
    main()
