"""
Sync CLI: run syncs, serve the API with the scheduler, inspect results.

Usage:
    campaign-sync run --source bulk_file [--triggered-by ops]
    campaign-sync serve [--host 0.0.0.0] [--port 8080] [--no-scheduler]
    campaign-sync history [--source marketing_api] [--limit 20]
    campaign-sync rollup [--tenant-id 3 [--campaign-id 12]] [--start-date 2024-03-01 --end-date 2024-03-31]
                         [--status failure] [--page 1] [--page-size 50] [--json]
"""

import argparse
import json
import sys
from datetime import date

from campaign_sync.bootstrap import build_services
from campaign_sync.core.errors import ConfigurationError, NotFoundError, SyncInProgressError
from campaign_sync.core.models import SyncOutcome, SyncType
from campaign_sync.observability.logger import get_logger
from campaign_sync.utils.validation import ValidationError, build_rollup_filter, validate_source

from .common import add_common_arguments, format_timestamp, open_pool, settings_from_args

logger = get_logger(__name__)

EXIT_FAILED = 1
EXIT_CONFLICT = 3


def run_command(args, settings, pool):
    """Run one sync in the foreground and print its outcome."""
    source = validate_source(args.source)
    services = build_services(settings, pool)

    try:
        run = services.orchestrator.run(source, SyncType.MANUAL, args.triggered_by)
    except SyncInProgressError as e:
        print(f"\n{e}")
        sys.exit(EXIT_CONFLICT)
    finally:
        services.orchestrator.shutdown()

    print(f"\n{'=' * 60}")
    print(f"SYNC RUN {run.run_id}: {source.value}")
    print(f"{'=' * 60}")
    print(f"  Outcome:             {run.status.value}")
    print(f"  Duration:            {run.duration_seconds:.1f}s")
    print(f"  Files processed:     {run.files_processed}")
    print(f"  Campaigns processed: {run.campaigns_processed}")
    print(f"  Records processed:   {run.records_processed}")
    print(f"  Records rejected:    {run.records_rejected}")
    print(f"  Errors:              {run.error_count}")
    if run.error_message:
        print(f"  Error summary:       {run.error_message}")
    print()

    if run.status == SyncOutcome.FAILED:
        sys.exit(EXIT_FAILED)


def serve_command(args, settings, pool):
    """Serve the HTTP API, with the interval scheduler unless disabled."""
    import uvicorn

    from campaign_sync.api.app import create_app
    from campaign_sync.sync.scheduler import SyncScheduler

    services = build_services(settings, pool)
    scheduler = None
    if settings.scheduler.enabled and not args.no_scheduler:
        scheduler = SyncScheduler(settings, services.orchestrator)
        scheduler.start()

    try:
        uvicorn.run(
            create_app(services),
            host=args.host or settings.api.host,
            port=args.port or settings.api.port,
            log_level=args.log_level,
        )
    finally:
        if scheduler is not None:
            scheduler.stop()
        services.orchestrator.shutdown(wait=False)


def history_command(args, settings, pool):
    services = build_services(settings, pool)
    source = validate_source(args.source) if args.source else None
    runs = services.sync_log.recent_runs(limit=args.limit, source=source)

    if not runs:
        print("No sync runs recorded.")
        return

    print(f"\n{'Run':<6} {'Source':<15} {'Type':<10} {'Status':<8} {'Started':<20} {'Secs':>7} {'Records':>8} {'Errors':>7}")
    print(f"{'-' * 88}")
    for run in runs:
        status = run.status.value if run.status else "running"
        duration = f"{run.duration_seconds:.1f}" if run.duration_seconds is not None else "-"
        print(
            f"{run.run_id:<6} {run.source.value:<15} {run.sync_type.value:<10} {status:<8} "
            f"{format_timestamp(run.started_at):<20} {duration:>7} {run.records_processed:>8} {run.error_count:>7}"
        )
    print()


def rollup_command(args, settings, pool):
    rollup_filter = build_rollup_filter(
        tenant_id=args.tenant_id,
        campaign_id=args.campaign_id,
        start_date=args.start_date,
        end_date=args.end_date,
        status=args.status,
        source=args.source,
        page=args.page,
        page_size=args.page_size,
        sort=args.sort,
    )
    services = build_services(settings, pool)
    response = services.rollup_engine.query(rollup_filter)

    if args.json:
        print(json.dumps(response.model_dump(mode="json", exclude_none=True), indent=2))
        return

    m = response.metrics
    print(f"\n{response.level.upper()} ROLLUP" + (f": {response.tenant_name}" if response.tenant_name else ""))
    print(
        f"  campaigns={m.campaign_count} total={m.total_records} success={m.success_count} "
        f"failure={m.failure_count} other={m.other_count} rate={m.success_rate}% cost={m.total_cost}"
    )
    print()

    if response.tenants is not None:
        print(f"{'ID':<6} {'Tenant':<32} {'Campaigns':>9} {'Total':>9} {'Success':>9} {'Failure':>9} {'Other':>9}")
        for row in response.tenants:
            print(
                f"{row.tenant_id:<6} {row.tenant_name:<32} {row.campaign_count:>9} {row.total_records:>9} "
                f"{row.success_count:>9} {row.failure_count:>9} {row.other_count:>9}"
            )
    elif response.campaigns is not None:
        print(f"{'Campaign':<40} {'IDs':<16} {'Total':>9} {'Success':>9} {'Failure':>9} {'Other':>9}")
        for row in response.campaigns:
            ids = ",".join(str(i) for i in row.campaign_ids)
            print(
                f"{row.campaign_name:<40} {ids:<16} {row.total_records:>9} "
                f"{row.success_count:>9} {row.failure_count:>9} {row.other_count:>9}"
            )
    else:
        print(f"{'Event time':<20} {'Recipient':<32} {'Status':<8} {'Cost':>12}  {'Reason'}")
        for row in response.records or []:
            print(
                f"{format_timestamp(row.event_at):<20} {row.recipient:<32} {row.status.value:<8} "
                f"{row.total_cost:>12}  {row.status_reason or ''}"
            )

    p = response.pagination
    print(f"\nPage {p.page}/{p.total_pages} ({p.total_records} rows)\n")


COMMANDS = {
    "run": run_command,
    "serve": serve_command,
    "history": history_command,
    "rollup": rollup_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Campaign data sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    add_common_arguments(parser)

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run one sync in the foreground")
    run_parser.add_argument("--source", required=True, help="bulk_file, marketing_api or call_center")
    run_parser.add_argument("--triggered-by", default="cli", help="Identity recorded on the run (default: cli)")

    serve_parser = subparsers.add_parser("serve", help="Serve the HTTP API and the scheduler")
    serve_parser.add_argument("--host", help="Bind address (default: from configuration)")
    serve_parser.add_argument("--port", type=int, help="Port (default: from configuration)")
    serve_parser.add_argument("--no-scheduler", action="store_true", help="Manual triggers only")
    serve_parser.add_argument("--log-level", default="info", help="uvicorn log level (default: info)")

    history_parser = subparsers.add_parser("history", help="Recent sync runs")
    history_parser.add_argument("--source", help="Filter by source (optional)")
    history_parser.add_argument("--limit", type=int, default=20, help="Number of runs (default: 20)")

    rollup_parser = subparsers.add_parser("rollup", help="Query the rollup engine")
    rollup_parser.add_argument("--tenant-id", type=int, help="Drill into a tenant (0 = Unknown)")
    rollup_parser.add_argument("--campaign-id", type=int, help="Drill into a campaign (requires --tenant-id)")
    rollup_parser.add_argument("--start-date", type=date.fromisoformat, help="Inclusive start (YYYY-MM-DD)")
    rollup_parser.add_argument("--end-date", type=date.fromisoformat, help="Inclusive end (YYYY-MM-DD)")
    rollup_parser.add_argument("--status", choices=["success", "failure", "other"], help="Record list filter")
    rollup_parser.add_argument("--source", help="Restrict to one source")
    rollup_parser.add_argument("--page", type=int, default=1)
    rollup_parser.add_argument("--page-size", type=int, default=50)
    rollup_parser.add_argument("--sort", choices=["desc", "asc"], default="desc")
    rollup_parser.add_argument("--json", action="store_true", help="Print the raw response")

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
        COMMANDS[args.command](args, settings, pool)

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except (ConfigurationError, ValidationError, NotFoundError, ValueError) as e:
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
