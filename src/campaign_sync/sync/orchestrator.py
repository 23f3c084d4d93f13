"""
Sync orchestrator.

The single entry point for timer and manual syncs. One run of a source:

1. take the source's single-flight lease (rejected immediately if held)
2. open a sync_run row and check the adapter's configuration
3. process the work units: new files (bulk file) or enrolled tenants (APIs),
   tenants in batches of max_concurrency
4. per cursor: fetch (with timeout) -> normalize -> merge -> mark window
5. re-run name correlation when the source is configured for it
6. complete the sync_run row with the outcome and counts

Unit failures are absorbed and aggregated: success when nothing failed,
partial when some units failed and some completed, failed when every
unit failed. Only lock conflicts and configuration errors reach the
caller.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextvars import copy_context
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Callable

from campaign_sync.config import Settings
from campaign_sync.core.errors import ConfigurationError, SourceError, SourceTimeoutError
from campaign_sync.core.models import SourceTag, SyncOutcome, SyncRun, SyncState, SyncType
from campaign_sync.core.normalizer import normalize_batch
from campaign_sync.observability.logger import bind_sync_context, get_logger
from campaign_sync.observability.metrics import (
    increment_counter,
    record_sync_run,
    records_rejected_total,
    source_errors_total,
    source_fetch_duration_seconds,
    track_duration,
)
from campaign_sync.sources.base import Cursor, FileCursor, SourceAdapter, run_with_timeout
from campaign_sync.sources.windows import plan_month_windows
from campaign_sync.warehouse.sync_log import truncate_message

from .progress import ProgressBoard
from .single_flight import Lease, SingleFlight

logger = get_logger(__name__)

MAX_ERRORS_IN_MESSAGE = 5


@dataclass
class CursorOutcome:
    raw_records: int = 0
    records_merged: int = 0
    records_rejected: int = 0
    campaign_ids: set[int] = field(default_factory=set)


class RunTally:
    """
    Thread-safe counters of one run, shared by the unit workers.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.units_completed = 0
        self.units_failed = 0
        self.files_processed = 0
        self.records_processed = 0
        self.records_rejected = 0
        self.campaign_ids: set[int] = set()
        self.errors: list[str] = []
        self.fatal_error: str | None = None

    def add_cursor(self, outcome: CursorOutcome) -> None:
        with self._lock:
            self.records_processed += outcome.records_merged
            self.records_rejected += outcome.records_rejected
            self.campaign_ids |= outcome.campaign_ids

    def unit_succeeded(self, is_file: bool = False) -> None:
        with self._lock:
            self.units_completed += 1
            if is_file:
                self.files_processed += 1

    def unit_failed(self, message: str) -> None:
        with self._lock:
            self.units_failed += 1
            self.errors.append(message)

    def fatal(self, message: str) -> None:
        with self._lock:
            self.fatal_error = message
            self.errors.insert(0, message)

    def outcome(self) -> SyncOutcome:
        failed = self.units_failed > 0 or self.fatal_error is not None
        if not failed:
            return SyncOutcome.SUCCESS
        if self.units_completed > 0:
            return SyncOutcome.PARTIAL
        return SyncOutcome.FAILED

    @property
    def error_count(self) -> int:
        return self.units_failed + self.records_rejected + (1 if self.fatal_error else 0)

    def error_message(self) -> str | None:
        with self._lock:
            errors = list(self.errors)
            rejected = self.records_rejected
        if rejected:
            errors.append(f"{rejected} record(s) rejected during normalization")
        if not errors:
            return None
        message = "; ".join(errors[:MAX_ERRORS_IN_MESSAGE])
        if len(errors) > MAX_ERRORS_IN_MESSAGE:
            message += f" (+{len(errors) - MAX_ERRORS_IN_MESSAGE} more)"
        return truncate_message(message)


@dataclass
class TriggerReceipt:
    """Acknowledgement of an accepted manual trigger."""

    run_id: int
    source: SourceTag
    started_at: datetime


class SyncOrchestrator:
    """
    Runs syncs under the per-source single-flight guard.
    """

    def __init__(
        self,
        settings: Settings,
        adapters: dict[SourceTag, SourceAdapter],
        tenant_store,
        tracker,
        merger,
        sync_log,
        guard: SingleFlight | None = None,
        progress: ProgressBoard | None = None,
        executor: ThreadPoolExecutor | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Args:
            settings: Application settings
            adapters: Adapter per source tag
            tenant_store: TenantStore (active tenants)
            tracker: FetchWindowTracker
            merger: RecordMerger
            sync_log: SyncLogStore
            guard: Single-flight guard (shared with every trigger path)
            progress: Progress board read by the API
            executor: Background executor for manual triggers
            clock: UTC "now" provider, used to plan month windows
        """
        self.settings = settings
        self.adapters = adapters
        self.tenant_store = tenant_store
        self.tracker = tracker
        self.merger = merger
        self.sync_log = sync_log
        self.guard = guard or SingleFlight()
        self.progress = progress or ProgressBoard()
        self.executor = executor or ThreadPoolExecutor(
            max_workers=len(SourceTag), thread_name_prefix="sync-run"
        )
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def adapter(self, source: SourceTag | str) -> SourceAdapter:
        tag = SourceTag(source)
        if tag not in self.adapters:
            raise ConfigurationError(f"No adapter is configured for source {tag.value}")
        return self.adapters[tag]

    # =======================
    # ENTRY POINTS
    # =======================

    def run(
        self,
        source: SourceTag | str,
        sync_type: SyncType = SyncType.SCHEDULED,
        triggered_by: str | None = None,
    ) -> SyncRun:
        """
        Run a sync in the calling thread.

        Returns:
            The completed SyncRun

        Raises:
            SyncInProgressError: If a sync of the source is already running
            ConfigurationError: If the source is not configured (recorded as a failed run)
        """
        sync_type = SyncType(sync_type)
        adapter = self.adapter(source)
        with self.guard.acquire(adapter.source):
            run = self._open_run(adapter.source, sync_type, triggered_by)
            self._preflight(adapter, run)
            return self._execute(adapter, run)

    def trigger(
        self,
        source: SourceTag | str,
        sync_type: SyncType = SyncType.MANUAL,
        triggered_by: str | None = None,
    ) -> TriggerReceipt:
        """
        Start a sync in the background and return immediately.

        The lease is taken and the configuration checked before returning,
        so conflicts and configuration errors reach the caller.

        Raises:
            SyncInProgressError: If a sync of the source is already running
            ConfigurationError: If the source is not configured (recorded as a failed run)
        """
        sync_type = SyncType(sync_type)
        adapter = self.adapter(source)
        lease = self.guard.acquire(adapter.source)
        try:
            run = self._open_run(adapter.source, sync_type, triggered_by)
            self._preflight(adapter, run)
            self.executor.submit(copy_context().run, self._run_in_background, lease, adapter, run)
        except BaseException:
            lease.release()
            raise

        logger.info(f"Accepted {sync_type.value} sync of {adapter.source.value} as run {run.run_id}")
        return TriggerReceipt(run_id=run.run_id, source=adapter.source, started_at=run.started_at)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)

    def _run_in_background(self, lease: Lease, adapter: SourceAdapter, run: SyncRun) -> None:
        with lease:
            try:
                self._execute(adapter, run)
            except Exception:
                logger.error(f"Background sync run {run.run_id} crashed", exc_info=True)

    # =======================
    # RUN LIFECYCLE
    # =======================

    def _open_run(self, source: SourceTag, sync_type: SyncType, triggered_by: str | None) -> SyncRun:
        run = self.sync_log.start_run(
            SyncRun(source=source, sync_type=sync_type, triggered_by=triggered_by)
        )
        self.progress.start(source, run.run_id)
        return run

    def _preflight(self, adapter: SourceAdapter, run: SyncRun) -> None:
        """Check configuration; any failure completes the opened run as failed and re-raises."""
        try:
            adapter.check_configuration()
        except Exception as e:
            if isinstance(e, ConfigurationError):
                error_type = "configuration"
                logger.error(f"Configuration error for {adapter.source.value}: {e}")
                message = str(e)
            else:
                error_type = "internal"
                logger.error(f"Pre-flight check of {adapter.source.value} failed: {e}", exc_info=True)
                message = f"{type(e).__name__}: {e}"
            increment_counter(source_errors_total, 1, source=adapter.source.value, error_type=error_type)
            tally = RunTally()
            tally.fatal(message)
            self._complete(run, tally, time.monotonic())
            raise

    def _execute(self, adapter: SourceAdapter, run: SyncRun) -> SyncRun:
        started = time.monotonic()
        tally = RunTally()

        with bind_sync_context(source=adapter.source.value, run_id=run.run_id):
            logger.info(f"Sync of {adapter.source.value} started ({run.sync_type.value})")
            try:
                if adapter.window_kind == "file":
                    self._sync_files(adapter, tally)
                else:
                    self._sync_tenants(adapter, tally)
                self._correlate(adapter)
            except Exception as e:
                logger.error(f"Sync of {adapter.source.value} aborted: {e}", exc_info=True)
                tally.fatal(f"{type(e).__name__}: {e}")

            return self._complete(run, tally, started)

    def _complete(self, run: SyncRun, tally: RunTally, started: float) -> SyncRun:
        duration = time.monotonic() - started
        outcome = tally.outcome()
        completed = run.model_copy(
            update={
                "status": outcome,
                "completed_at": datetime.now(timezone.utc),
                "duration_seconds": round(duration, 3),
                "files_processed": tally.files_processed,
                "campaigns_processed": len(tally.campaign_ids),
                "records_processed": tally.records_processed,
                "records_rejected": tally.records_rejected,
                "error_count": tally.error_count,
                "error_message": tally.error_message(),
            }
        )

        try:
            self.sync_log.complete_run(completed)
        except Exception:
            logger.error(f"Could not record completion of sync run {run.run_id}", exc_info=True)

        self.progress.finish(run.source, outcome)
        record_sync_run(
            source=run.source.value,
            outcome=outcome.value,
            duration_seconds=duration,
            units_completed=tally.units_completed,
            units_failed=tally.units_failed,
            records_merged=tally.records_processed,
        )
        logger.info(
            f"Sync of {run.source.value} finished: {outcome.value}",
            extra={
                "outcome": outcome.value,
                "duration_seconds": round(duration, 3),
                "units_completed": tally.units_completed,
                "units_failed": tally.units_failed,
                "records_processed": tally.records_processed,
                "records_rejected": tally.records_rejected,
                "error_count": tally.error_count,
            },
        )
        return completed

    # =======================
    # WORK UNITS
    # =======================

    def _sync_files(self, adapter: SourceAdapter, tally: RunTally) -> None:
        tag = adapter.source
        imported = self.tracker.imported_filenames(tag)
        cursors = run_with_timeout(
            adapter.list_new_files, self.settings.sync.adapter_timeout_seconds, imported
        )
        self.progress.set_units(tag, [cursor.key for cursor in cursors], total_batches=1 if cursors else 0)
        if not cursors:
            logger.info(f"No new files for {tag.value}")
            return

        self.progress.set_batch(tag, 1)
        for cursor in cursors:
            self._run_unit(
                adapter, tally, cursor.key, cursor.key,
                partial(self._process_cursor, adapter, cursor, None, tally),
                is_file=True,
            )

    def _sync_tenants(self, adapter: SourceAdapter, tally: RunTally) -> None:
        tag = adapter.source
        active = {tenant.tenant_id: tenant for tenant in self.tenant_store.list_tenants(active_only=True)}
        enrolled = adapter.enrolled_tenants()
        tenant_ids = [tenant_id for tenant_id in enrolled if tenant_id in active]

        inactive = sorted(set(enrolled) - set(tenant_ids))
        if inactive:
            logger.info(f"Skipping inactive or unknown tenants for {tag.value}: {inactive}")

        size = self.settings.sync.max_concurrency
        batches = [tenant_ids[i:i + size] for i in range(0, len(tenant_ids), size)]
        self.progress.set_units(tag, [f"tenant-{tenant_id}" for tenant_id in tenant_ids], total_batches=len(batches))

        with ThreadPoolExecutor(max_workers=size, thread_name_prefix=f"sync-{tag.value}") as pool:
            for index, batch in enumerate(batches, start=1):
                self.progress.set_batch(tag, index)
                logger.info(f"Batch {index}/{len(batches)}: tenants {batch}")
                futures = [
                    pool.submit(
                        copy_context().run,
                        self._run_unit,
                        adapter,
                        tally,
                        f"tenant-{tenant_id}",
                        f"tenant {tenant_id} ({active[tenant_id].name})",
                        partial(self._sync_tenant, adapter, tenant_id, tally),
                    )
                    for tenant_id in batch
                ]
                for future in futures:
                    future.result()

    def _sync_tenant(self, adapter: SourceAdapter, tenant_id: int, tally: RunTally) -> int:
        """Fetch a tenant's pending months oldest first; stop at the first failure."""
        marks = self.tracker.month_marks(adapter.source, tenant_id)
        cursors = plan_month_windows(tenant_id, adapter.settings.history_start, marks, now=self.clock())
        if not cursors:
            logger.debug(f"Tenant {tenant_id} is up to date for {adapter.source.value}")
            return 0

        merged = 0
        for cursor in cursors:
            merged += self._process_cursor(adapter, cursor, tenant_id, tally)
        return merged

    def _run_unit(
        self,
        adapter: SourceAdapter,
        tally: RunTally,
        unit_key: str,
        label: str,
        work: Callable[[], int],
        is_file: bool = False,
    ) -> bool:
        tag = adapter.source
        self.progress.unit_started(tag, unit_key)
        try:
            with bind_sync_context(unit=unit_key):
                records = work()
        except Exception as e:
            if isinstance(e, SourceTimeoutError):
                error_type = "timeout"
            elif isinstance(e, SourceError):
                error_type = "source"
            elif isinstance(e, ConfigurationError):
                error_type = "configuration"
            else:
                error_type = "internal"
            increment_counter(source_errors_total, 1, source=tag.value, error_type=error_type)
            logger.error(f"{label} failed: {e}", exc_info=error_type == "internal")
            tally.unit_failed(f"{label}: {e}")
            self.progress.unit_finished(tag, unit_key, error=str(e))
            return False

        tally.unit_succeeded(is_file=is_file)
        self.progress.unit_finished(tag, unit_key, records=records)
        return True

    def _process_cursor(
        self, adapter: SourceAdapter, cursor: Cursor, tenant_id: int | None, tally: RunTally
    ) -> int:
        """
        Fetch, normalize, merge and mark one cursor.

        The window is marked only after the merge committed.

        Returns:
            Records merged
        """
        tag = adapter.source
        timeout = self.settings.sync.adapter_timeout_seconds

        self.progress.set_state(tag, SyncState.FETCHING)
        with track_duration(source_fetch_duration_seconds, source=tag.value):
            result = run_with_timeout(adapter.fetch, timeout, cursor)

        self.progress.set_state(tag, SyncState.NORMALIZING)
        if isinstance(cursor, FileCursor):
            provenance = cursor.file_name
        else:
            provenance = f"tenant-{cursor.tenant_id}/{cursor.year_month}"
        records, rejections = normalize_batch(
            result.raw_records,
            tag,
            source_file=provenance,
            status_aliases=adapter.status_aliases,
            tenant_id=tenant_id,
        )
        for rejection in rejections:
            increment_counter(records_rejected_total, 1, source=tag.value, field=rejection.field_name or "unknown")

        self.progress.set_state(tag, SyncState.MERGING)
        merges = self.merger.merge_records(records, tenant_id=tenant_id) if records else []

        if isinstance(cursor, FileCursor):
            self.tracker.mark_fetched(tag, None, cursor.key, "file", record_count=len(result.raw_records))
        else:
            self.tracker.mark_fetched(
                tag,
                cursor.tenant_id,
                cursor.key,
                "month",
                window_from=cursor.window_from,
                window_to=cursor.window_to,
                record_count=len(result.raw_records),
            )

        outcome = CursorOutcome(
            raw_records=len(result.raw_records),
            records_merged=sum(merge.records_upserted for merge in merges),
            records_rejected=len(rejections),
            campaign_ids={merge.campaign_id for merge in merges},
        )
        tally.add_cursor(outcome)
        logger.info(
            f"Processed {cursor.key}: {outcome.raw_records} fetched, "
            f"{outcome.records_merged} merged, {outcome.records_rejected} rejected",
            extra={"tenant_id": tenant_id, "window": cursor.key},
        )
        return outcome.records_merged

    def _correlate(self, adapter: SourceAdapter) -> None:
        if not adapter.settings.correlate_by_name:
            return
        tenants = self.tenant_store.list_tenants(active_only=True)
        self.merger.relink_campaigns(adapter.source, tenants, adapter.settings.name_delimiter)
