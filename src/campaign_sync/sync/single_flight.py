"""
Per-source single-flight guard.

At most one sync per source tag is in flight. Acquisition never waits:
a held lease makes acquire() raise SyncInProgressError immediately.
Leases are context managers, so every exit path releases them.
"""

import threading
import time

from campaign_sync.core.errors import SyncInProgressError
from campaign_sync.core.models import SourceTag
from campaign_sync.observability.logger import get_logger
from campaign_sync.observability.metrics import (
    increment_counter,
    set_gauge,
    sync_conflicts_total,
    sync_runs_in_progress,
)

logger = get_logger(__name__)


class Lease:
    """
    Proof of holding the lock of one source.

    release() is idempotent. A lease acquired in one thread may be released
    in another (manual triggers hand the lease to a background worker).
    """

    def __init__(self, guard: "SingleFlight", source: SourceTag, acquired_at: float):
        self._guard = guard
        self.source = source
        self.acquired_at = acquired_at
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        self._guard._release(self)

    def __enter__(self) -> "Lease":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


class SingleFlight:
    """Non-blocking per-source lock table."""

    def __init__(self):
        self._lock = threading.Lock()
        self._held: dict[SourceTag, Lease] = {}

    def acquire(self, source: SourceTag | str) -> Lease:
        """
        Take the lease of a source.

        Raises:
            SyncInProgressError: If the source's lease is already held
        """
        tag = SourceTag(source)
        with self._lock:
            current = self._held.get(tag)
            if current is not None:
                elapsed = time.monotonic() - current.acquired_at
                increment_counter(sync_conflicts_total, 1, source=tag.value)
                logger.warning(f"Rejected sync for {tag.value}: already running for {elapsed:.1f}s")
                raise SyncInProgressError(tag.value, elapsed_seconds=elapsed)

            lease = Lease(self, tag, time.monotonic())
            self._held[tag] = lease

        set_gauge(sync_runs_in_progress, 1, source=tag.value)
        return lease

    def _release(self, lease: Lease) -> None:
        with self._lock:
            if self._held.get(lease.source) is lease:
                del self._held[lease.source]
        set_gauge(sync_runs_in_progress, 0, source=lease.source.value)

    def is_running(self, source: SourceTag | str) -> bool:
        with self._lock:
            return SourceTag(source) in self._held

    def elapsed(self, source: SourceTag | str) -> float | None:
        """Seconds the current lease of a source has been held, None when idle."""
        with self._lock:
            lease = self._held.get(SourceTag(source))
            return None if lease is None else time.monotonic() - lease.acquired_at

    def running_sources(self) -> list[SourceTag]:
        with self._lock:
            return sorted(self._held, key=lambda tag: tag.value)
