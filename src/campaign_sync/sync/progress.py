"""
Progress board for running syncs.

The orchestrator writes, API handlers read. Every access goes through
one short lock and readers get deep copies, so a reader never sees a
half-written update and never holds the writer up for longer than a
dict copy.
"""

import copy
import threading
import time
from datetime import datetime, timezone
from typing import Any

from campaign_sync.core.models import SourceTag, SyncOutcome, SyncState, UnitStatus


def _idle_state(source: SourceTag) -> dict[str, Any]:
    return {
        "source": source.value,
        "state": SyncState.IDLE.value,
        "run_id": None,
        "started_at": None,
        "finished_at": None,
        "outcome": None,
        "current_batch": 0,
        "total_batches": 0,
        "units": {},
        "_started": None,
    }


class ProgressBoard:
    """Lock-guarded per-source progress snapshots."""

    def __init__(self):
        self._lock = threading.Lock()
        self._states: dict[SourceTag, dict[str, Any]] = {}

    def _state(self, source: SourceTag | str) -> dict[str, Any]:
        tag = SourceTag(source)
        if tag not in self._states:
            self._states[tag] = _idle_state(tag)
        return self._states[tag]

    def start(self, source: SourceTag | str, run_id: int | None) -> None:
        with self._lock:
            tag = SourceTag(source)
            state = _idle_state(tag)
            state.update(
                state=SyncState.FETCHING.value,
                run_id=run_id,
                started_at=datetime.now(timezone.utc).isoformat(),
                _started=time.monotonic(),
            )
            self._states[tag] = state

    def set_state(self, source: SourceTag | str, state: SyncState) -> None:
        with self._lock:
            self._state(source)["state"] = SyncState(state).value

    def set_units(self, source: SourceTag | str, units: list[str], total_batches: int = 1) -> None:
        """Register the units of the run, all pending."""
        with self._lock:
            entry = self._state(source)
            entry["units"] = {unit: {"status": UnitStatus.PENDING.value, "records": 0, "error": None} for unit in units}
            entry["total_batches"] = total_batches

    def set_batch(self, source: SourceTag | str, index: int) -> None:
        with self._lock:
            self._state(source)["current_batch"] = index

    def unit_started(self, source: SourceTag | str, unit: str) -> None:
        with self._lock:
            units = self._state(source)["units"]
            units.setdefault(unit, {"records": 0, "error": None})["status"] = UnitStatus.SYNCING.value

    def unit_finished(
        self, source: SourceTag | str, unit: str, records: int = 0, error: str | None = None
    ) -> None:
        with self._lock:
            units = self._state(source)["units"]
            units[unit] = {
                "status": (UnitStatus.FAILED if error else UnitStatus.COMPLETED).value,
                "records": records,
                "error": error,
            }

    def finish(self, source: SourceTag | str, outcome: SyncOutcome) -> None:
        with self._lock:
            entry = self._state(source)
            entry["state"] = (SyncState.FAILED if outcome == SyncOutcome.FAILED else SyncState.COMPLETED).value
            entry["outcome"] = SyncOutcome(outcome).value
            entry["finished_at"] = datetime.now(timezone.utc).isoformat()
            if entry["_started"] is not None:
                entry["duration_seconds"] = round(time.monotonic() - entry["_started"], 3)
            entry["_started"] = None

    def snapshot(self, source: SourceTag | str | None = None) -> dict[str, Any]:
        """
        Copy of the progress of one source, or of every source keyed by tag.

        Returns:
            Dict with state, is_running, elapsed_seconds, batches and per-unit status
        """
        with self._lock:
            if source is not None:
                return self._public(self._state(source))
            return {tag.value: self._public(self._state(tag)) for tag in SourceTag}

    @staticmethod
    def _public(entry: dict[str, Any]) -> dict[str, Any]:
        result = copy.deepcopy({k: v for k, v in entry.items() if not k.startswith("_")})
        started = entry["_started"]
        result["is_running"] = started is not None
        result["elapsed_seconds"] = round(time.monotonic() - started, 3) if started is not None else None
        return result
