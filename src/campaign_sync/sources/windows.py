"""
Month window planning for month-windowed sources.

The tracker only records what was fetched; this module turns those marks
into the list of cursors still to request for one tenant.
"""

from datetime import datetime, timedelta, timezone

from campaign_sync.core.models import FetchWindow

from .base import MonthCursor


def month_key(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """First instant and last second of a calendar month (UTC)."""
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        next_start = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        next_start = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, next_start - timedelta(seconds=1)


def iter_months(start_key: str, end: datetime):
    """Yield (year, month) from start_key (YYYY-MM) through end's month."""
    year, month = (int(part) for part in start_key.split("-"))
    while (year, month) <= (end.year, end.month):
        yield year, month
        month += 1
        if month > 12:
            year, month = year + 1, 1


def plan_month_windows(
    tenant_id: int,
    history_start: str | None,
    marks: dict[str, FetchWindow],
    now: datetime | None = None,
) -> list[MonthCursor]:
    """
    Months still to request for a tenant, oldest first.

    A month whose mark reaches the month end is skipped. A month with a
    partial mark (typically the current month, fetched up to "now") is
    requested again for the remaining gap only. The current month is
    requested up to now.

    Args:
        tenant_id: Tenant to plan for
        history_start: First month to consider (YYYY-MM); current month if None
        marks: Existing month marks keyed by YYYY-MM
        now: Reference time (UTC now by default)

    Returns:
        Cursors in ascending chronological order
    """
    now = now or datetime.now(timezone.utc)
    cursors: list[MonthCursor] = []

    for year, month in iter_months(history_start or month_key(now), now):
        key = f"{year:04d}-{month:02d}"
        month_start, month_end = month_bounds(year, month)
        upper = min(month_end, now)

        mark = marks.get(key)
        lower = month_start
        if mark is not None and mark.window_to is not None:
            if mark.window_to >= month_end:
                continue
            if mark.window_from is None or mark.window_from <= month_start:
                lower = mark.window_to
            if lower >= upper:
                continue
        elif mark is not None:
            # Marked without bounds: treated as a complete month
            continue

        cursors.append(
            MonthCursor(tenant_id=tenant_id, year_month=key, window_from=lower, window_to=upper)
        )

    return cursors
