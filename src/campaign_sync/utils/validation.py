"""
Input validation utilities for the query and trigger boundary.

Request parameters (source tags, limits, date ranges, rollup filters) are
validated once here; everything behind the boundary works with validated
types only.
"""

from datetime import date
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from campaign_sync.core.models import DateRange, RecordStatus, RollupFilter, SourceTag


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


def validate_source(source: str | SourceTag, field_name: str = "source") -> SourceTag:
    """
    Validate a source tag.

    Args:
        source: Source tag such as "bulk_file"
        field_name: Name of the field (for error messages)

    Returns:
        SourceTag

    Raises:
        ValidationError: If the value is not a known source

    Examples:
        >>> validate_source(" Bulk_File ")
        <SourceTag.BULK_FILE: 'bulk_file'>
    """
    if isinstance(source, SourceTag):
        return source
    if not source or not isinstance(source, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    try:
        return SourceTag(source.strip().lower())
    except ValueError:
        allowed = ", ".join(tag.value for tag in SourceTag)
        raise ValidationError(f"{field_name} must be one of: {allowed}") from None


def validate_limit(limit: int, field_name: str = "limit", max_limit: int = 500) -> int:
    """
    Validate a limit parameter for queries.

    Args:
        limit: The limit value to validate
        field_name: Name of the field (for error messages)
        max_limit: Maximum allowed limit value

    Returns:
        The validated limit value

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> validate_limit(100)
        100
        >>> validate_limit(0)  # doctest: +SKIP
        ValidationError: limit must be a positive integer
    """
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError(f"{field_name} must be an integer, got {type(limit).__name__}")

    if limit <= 0:
        raise ValidationError(f"{field_name} must be a positive integer, got {limit}")

    if limit > max_limit:
        raise ValidationError(f"{field_name} exceeds maximum of {max_limit}")

    return limit


def validate_date_range(
    start: date | None, end: date | None
) -> DateRange | None:
    """
    Build an inclusive date range from optional bounds.

    Both bounds must be given together; a single bound is rejected rather
    than silently widened.

    Raises:
        ValidationError: If only one bound is given or start is after end
    """
    if start is None and end is None:
        return None
    if start is None or end is None:
        raise ValidationError("start_date and end_date must be provided together")
    if start > end:
        raise ValidationError(f"start_date ({start}) must not be after end_date ({end})")
    return DateRange(start=start, end=end)


def build_rollup_filter(
    tenant_id: int | None = None,
    campaign_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    status: str | None = None,
    source: str | None = None,
    page: int = 1,
    page_size: int = 50,
    sort: str = "desc",
) -> RollupFilter:
    """
    Validate raw rollup query parameters into a RollupFilter.

    Raises:
        ValidationError: On any invalid parameter
    """
    params: dict[str, Any] = {
        "tenant_id": tenant_id,
        "campaign_id": campaign_id,
        "date_range": validate_date_range(start_date, end_date),
        "source": validate_source(source) if source else None,
        "page": page,
        "page_size": page_size,
        "sort": (sort or "desc").strip().lower(),
    }

    if status:
        try:
            params["status"] = RecordStatus(status.strip().lower())
        except ValueError:
            allowed = ", ".join(s.value for s in RecordStatus)
            raise ValidationError(f"status must be one of: {allowed}") from None

    try:
        return RollupFilter(**params)
    except PydanticValidationError as e:
        messages = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(messages) from e
