"""
Unit tests for the input validation utilities.
"""

from datetime import date

import pytest
from hypothesis import given
from hypothesis import strategies as st

from campaign_sync.core.models import RecordStatus, SourceTag
from campaign_sync.utils.validation import (
    ValidationError,
    build_rollup_filter,
    validate_date_range,
    validate_limit,
    validate_source,
)


class TestValidateSource:

    def test_valid_source(self):
        assert validate_source(" Marketing_API ") == SourceTag.MARKETING_API

    def test_enum_passes_through(self):
        assert validate_source(SourceTag.CALL_CENTER) is SourceTag.CALL_CENTER

    @pytest.mark.parametrize("value", ["", None, "fax", 3])
    def test_invalid_source(self, value):
        with pytest.raises(ValidationError):
            validate_source(value)


class TestValidateLimit:

    @given(st.integers(min_value=1, max_value=500))
    def test_limits_in_range_accepted(self, limit):
        assert validate_limit(limit) == limit

    @given(st.integers(max_value=0))
    def test_non_positive_rejected(self, limit):
        with pytest.raises(ValidationError):
            validate_limit(limit)

    def test_max_limit(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_limit(201, max_limit=200)
        assert "maximum" in str(exc_info.value)

    def test_bool_rejected(self):
        with pytest.raises(ValidationError):
            validate_limit(True)


class TestDateRange:

    def test_both_missing(self):
        assert validate_date_range(None, None) is None

    def test_single_bound_rejected(self):
        with pytest.raises(ValidationError):
            validate_date_range(date(2024, 3, 1), None)

    def test_inverted_rejected(self):
        with pytest.raises(ValidationError):
            validate_date_range(date(2024, 3, 2), date(2024, 3, 1))

    def test_single_day_covers_whole_day(self):
        date_range = validate_date_range(date(2024, 3, 1), date(2024, 3, 1))
        lower, upper = date_range.bounds()
        assert (upper - lower).days == 1


class TestBuildRollupFilter:
    """Tests for the rollup query boundary"""

    def test_levels(self):
        assert build_rollup_filter().level == "tenant"
        assert build_rollup_filter(tenant_id=0).level == "campaign"
        assert build_rollup_filter(tenant_id=3, campaign_id=7).level == "record"

    def test_status_and_sort_normalized(self):
        f = build_rollup_filter(status=" FAILURE ", sort="ASC", source="bulk_file")

        assert f.status == RecordStatus.FAILURE
        assert f.sort == "asc"
        assert f.source == SourceTag.BULK_FILE

    def test_offset(self):
        assert build_rollup_filter(page=3, page_size=20).offset == 40

    @pytest.mark.parametrize("kwargs", [
        {"campaign_id": 7},
        {"status": "pending"},
        {"sort": "sideways"},
        {"page": 0},
        {"page_size": 501},
        {"tenant_id": -1},
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValidationError):
            build_rollup_filter(**kwargs)
