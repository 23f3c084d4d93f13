"""
Unit tests for record normalization.

Includes property-based testing with hypothesis for the status mapping.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from campaign_sync.core.errors import NormalizationError
from campaign_sync.core.models import RecordStatus, SourceTag
from campaign_sync.core.normalizer import (
    normalize,
    normalize_batch,
    normalize_recipient,
    normalize_status,
    parse_decimal,
    parse_timestamp,
)


def bulk_row(**overrides):
    row = {
        "Campaign ID": "c-100",
        "Campaign Name": "Acme Roofing - Storm Follow-up",
        "Phone Number": "(555) 010-2000",
        "Date": "2024-03-04T15:30:00Z",
        "Status": "Delivered",
        "Cost": "0.015",
        "Compliance Fee": "0.002",
        "TTS Fee": None,
    }
    row.update(overrides)
    return row


class TestNormalizeStatus:
    """Tests for the status table"""

    @pytest.mark.parametrize("raw,expected", [
        ("sent", RecordStatus.SUCCESS),
        ("SUCCESS", RecordStatus.SUCCESS),
        (" Delivered ", RecordStatus.SUCCESS),
        ("failed", RecordStatus.FAILURE),
        ("Failure", RecordStatus.FAILURE),
        ("ERROR", RecordStatus.FAILURE),
        ("queued", RecordStatus.OTHER),
        ("", RecordStatus.OTHER),
        (None, RecordStatus.OTHER),
    ])
    def test_table_mapping(self, raw, expected):
        assert normalize_status(raw) == expected

    def test_aliases_are_case_insensitive(self):
        """Source-specific aliases win over the shared table"""
        aliases = {"SALE": "success", "dnc": "failure"}

        assert normalize_status("sale", aliases) == RecordStatus.SUCCESS
        assert normalize_status(" DNC ", aliases) == RecordStatus.FAILURE
        assert normalize_status("NA", aliases) == RecordStatus.OTHER

    @given(st.one_of(st.none(), st.text(), st.integers()))
    def test_status_is_always_in_closed_set(self, raw):
        """Any input maps to exactly one of the three statuses"""
        assert normalize_status(raw) in set(RecordStatus)


class TestParsing:
    """Tests for numeric, timestamp and recipient parsing"""

    def test_decimal_absent_is_zero(self):
        assert parse_decimal(None) == Decimal("0")
        assert parse_decimal("  ") == Decimal("0")

    def test_decimal_tolerates_currency_formatting(self):
        assert parse_decimal("$1,234.5") == Decimal("1234.500000")

    def test_decimal_malformed_raises(self):
        with pytest.raises(ValueError):
            parse_decimal("twelve cents")

    @pytest.mark.parametrize("value", ["123456789012", "100000000", -100000000, "1e30"])
    def test_decimal_beyond_eight_integer_digits_raises(self, value):
        """Values the NUMERIC(14, 6) columns cannot hold are malformed"""
        with pytest.raises(ValueError):
            parse_decimal(value)

    def test_decimal_largest_storable_value(self):
        assert parse_decimal("99999999.999999") == Decimal("99999999.999999")

    @given(st.decimals(min_value=-10**6, max_value=10**6, allow_nan=False, places=6))
    def test_decimal_accepts_six_place_values(self, value):
        assert parse_decimal(str(value)) == value

    def test_timestamp_naive_is_utc(self):
        assert parse_timestamp("2024-03-04 15:30:00") == datetime(2024, 3, 4, 15, 30, tzinfo=timezone.utc)

    def test_timestamp_offset_converted_to_utc(self):
        parsed = parse_timestamp("2024-03-04T10:30:00-05:00")
        assert parsed == datetime(2024, 3, 4, 15, 30, tzinfo=timezone.utc)
        assert parsed.utcoffset().total_seconds() == 0

    def test_timestamp_epoch_milliseconds(self):
        assert parse_timestamp(1709566200000) == datetime(2024, 3, 4, 15, 30, tzinfo=timezone.utc)

    def test_timestamp_us_format(self):
        assert parse_timestamp("03/04/2024 15:30") == datetime(2024, 3, 4, 15, 30, tzinfo=timezone.utc)

    def test_timestamp_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_timestamp("last tuesday")

    def test_recipient_formats(self):
        assert normalize_recipient("(555) 010-2000") == "5550102000"
        assert normalize_recipient(" Jane.Doe@Example.COM ") == "jane.doe@example.com"


class TestNormalize:
    """Tests for whole-record normalization"""

    def test_bulk_file_row(self):
        record = normalize(bulk_row(), SourceTag.BULK_FILE, source_file="export-1.json")

        assert record.source == SourceTag.BULK_FILE
        assert record.source_campaign_id == "c-100"
        assert record.recipient == "5550102000"
        assert record.status == RecordStatus.SUCCESS
        assert record.raw_status == "Delivered"
        assert record.cost == Decimal("0.015000")
        assert record.tts_fee == Decimal("0")
        assert record.total_cost == Decimal("0.017000")
        assert record.source_file == "export-1.json"

    def test_malformed_cost_zeroes_all_costs(self):
        """A bad numeric field keeps the record with zeroed costs"""
        record = normalize(bulk_row(Cost="n/a"), SourceTag.BULK_FILE)

        assert record.cost == Decimal("0")
        assert record.compliance_fee == Decimal("0")
        assert record.total_cost == Decimal("0")

    def test_oversized_cost_zeroes_all_costs(self):
        record = normalize(bulk_row(Cost="123456789012"), SourceTag.BULK_FILE)

        assert record.cost == Decimal("0")
        assert record.compliance_fee == Decimal("0")

    def test_overlong_recipient_rejected(self):
        with pytest.raises(NormalizationError) as exc_info:
            normalize(bulk_row(**{"Phone Number": "5" * 256}), SourceTag.BULK_FILE)

        assert exc_info.value.field_name == "recipient"

    def test_overlong_campaign_id_rejected(self):
        with pytest.raises(NormalizationError) as exc_info:
            normalize(bulk_row(**{"Campaign ID": "c" * 256}), SourceTag.BULK_FILE)

        assert exc_info.value.field_name == "source_campaign_id"

    def test_overlong_text_truncated_to_column(self):
        record = normalize(
            bulk_row(**{"Line Type": "x" * 100, "Company": "Acme " * 60, "Status": "s" * 300}),
            SourceTag.BULK_FILE,
            source_file="f" * 600,
        )

        assert len(record.line_type) == 64
        assert len(record.company) == 255
        assert len(record.raw_status) == 255
        assert len(record.source_file) == 512
        assert record.status == RecordStatus.OTHER

    def test_tenant_scopes_campaign_id(self):
        """Per-tenant instances reuse ids, so the fetch tenant is part of the key"""
        raw = {"e_id": "12", "subject1": "Spring Promo", "email_address": "a@example.com", "date_sent": "2024-03-02"}

        first = normalize(raw, SourceTag.MARKETING_API, tenant_id=1)
        second = normalize(raw, SourceTag.MARKETING_API, tenant_id=2)

        assert first.source_campaign_id == "1:12"
        assert second.source_campaign_id == "2:12"
        assert first.identity_key != second.identity_key
        assert first.campaign_name == "Spring Promo"

    def test_missing_recipient_rejected(self):
        with pytest.raises(NormalizationError) as exc_info:
            normalize(bulk_row(**{"Phone Number": ""}), SourceTag.BULK_FILE)

        assert exc_info.value.field_name == "recipient"

    def test_missing_campaign_rejected(self):
        with pytest.raises(NormalizationError) as exc_info:
            normalize(bulk_row(**{"Campaign ID": None}), SourceTag.BULK_FILE)

        assert exc_info.value.field_name == "source_campaign_id"

    def test_unparseable_timestamp_rejected(self):
        with pytest.raises(NormalizationError) as exc_info:
            normalize(bulk_row(Date="soon"), SourceTag.BULK_FILE)

        assert exc_info.value.field_name == "event_at"

    def test_marketing_failure_flag(self):
        """Email rows without a status derive it from is_failed"""
        raw = {
            "e_id": "42",
            "subject1": "Spring Promo",
            "email_address": "Lead@Example.com",
            "date_sent": "2024-03-02 08:00:00",
            "is_failed": "1",
        }
        record = normalize(raw, SourceTag.MARKETING_API)

        assert record.status == RecordStatus.FAILURE
        assert record.recipient == "lead@example.com"
        assert record.campaign_name == "Spring Promo"

    def test_call_center_row_with_aliases(self):
        raw = {
            "campaign_id": "OUTBOUND1",
            "phone_number": "5550109999",
            "call_date": "2024-03-02 09:15:00",
            "status": "SALE",
            "status_name": "Sale Made",
        }
        record = normalize(raw, SourceTag.CALL_CENTER, status_aliases={"SALE": "success"})

        assert record.status == RecordStatus.SUCCESS
        assert record.status_reason == "Sale Made"
        assert record.campaign_name == "OUTBOUND1"

    def test_batch_collects_rejections(self):
        rows = [bulk_row(), bulk_row(**{"Phone Number": None}), bulk_row(Date="")]

        records, rejections = normalize_batch(rows, SourceTag.BULK_FILE)

        assert len(records) == 1
        assert [r.field_name for r in rejections] == ["recipient", "event_at"]
