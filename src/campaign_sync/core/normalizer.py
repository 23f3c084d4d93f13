"""
Normalization of raw source records into canonical records.

Each source adapter returns rows in its own shape (column headers for the
bulk-file export, report columns for the marketing API, pipe-delimited
call-log columns for the call center). This module maps them onto
CanonicalRecord:

- status: table-driven, case-insensitive and whitespace-insensitive
  mapping onto success / failure / other
- cost fields: Decimal quantized to 6 places, zero when absent
- timestamps: timezone-aware UTC datetimes (naive values are UTC)

Records whose identity key cannot be built (missing campaign id or
recipient, unparseable timestamp) or would not fit the identity
columns of the store are rejected with NormalizationError. Malformed or
out-of-range cost values are recoverable: the record keeps zeroed cost
fields and a warning is logged. Overlong descriptive text is truncated.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from campaign_sync.core.errors import NormalizationError
from campaign_sync.core.models import CanonicalRecord, RecordStatus, SourceTag
from campaign_sync.observability.logger import get_logger

logger = get_logger(__name__)

STATUS_TABLE: dict[str, RecordStatus] = {
    "sent": RecordStatus.SUCCESS,
    "success": RecordStatus.SUCCESS,
    "delivered": RecordStatus.SUCCESS,
    "failed": RecordStatus.FAILURE,
    "failure": RecordStatus.FAILURE,
    "error": RecordStatus.FAILURE,
}

DECIMAL_PLACES = Decimal("0.000001")
NUMERIC_FIELDS = ("cost", "compliance_fee", "tts_fee")
# NUMERIC(14, 6) leaves 8 integer digits
MAX_INTEGER_DIGITS = 8

# Column widths of the canonical store
IDENTITY_MAX_LENGTH = 255
TEXT_MAX_LENGTHS: dict[str, int] = {
    "campaign_name": 512,
    "raw_status": 255,
    "first_name": 255,
    "last_name": 255,
    "company": 255,
    "email": 255,
    "carrier": 255,
    "line_type": 64,
    "external_record_id": 255,
    "source_file": 512,
}

# Candidate keys per canonical field, first present non-empty value wins
FIELD_ALIASES: dict[SourceTag, dict[str, tuple[str, ...]]] = {
    SourceTag.BULK_FILE: {
        "source_campaign_id": ("Campaign ID", "campaignId", "campaign_id"),
        "campaign_name": ("Campaign Name", "campaignName", "campaign_name"),
        "recipient": ("Phone Number", "phoneNumber", "phone_number", "phone"),
        "event_at": ("Date", "date", "timestamp", "deliveredAt", "delivered_at"),
        "status": ("Status", "status"),
        "status_reason": ("Status Reason", "statusReason", "status_reason"),
        "cost": ("Cost", "cost"),
        "compliance_fee": ("Compliance Fee", "complianceFee", "compliance_fee"),
        "tts_fee": ("TTS Fee", "ttsFee", "tts_fee"),
        "first_name": ("First Name", "firstName", "first_name"),
        "last_name": ("Last Name", "lastName", "last_name"),
        "company": ("Company", "company"),
        "email": ("Email", "email"),
        "carrier": ("Carrier", "carrier"),
        "line_type": ("Line Type", "lineType", "line_type"),
        "external_record_id": ("Record ID", "recordId", "record_id"),
    },
    SourceTag.MARKETING_API: {
        "source_campaign_id": ("e_id", "email_id"),
        "campaign_name": ("subject1", "subject", "email_name"),
        "recipient": ("email_address", "email"),
        "event_at": ("date_sent",),
        "status": ("status",),
        "status_reason": ("failure_reason", "reason"),
        "first_name": ("firstname", "first_name"),
        "last_name": ("lastname", "last_name"),
        "company": ("company",),
        "email": ("email_address", "email"),
        "external_record_id": ("id", "stat_id"),
    },
    SourceTag.CALL_CENTER: {
        "source_campaign_id": ("campaign_id",),
        "campaign_name": ("campaign_name", "campaign_id"),
        "recipient": ("phone_number", "phone"),
        "event_at": ("call_date", "event_time"),
        "status": ("status",),
        "status_reason": ("status_name", "term_reason"),
        "first_name": ("first_name",),
        "last_name": ("last_name",),
        "external_record_id": ("uniqueid", "lead_id"),
    },
}

_DATETIME_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
)


def normalize_status(
    raw_status: Any, aliases: dict[str, str] | None = None
) -> RecordStatus:
    """
    Map a raw status string onto the closed status set.

    Args:
        raw_status: Status as reported by the source (may be None)
        aliases: Extra source-specific mappings (raw value -> status name)

    Returns:
        RecordStatus (never raises)
    """
    if raw_status is None:
        return RecordStatus.OTHER

    key = str(raw_status).strip().casefold()
    if not key:
        return RecordStatus.OTHER

    if aliases:
        for alias, target in aliases.items():
            if alias.strip().casefold() == key:
                try:
                    return RecordStatus(str(target).strip().lower())
                except ValueError:
                    return RecordStatus.OTHER

    return STATUS_TABLE.get(key, RecordStatus.OTHER)


def parse_decimal(value: Any) -> Decimal:
    """
    Parse a numeric field to a 6-place Decimal.

    Absent or empty values are zero. Currency symbols and thousands
    separators are tolerated.

    Raises:
        ValueError: If the value is present but not numeric, or has more
            than MAX_INTEGER_DIGITS integer digits
    """
    if value is None:
        return Decimal("0").quantize(DECIMAL_PLACES)
    if isinstance(value, bool):
        raise ValueError(f"Boolean is not a numeric value: {value!r}")
    if isinstance(value, float):
        text = repr(value)
    elif isinstance(value, (int, Decimal)):
        text = str(value)
    else:
        text = str(value).strip().replace("$", "").replace(",", "")
    if not text:
        return Decimal("0").quantize(DECIMAL_PLACES)

    try:
        number = Decimal(text)
        if not number.is_finite():
            raise ValueError(f"Non-finite numeric value: {value!r}")
        quantized = number.quantize(DECIMAL_PLACES)
    except InvalidOperation as e:
        raise ValueError(f"Malformed numeric value: {value!r}") from e

    if abs(quantized) >= Decimal(10) ** MAX_INTEGER_DIGITS:
        raise ValueError(f"Numeric value out of range: {value!r}")
    return quantized


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a timestamp to a timezone-aware UTC datetime.

    Accepts datetimes, epoch seconds (or milliseconds), ISO-8601 strings
    with or without offset, 'YYYY-MM-DD HH:MM:SS' and US-style dates.
    Naive values are interpreted as UTC.

    Raises:
        ValueError: If the value cannot be parsed
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"Missing or invalid timestamp: {value!r}")

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = _from_epoch(float(value))
    else:
        text = str(value).strip()
        if not text:
            raise ValueError("Empty timestamp")
        if text.isdigit() and len(text) >= 9:
            parsed = _from_epoch(float(text))
        else:
            parsed = _parse_text_timestamp(text)

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _from_epoch(seconds: float) -> datetime:
    # Values this large are milliseconds
    if seconds > 1e11:
        seconds = seconds / 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise ValueError(f"Epoch timestamp out of range: {seconds}") from e


def _parse_text_timestamp(text: str) -> datetime:
    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return datetime.fromisoformat(iso_text)
    except ValueError:
        pass

    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    raise ValueError(f"Unparseable timestamp: {text!r}")


def normalize_recipient(value: Any) -> str:
    """Emails are lower-cased; phone numbers lose formatting characters."""
    text = str(value).strip()
    if "@" in text:
        return text.lower()
    return "".join(ch for ch in text if ch not in " -().")


def _pick(raw: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _is_truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    return bool(value)


def _fit(field_name: str, value: str | None) -> str | None:
    limit = TEXT_MAX_LENGTHS[field_name]
    if value is None or len(value) <= limit:
        return value
    logger.warning(f"Truncating {field_name} from {len(value)} to {limit} characters")
    return value[:limit]


def normalize(
    raw: dict[str, Any],
    source_tag: SourceTag | str,
    source_file: str | None = None,
    status_aliases: dict[str, str] | None = None,
    tenant_id: int | None = None,
) -> CanonicalRecord:
    """
    Normalize one raw record.

    Args:
        raw: Raw record as returned by the source adapter
        source_tag: Source the record came from
        source_file: Provenance (file name or window key)
        status_aliases: Extra status mappings for this source
        tenant_id: Tenant the record was fetched for. Per-tenant sources run
            one upstream instance per tenant, so their campaign ids are only
            unique within the tenant and are stored as "<tenant_id>:<id>".

    Returns:
        CanonicalRecord

    Raises:
        NormalizationError: If the record's identity key cannot be built
    """
    source = SourceTag(source_tag)
    aliases = FIELD_ALIASES[source]

    upstream_id = _optional_text(_pick(raw, aliases["source_campaign_id"]))
    if upstream_id is None:
        raise NormalizationError("Missing campaign id", field_name="source_campaign_id", raw=raw)
    campaign_id = upstream_id if tenant_id is None else f"{tenant_id}:{upstream_id}"
    if len(campaign_id) > IDENTITY_MAX_LENGTH:
        raise NormalizationError(
            f"Campaign id longer than {IDENTITY_MAX_LENGTH} characters",
            field_name="source_campaign_id",
            raw=raw,
        )

    recipient_value = _pick(raw, aliases["recipient"])
    recipient = normalize_recipient(recipient_value) if recipient_value is not None else ""
    if not recipient:
        raise NormalizationError("Missing recipient", field_name="recipient", raw=raw)
    if len(recipient) > IDENTITY_MAX_LENGTH:
        raise NormalizationError(
            f"Recipient longer than {IDENTITY_MAX_LENGTH} characters", field_name="recipient", raw=raw
        )

    try:
        event_at = parse_timestamp(_pick(raw, aliases["event_at"]))
    except ValueError as e:
        raise NormalizationError(str(e), field_name="event_at", raw=raw) from e

    raw_status = _pick(raw, aliases["status"])
    if raw_status is None and source == SourceTag.MARKETING_API:
        # Email report rows carry failure as a flag instead of a status
        raw_status = "failed" if _is_truthy(raw.get("is_failed")) else "sent"

    costs: dict[str, Decimal] = {}
    try:
        for field_name in NUMERIC_FIELDS:
            costs[field_name] = parse_decimal(_pick(raw, aliases.get(field_name, ())))
    except ValueError as e:
        logger.warning(
            f"Malformed numeric field, zeroing costs: {e}",
            extra={"source": source.value, "campaign_id": campaign_id, "recipient": recipient},
        )
        costs = {field_name: Decimal("0").quantize(DECIMAL_PLACES) for field_name in NUMERIC_FIELDS}

    optional = {
        field_name: _optional_text(_pick(raw, aliases.get(field_name, ())))
        for field_name in (
            "status_reason", "first_name", "last_name", "company",
            "email", "carrier", "line_type", "external_record_id",
        )
    }
    for field_name, value in optional.items():
        if field_name in TEXT_MAX_LENGTHS:
            optional[field_name] = _fit(field_name, value)

    campaign_name = _optional_text(_pick(raw, aliases["campaign_name"])) or upstream_id

    return CanonicalRecord(
        source=source,
        source_campaign_id=campaign_id,
        campaign_name=_fit("campaign_name", campaign_name),
        recipient=recipient,
        event_at=event_at,
        status=normalize_status(raw_status, status_aliases),
        raw_status=_fit("raw_status", _optional_text(raw_status)),
        source_file=_fit("source_file", source_file),
        **costs,
        **optional,
    )


def normalize_batch(
    raws: Iterable[dict[str, Any]],
    source_tag: SourceTag | str,
    source_file: str | None = None,
    status_aliases: dict[str, str] | None = None,
    tenant_id: int | None = None,
) -> tuple[list[CanonicalRecord], list[NormalizationError]]:
    """
    Normalize a batch, collecting rejections instead of aborting.

    Returns:
        (normalized records, rejections)
    """
    records: list[CanonicalRecord] = []
    rejections: list[NormalizationError] = []

    for raw in raws:
        try:
            records.append(normalize(raw, source_tag, source_file, status_aliases, tenant_id))
        except NormalizationError as e:
            logger.warning(
                f"Rejected record: {e}",
                extra={"source": SourceTag(source_tag).value, "field": e.field_name, "source_file": source_file},
            )
            rejections.append(e)

    return records, rejections
