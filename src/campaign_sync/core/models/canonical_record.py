"""
CanonicalRecord model: one normalized outbound contact attempt.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from .enums import RecordStatus, SourceTag


class CanonicalRecord(BaseModel):
    """
    A record after normalization, ready to be merged.

    The identity key is (campaign, recipient, event_at). Two records with
    the same key describe the same logical event.

    Attributes:
        source: Source the record was fetched from
        source_campaign_id: Campaign identifier assigned by the source, prefixed
            with "<tenant_id>:" for per-tenant sources
        campaign_name: Campaign display name
        recipient: Phone number or email address contacted
        event_at: Timezone-aware UTC event timestamp
        status: Normalized status
        raw_status: Status string as reported by the source
        status_reason: Free-text failure reason
        cost: Delivery cost
        compliance_fee: Compliance fee
        tts_fee: Text-to-speech fee
        source_file: Provenance (file name or fetch window key)
    """

    source: SourceTag
    source_campaign_id: str = Field(..., min_length=1, max_length=255)
    campaign_name: str = Field(default="", max_length=512)
    recipient: str = Field(..., min_length=1, max_length=255)
    event_at: datetime
    status: RecordStatus
    raw_status: str | None = None
    status_reason: str | None = None
    cost: Decimal = Decimal("0")
    compliance_fee: Decimal = Decimal("0")
    tts_fee: Decimal = Decimal("0")
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    email: str | None = None
    carrier: str | None = None
    line_type: str | None = None
    external_record_id: str | None = None
    source_file: str | None = None

    @field_validator("event_at")
    @classmethod
    def event_at_must_be_aware(cls, v: datetime) -> datetime:
        """Identity keys compare absolute times only."""
        if v.tzinfo is None or v.utcoffset() is None:
            raise ValueError("event_at must be timezone-aware")
        return v

    @property
    def identity_key(self) -> tuple[str, str, str, datetime]:
        """(source, source campaign id, recipient, event time)."""
        return (self.source.value, self.source_campaign_id, self.recipient, self.event_at)

    @property
    def total_cost(self) -> Decimal:
        return self.cost + self.compliance_fee + self.tts_fee
