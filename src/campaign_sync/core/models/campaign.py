"""
Campaign model: a named batch of outbound contact attempts from one source.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from .enums import SourceTag


class Campaign(BaseModel):
    """
    A source campaign, optionally linked to a tenant.

    Attributes:
        campaign_id: Primary key (None before insert)
        source: Source the campaign comes from
        source_campaign_id: Identifier assigned by the source, unique per source
            ("<tenant_id>:<id>" for sources with one upstream instance per tenant)
        campaign_name: Display name as reported by the source
        tenant_id: Owning tenant (None until correlated)
        manually_linked: Link was set by an operator and is never re-correlated
        record_count: Denormalized count, maintained by the merge engine only
    """

    campaign_id: int | None = None
    source: SourceTag
    source_campaign_id: str = Field(..., min_length=1, max_length=255)
    campaign_name: str = Field(..., max_length=512)
    tenant_id: int | None = None
    manually_linked: bool = False
    record_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        json_schema_extra = {
            "example": {
                "campaign_id": 12,
                "source": "bulk_file",
                "source_campaign_id": "6512f0c2",
                "campaign_name": "Acme Roofing - October Storm Follow-up",
                "tenant_id": 3,
                "manually_linked": False,
                "record_count": 1840,
            }
        }
