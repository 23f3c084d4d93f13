"""
Tenant model representing a customer whose campaigns are tracked separately.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator


class Tenant(BaseModel):
    """
    A logical customer owning zero or more campaigns.

    Attributes:
        tenant_id: Primary key
        name: Surface name used for cross-source correlation
        is_active: Inactive tenants are skipped by API syncs
        created_at: When the tenant was registered
    """

    tenant_id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1, max_length=255)
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        """Reject whitespace-only names."""
        if not v.strip():
            raise ValueError("name cannot be empty or whitespace-only")
        return v

    @property
    def match_name(self) -> str:
        """Name as used for correlation: trimmed and casefolded."""
        return self.name.strip().casefold()

    class Config:
        json_schema_extra = {
            "example": {
                "tenant_id": 3,
                "name": "Acme Roofing",
                "is_active": True,
            }
        }
