"""
FetchWindow model: a file or (tenant, month) window already retrieved.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .enums import SourceTag


class FetchWindow(BaseModel):
    """
    Marker recording that a window has been retrieved from a source.

    Attributes:
        source: Source tag
        tenant_id: Tenant the window belongs to (None for file windows)
        window_key: File name, or YYYY-MM for month windows
        window_kind: "file" or "month"
        window_from: Literal lower bound actually queried (month windows)
        window_to: Literal upper bound actually queried (month windows)
        record_count: Number of records retrieved for the window
        fetched_at: When the window was marked
    """

    window_id: int | None = None
    source: SourceTag
    tenant_id: int | None = None
    window_key: str = Field(..., min_length=1, max_length=512)
    window_kind: Literal["file", "month"]
    window_from: datetime | None = None
    window_to: datetime | None = None
    record_count: int = Field(default=0, ge=0)
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("window_to")
    @classmethod
    def check_bounds_order(cls, v, info):
        """Validate that window_to is not before window_from."""
        window_from = info.data.get("window_from")
        if v is not None and window_from is not None and v < window_from:
            raise ValueError("window_to must not be before window_from")
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "source": "marketing_api",
                "tenant_id": 3,
                "window_key": "2024-03",
                "window_kind": "month",
                "window_from": "2024-03-01T00:00:00Z",
                "window_to": "2024-03-31T23:59:59Z",
                "record_count": 4210,
            }
        }
