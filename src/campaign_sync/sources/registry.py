"""
Adapter registry: one adapter class per source tag.
"""

from campaign_sync.config import Settings
from campaign_sync.core.models import SourceTag

from .base import SourceAdapter
from .bulk_file import BulkFileAdapter
from .call_center import CallCenterAdapter
from .marketing_api import MarketingApiAdapter

ADAPTERS: dict[SourceTag, type[SourceAdapter]] = {
    SourceTag.BULK_FILE: BulkFileAdapter,
    SourceTag.MARKETING_API: MarketingApiAdapter,
    SourceTag.CALL_CENTER: CallCenterAdapter,
}


def build_adapter(source: SourceTag | str, settings: Settings) -> SourceAdapter:
    tag = SourceTag(source)
    return ADAPTERS[tag](settings.source(tag), settings.credential_store())


def build_adapters(settings: Settings) -> dict[SourceTag, SourceAdapter]:
    """One adapter per known source, configured or not."""
    return {tag: build_adapter(tag, settings) for tag in ADAPTERS}
