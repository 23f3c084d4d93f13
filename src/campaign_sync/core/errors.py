"""
Exception taxonomy for the sync pipeline.

Source and record errors are absorbed by the orchestrator and aggregated
into the sync run; lock conflicts and configuration errors propagate to
the caller of a trigger.
"""


class CampaignSyncError(Exception):
    """Base class for all pipeline errors."""


class SourceError(CampaignSyncError):
    """
    Transient failure talking to an external source.

    Attributes:
        source: Source tag the failure belongs to
        unit: File name or tenant the failure belongs to (if known)
    """

    def __init__(self, message: str, source: str | None = None, unit: str | None = None):
        self.source = source
        self.unit = unit
        super().__init__(message)


class SourceTimeoutError(SourceError):
    """An adapter call exceeded its timeout."""


class NormalizationError(CampaignSyncError):
    """
    A raw record could not be turned into a canonical record.

    Attributes:
        field_name: Field that made the record unusable
        raw: The offending raw record
    """

    def __init__(self, message: str, field_name: str | None = None, raw: dict | None = None):
        self.field_name = field_name
        self.raw = raw
        super().__init__(message)


class SyncInProgressError(CampaignSyncError):
    """
    A sync for this source is already running.

    Attributes:
        source: Source tag whose lease is held
        elapsed_seconds: How long the running sync has been going
    """

    code = "SYNC_IN_PROGRESS"

    def __init__(self, source: str, elapsed_seconds: float = 0.0):
        self.source = source
        self.elapsed_seconds = elapsed_seconds
        super().__init__(
            f"Sync already in progress for source '{source}' "
            f"(running for {elapsed_seconds:.1f}s)"
        )


class ConfigurationError(CampaignSyncError):
    """Missing or invalid credentials/settings; aborts a source before any fetch."""

    code = "CONFIGURATION_ERROR"


class NotFoundError(CampaignSyncError):
    """A referenced tenant or campaign does not exist in the requested scope."""
