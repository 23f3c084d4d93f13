"""
Source adapter contract.

An adapter fetches raw records for one cursor and returns them together
with the cursor it covered. Adapters never mark anything as fetched: the
orchestrator marks a window only after the records were merged, so a
failure anywhere leaves the window unmarked and it is retried on the
next run.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextvars import copy_context
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, ClassVar, Literal

from campaign_sync.config import CredentialStore, SourceSettings
from campaign_sync.core.errors import ConfigurationError, SourceTimeoutError
from campaign_sync.core.models import SourceTag


@dataclass(frozen=True)
class FileCursor:
    """One not-yet-imported file of a file-based source."""

    file_name: str

    @property
    def key(self) -> str:
        return self.file_name


@dataclass(frozen=True)
class MonthCursor:
    """
    One (tenant, calendar month) window of a month-windowed source.

    window_from/window_to are the literal bounds to request; they cover the
    whole month, or only the gap left by an earlier partial fetch.
    """

    tenant_id: int
    year_month: str
    window_from: datetime
    window_to: datetime

    @property
    def key(self) -> str:
        return self.year_month


Cursor = FileCursor | MonthCursor


@dataclass
class FetchResult:
    raw_records: list[dict[str, Any]]
    cursor: Cursor
    metadata: dict[str, Any] = field(default_factory=dict)


def normalize_url(url: str) -> str:
    """Default to https:// and drop trailing slashes."""
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url.rstrip("/")


def run_with_timeout(fn: Callable[..., Any], timeout: float, *args, **kwargs) -> Any:
    """
    Run fn in a worker thread and give up after timeout seconds.

    The worker cannot be killed; on timeout it is abandoned and its result
    discarded.

    Raises:
        SourceTimeoutError: If fn did not finish in time
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="adapter")
    ctx = copy_context()
    future = executor.submit(ctx.run, fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as e:
        raise SourceTimeoutError(f"Adapter call timed out after {timeout:.0f}s") from e
    finally:
        executor.shutdown(wait=False)


class SourceAdapter(ABC):
    """
    Base class for source adapters.

    Subclasses declare the credential keys they need; check_configuration
    verifies them before a run touches the network.
    """

    source: ClassVar[SourceTag]
    window_kind: ClassVar[Literal["file", "month"]]
    required_source_params: ClassVar[tuple[str, ...]] = ()
    required_tenant_params: ClassVar[tuple[str, ...]] = ()
    default_status_aliases: ClassVar[dict[str, str]] = {}

    def __init__(self, settings: SourceSettings, credentials: CredentialStore):
        self.settings = settings
        self.credentials = credentials

    @property
    def status_aliases(self) -> dict[str, str]:
        """Built-in aliases of the source, overridden by configured ones."""
        return {**self.default_status_aliases, **self.settings.status_aliases}

    @property
    def source_params(self) -> dict[str, Any]:
        return self.credentials.source_params(self.source)

    def enrolled_tenants(self) -> list[int]:
        """Tenants with credentials for this source (empty for file sources)."""
        return self.credentials.tenant_ids(self.source)

    def tenant_params(self, tenant_id: int) -> dict[str, Any]:
        """
        Merged credentials of one tenant.

        Raises:
            ConfigurationError: If the tenant is not enrolled or a key is missing
        """
        params = self.credentials.tenant_params(self.source, tenant_id)
        if params is None:
            raise ConfigurationError(
                f"Tenant {tenant_id} has no credentials for source {self.source.value}"
            )
        missing = [key for key in self.required_tenant_params if not params.get(key)]
        if missing:
            raise ConfigurationError(
                f"Tenant {tenant_id} is missing {', '.join(missing)} for source {self.source.value}"
            )
        return params

    def check_configuration(self) -> None:
        """
        Pre-flight check run before any fetch.

        Raises:
            ConfigurationError: If required credentials are missing
        """
        missing = [key for key in self.required_source_params if not self.source_params.get(key)]
        if missing:
            raise ConfigurationError(
                f"Source {self.source.value} is missing required setting(s): {', '.join(missing)}"
            )

        if self.window_kind == "month":
            tenants = self.enrolled_tenants()
            if not tenants:
                raise ConfigurationError(f"No tenants are configured for source {self.source.value}")
            for tenant_id in tenants:
                self.tenant_params(tenant_id)

    @abstractmethod
    def fetch(self, cursor: Cursor) -> FetchResult:
        """
        Fetch the raw records of one cursor.

        Raises:
            SourceError: If the upstream call fails
        """
