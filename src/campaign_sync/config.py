"""
Configuration management.

Settings and source credentials are loaded from a YAML file. Values of
the form ${VAR} or ${VAR:-default} are expanded from the environment
(a .env file is loaded first, if present), so secrets never need to be
written into the file itself.

Expected YAML format:
```yaml
database:
  host: ${DB_HOST:-localhost}
  password: ${DB_PASSWORD}

sync:
  max_concurrency: 5
  adapter_timeout_seconds: 120

sources:
  bulk_file:
    interval_minutes: 30
    correlate_by_name: true
  marketing_api:
    interval_minutes: 60
    history_start: "2024-01"

credentials:
  bulk_file:
    path: /data/drop
  marketing_api:
    tenants:
      3: {base_url: acme.example.com, username: api, password: ${ACME_PW}, report_id: 12}
```
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from campaign_sync.core.errors import ConfigurationError
from campaign_sync.core.models import SourceTag

DEFAULT_CONFIG_PATH = "config/sources.yaml"
CONFIG_PATH_ENV = "CAMPAIGN_SYNC_CONFIG"

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")
_MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def _tenant_key(key: Any) -> int | None:
    if isinstance(key, bool):
        return None
    try:
        return int(str(key).strip())
    except ValueError:
        return None


class DatabaseSettings(BaseModel):
    """Connection pool settings; unset fields fall back to DB_* env vars."""

    host: str = Field(default_factory=lambda: os.getenv("DB_HOST", "localhost"))
    port: int = Field(default_factory=lambda: int(os.getenv("DB_PORT", "5432")))
    name: str = Field(default_factory=lambda: os.getenv("DB_NAME", "campaign_sync"))
    user: str = Field(default_factory=lambda: os.getenv("DB_USER", "campaign_sync"))
    password: str | None = Field(default_factory=lambda: os.getenv("DB_PASSWORD"))
    min_size: int = Field(default=2, ge=1)
    max_size: int = Field(default=10, ge=1)
    timeout: float = Field(default=30.0, gt=0)

    def pool_kwargs(self) -> dict[str, Any]:
        """Arguments for DatabaseConnectionPool."""
        return {
            "host": self.host,
            "port": self.port,
            "database": self.name,
            "user": self.user,
            "password": self.password,
            "min_size": self.min_size,
            "max_size": self.max_size,
            "timeout": self.timeout,
        }


class SyncSettings(BaseModel):
    """
    Orchestrator tuning.

    Attributes:
        max_concurrency: Tenants synced in parallel per batch
        adapter_timeout_seconds: Timeout for one adapter call (file or tenant-month)
        merge_batch_size: Records per upsert statement batch
    """

    max_concurrency: int = Field(default=5, ge=1, le=50)
    adapter_timeout_seconds: float = Field(default=120.0, gt=0)
    merge_batch_size: int = Field(default=500, ge=1)


class SchedulerSettings(BaseModel):
    enabled: bool = True
    timezone: str = "UTC"


class ApiSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)


class SourceSettings(BaseModel):
    """
    Per-source settings.

    Attributes:
        enabled: Whether the scheduler runs this source
        interval_minutes: Fixed interval between scheduled runs
        correlate_by_name: Link campaigns to tenants by campaign-name prefix
        name_delimiter: Separator between tenant part and campaign part of a name
        status_aliases: Extra raw status -> success/failure/other mappings
        history_start: First month (YYYY-MM) requested for month-windowed sources
        request_timeout_seconds: HTTP timeout per request
        page_size: Rows requested per page from paginated APIs
    """

    enabled: bool = True
    interval_minutes: int = Field(default=60, ge=1)
    correlate_by_name: bool = False
    name_delimiter: str = " - "
    status_aliases: dict[str, str] = Field(default_factory=dict)
    history_start: str | None = None
    request_timeout_seconds: float = Field(default=120.0, gt=0)
    page_size: int = Field(default=5000, ge=1)

    @field_validator("history_start")
    @classmethod
    def check_month_format(cls, v):
        """Validate YYYY-MM."""
        if v is not None and not _MONTH_PATTERN.match(str(v)):
            raise ValueError(f"history_start must be YYYY-MM, got {v!r}")
        return v

    @field_validator("status_aliases")
    @classmethod
    def check_alias_targets(cls, v):
        """Alias targets must be one of the normalized statuses."""
        allowed = {"success", "failure", "other"}
        for alias, target in v.items():
            if str(target).strip().lower() not in allowed:
                raise ValueError(
                    f"status alias {alias!r} maps to {target!r}; expected one of {sorted(allowed)}"
                )
        return v


class Settings(BaseModel):
    """Top-level application settings."""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    sources: dict[SourceTag, SourceSettings] = Field(default_factory=dict)
    credentials: dict[str, Any] = Field(default_factory=dict)

    @field_validator("credentials")
    @classmethod
    def check_tenant_keys(cls, v):
        """Tenant sections are keyed by numeric tenant id."""
        for source, section in v.items():
            tenants = section.get("tenants") if isinstance(section, dict) else None
            for key in tenants or {}:
                if _tenant_key(key) is None:
                    raise ValueError(f"credentials.{source}.tenants key {key!r} is not a tenant id")
        return v

    def source(self, source: SourceTag | str) -> SourceSettings:
        """Settings for a source (defaults when the source is not configured)."""
        return self.sources.get(SourceTag(source)) or SourceSettings()

    def credential_store(self) -> "CredentialStore":
        return CredentialStore(self.credentials)


class CredentialStore:
    """
    Opaque connection parameters per source and per tenant.

    Layout:
        credentials:
          <source>:
            <source-level key>: value
            tenants:
              <tenant_id>: {<tenant-level key>: value}

    Tenant parameters are merged over the source-level ones. A tenant is
    enrolled in a source when it has an entry under that source's tenants.
    """

    def __init__(self, credentials: dict[str, Any] | None = None):
        self._credentials = credentials or {}

    def _section(self, source: SourceTag | str) -> dict[str, Any]:
        return dict(self._credentials.get(SourceTag(source).value) or {})

    def source_params(self, source: SourceTag | str) -> dict[str, Any]:
        """Source-level parameters (without the tenants section)."""
        section = self._section(source)
        section.pop("tenants", None)
        return section

    def _tenants(self, source: SourceTag | str) -> dict[int, Any]:
        tenants = self._section(source).get("tenants") or {}
        parsed = {}
        for key, params in tenants.items():
            tenant_id = _tenant_key(key)
            if tenant_id is None:
                raise ConfigurationError(
                    f"Source {SourceTag(source).value} has a tenant entry {key!r} that is not a tenant id"
                )
            parsed[tenant_id] = params
        return parsed

    def tenant_ids(self, source: SourceTag | str) -> list[int]:
        """
        Tenants enrolled in the source, ascending.

        Raises:
            ConfigurationError: If a tenant entry is not keyed by a numeric id
        """
        return sorted(self._tenants(source))

    def tenant_params(self, source: SourceTag | str, tenant_id: int) -> dict[str, Any] | None:
        """Merged parameters for one tenant, or None when not enrolled."""
        tenants = self._tenants(source)
        if tenant_id not in tenants:
            return None
        return {**self.source_params(source), **(tenants[tenant_id] or {})}


def expand_env(value: Any) -> Any:
    """
    Recursively expand ${VAR} and ${VAR:-default} in strings.

    Unset variables without a default expand to an empty string; missing
    credentials are reported by the adapters' pre-flight check.
    """
    if isinstance(value, str):
        return _ENV_PATTERN.sub(
            lambda m: os.getenv(m.group(1), m.group(2) if m.group(2) is not None else ""),
            value,
        )
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings from YAML.

    Args:
        config_path: Path to the YAML file. Defaults to the CAMPAIGN_SYNC_CONFIG
            env var, then config/sources.yaml (optional when not given explicitly).

    Returns:
        Validated Settings

    Raises:
        ConfigurationError: If an explicit file is missing or the content is invalid
    """
    load_dotenv()

    explicit = config_path is not None or os.getenv(CONFIG_PATH_ENV) is not None
    path = Path(config_path or os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)

    if not path.exists():
        if explicit:
            raise ConfigurationError(f"Configuration file not found: {path}")
        return Settings()

    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")

    try:
        return Settings.model_validate(expand_env(raw))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e
