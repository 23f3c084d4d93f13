"""
Bulk-file channel adapter.

Export files are dropped into a directory (synced from the provider's
SFTP by an external job). Each new *.json file is one unit of work.
"""

import json
from pathlib import Path
from typing import Any

from campaign_sync.core.errors import SourceError
from campaign_sync.core.models import SourceTag
from campaign_sync.observability.logger import get_logger

from .base import Cursor, FetchResult, FileCursor, SourceAdapter

logger = get_logger(__name__)

FILE_PATTERN = "*.json"


def parse_export(payload: Any) -> list[dict[str, Any]]:
    """
    Turn a decoded export into row dicts.

    Accepts the columnar layout {"fields": [...], "data": [[...], ...]}
    and the legacy list-of-objects layout.

    Raises:
        ValueError: If the payload has neither layout
    """
    if isinstance(payload, dict) and "fields" in payload and "data" in payload:
        fields = [str(name) for name in payload["fields"]]
        rows = []
        for index, values in enumerate(payload["data"]):
            if not isinstance(values, list):
                raise ValueError(f"Row {index} is not an array")
            rows.append(dict(zip(fields, values)))
        return rows

    if isinstance(payload, list):
        if not all(isinstance(row, dict) for row in payload):
            raise ValueError("Legacy export must be an array of objects")
        return payload

    raise ValueError("Unrecognized export layout")


class BulkFileAdapter(SourceAdapter):
    """Reads JSON export files from the configured drop directory."""

    source = SourceTag.BULK_FILE
    window_kind = "file"
    required_source_params = ("path",)

    @property
    def directory(self) -> Path:
        return Path(self.source_params["path"])

    def list_new_files(self, imported: set[str]) -> list[FileCursor]:
        """
        Files in the drop directory not imported yet, sorted by name.

        Raises:
            SourceError: If the directory cannot be listed
        """
        directory = self.directory
        if not directory.is_dir():
            raise SourceError(f"Drop directory not found: {directory}", source=self.source.value)

        try:
            names = sorted(p.name for p in directory.glob(FILE_PATTERN) if p.is_file())
        except OSError as e:
            raise SourceError(f"Cannot list {directory}: {e}", source=self.source.value) from e

        new = [FileCursor(name) for name in names if name not in imported]
        logger.info(f"Found {len(names)} file(s) in {directory}, {len(new)} new")
        return new

    def fetch(self, cursor: Cursor) -> FetchResult:
        if not isinstance(cursor, FileCursor):
            raise TypeError(f"{type(self).__name__} expects a FileCursor")

        path = self.directory / cursor.file_name
        try:
            with open(path, encoding="utf-8") as f:
                payload = json.load(f)
            rows = parse_export(payload)
        except (OSError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            raise SourceError(
                f"Cannot read {cursor.file_name}: {e}", source=self.source.value, unit=cursor.file_name
            ) from e

        logger.debug(f"Parsed {len(rows)} rows from {cursor.file_name}")
        return FetchResult(raw_records=rows, cursor=cursor, metadata={"path": str(path)})
