"""
Call-center API adapter.

The call center exposes a non-agent HTTP API that answers plain text:
pipe-delimited rows, with a header row when header=YES is passed. Error
responses start with "ERROR"; "NO RECORDS FOUND" is an empty result, not
a failure.
"""

from typing import Any

import requests

from campaign_sync.core.errors import SourceError
from campaign_sync.core.models import SourceTag
from campaign_sync.observability.logger import get_logger

from .base import Cursor, FetchResult, MonthCursor, SourceAdapter, normalize_url

logger = get_logger(__name__)

CLIENT_NAME = "campaign-sync"
DEFAULT_FUNCTION = "call_log_report"
EMPTY_MARKERS = ("NO RECORDS FOUND",)


def parse_pipe_rows(text: str) -> list[dict[str, str]]:
    """
    Parse pipe-delimited text whose first non-empty line is the header.

    Header names are lower-cased and trimmed; short rows are padded.
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return []

    header = [name.strip().lower() for name in lines[0].split("|")]
    rows = []
    for line in lines[1:]:
        values = [value.strip() for value in line.split("|")]
        values += [""] * (len(header) - len(values))
        rows.append(dict(zip(header, values)))
    return rows


class CallCenterAdapter(SourceAdapter):
    """Requests the call log of each configured campaign for one month."""

    source = SourceTag.CALL_CENTER
    window_kind = "month"
    required_tenant_params = ("url", "user", "pass", "campaign_ids")
    # Dispositions: sale / transfer reached a person, disconnected and
    # do-not-call numbers are failures; everything else (busy, no answer) is other
    default_status_aliases = {
        "SALE": "success",
        "XFER": "success",
        "DC": "failure",
        "ADC": "failure",
        "DNC": "failure",
    }

    def fetch(self, cursor: Cursor) -> FetchResult:
        """
        Fetch the call log of every campaign of the tenant for one window.

        Raises:
            SourceError: On HTTP errors or ERROR responses
        """
        if not isinstance(cursor, MonthCursor):
            raise TypeError(f"{type(self).__name__} expects a MonthCursor")

        params = self.tenant_params(cursor.tenant_id)
        campaign_ids = params["campaign_ids"]
        if isinstance(campaign_ids, str):
            campaign_ids = [c.strip() for c in campaign_ids.split(",") if c.strip()]

        rows: list[dict[str, Any]] = []
        with requests.Session() as session:
            for campaign_id in campaign_ids:
                campaign_rows = self._call_log(session, params, str(campaign_id), cursor)
                for row in campaign_rows:
                    if not row.get("campaign_id"):
                        row["campaign_id"] = str(campaign_id)
                rows.extend(campaign_rows)

        logger.info(
            f"Fetched {len(rows)} call rows for tenant {cursor.tenant_id} {cursor.year_month}",
            extra={"tenant_id": cursor.tenant_id, "window": cursor.year_month, "campaigns": len(campaign_ids)},
        )
        return FetchResult(raw_records=rows, cursor=cursor)

    def _call_log(
        self,
        session: requests.Session,
        params: dict[str, Any],
        campaign_id: str,
        cursor: MonthCursor,
    ) -> list[dict[str, str]]:
        unit = f"tenant {cursor.tenant_id} campaign {campaign_id} {cursor.year_month}"
        try:
            response = session.get(
                normalize_url(params["url"]),
                params={
                    "source": CLIENT_NAME,
                    "user": params["user"],
                    "pass": params["pass"],
                    "function": params.get("function") or DEFAULT_FUNCTION,
                    "campaign_id": campaign_id,
                    "query_date": cursor.window_from.strftime("%Y-%m-%d"),
                    "end_date": cursor.window_to.strftime("%Y-%m-%d"),
                    "header": "YES",
                },
                timeout=self.settings.request_timeout_seconds,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            # Never echo the URL: it carries credentials
            raise SourceError(
                f"Call log request failed for {unit}: {type(e).__name__}",
                source=self.source.value,
                unit=unit,
            ) from e

        text = response.text.strip()
        if text.startswith("ERROR"):
            if any(marker in text for marker in EMPTY_MARKERS):
                return []
            raise SourceError(f"Call center error for {unit}: {text[:200]}", source=self.source.value, unit=unit)

        return parse_pipe_rows(text)
