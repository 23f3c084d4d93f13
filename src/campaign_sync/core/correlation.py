"""
Tenant correlation by campaign name.

Bulk-file campaigns carry no tenant identifier; the tenant is inferred
from the campaign name. The portion of the name before the delimiter
(e.g. "Acme Roofing" in "Acme Roofing - Storm Follow-up") is compared
against tenant names, case-insensitively and trimmed.

Correlation is a pure function and is re-evaluated on every run, since
tenants can be renamed.
"""

from typing import Iterable

from campaign_sync.core.models import Tenant

DEFAULT_DELIMITER = " - "


def campaign_prefix(campaign_name: str, delimiter: str = DEFAULT_DELIMITER) -> str:
    """
    Matching portion of a campaign name: text before the delimiter,
    trimmed and casefolded. Names without the delimiter are used whole.
    """
    if not campaign_name:
        return ""
    head = campaign_name.split(delimiter, 1)[0] if delimiter else campaign_name
    return head.strip().casefold()


def correlate(
    campaign_name: str,
    tenants: Iterable[Tenant],
    delimiter: str = DEFAULT_DELIMITER,
) -> int | None:
    """
    Find the tenant a campaign belongs to.

    A tenant matches when its trimmed, casefolded name is a substring of
    the campaign name prefix. When several tenants match, the longest
    name wins (so "Acme Roofing West" beats "Acme Roofing"); ties go to
    the lowest tenant id so the result is deterministic.

    Args:
        campaign_name: Campaign name as reported by the source
        tenants: Candidate tenants
        delimiter: Separator between tenant part and campaign part

    Returns:
        tenant_id of the best match, or None
    """
    prefix = campaign_prefix(campaign_name, delimiter)
    if not prefix:
        return None

    best: Tenant | None = None
    for tenant in tenants:
        name = tenant.match_name
        if not name or name not in prefix:
            continue
        if best is None:
            best = tenant
            continue
        if len(name) > len(best.match_name) or (
            len(name) == len(best.match_name) and tenant.tenant_id < best.tenant_id
        ):
            best = tenant

    return best.tenant_id if best is not None else None
