from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

from .schema import QuotaRecord


logger = logging.getLogger(__name__)


# (label, upstream key aliases tried in order)
QUOTA_SUMMARY_FIELDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Tier", ("Tier", "tier")),
    ("Monthly requests", ("Monthly Requests", "monthly_requests")),
    ("Max field IDs", ("Max Field IDs", "Max Field Ids", "max_field_ids")),
    ("Compute units used", ("Compute Units Used", "Compute Units", "compute_units_used")),
    ("Max acres", ("Max Acres", "max_acres")),
    ("Max polygons", ("Max Polygons", "max_polygons")),
    ("Linkage status", ("Linkage Status", "Linked", "Cloud Project ID", "linkage_status")),
)

EXPIRATION_KEYS = ("Expiration date", "expiration_date", "Expiration Date")


def _lookup(record: QuotaRecord, aliases: Sequence[str]) -> str:
    for key in aliases:
        if key in record:
            return str(record[key])
    return "None"


def render_quota_summary(record: QuotaRecord) -> str:
    """Fixed-order, human-readable quota summary."""
    width = max(len(label) for label, _ in QUOTA_SUMMARY_FIELDS)
    lines = ["OpenET account quota:"]
    for label, aliases in QUOTA_SUMMARY_FIELDS:
        lines.append(f"  {label:<{width}}  {_lookup(record, aliases)}")
    return "\n".join(lines)


def render_expiration_summary(record: QuotaRecord) -> str:
    return f"OpenET API key expires on: {_lookup(record, EXPIRATION_KEYS)}"


def report_quota(record: QuotaRecord, log: Optional[logging.Logger] = None) -> QuotaRecord:
    """Log the quota summary and hand the record back unchanged."""
    log = log or logger
    for line in render_quota_summary(record).splitlines():
        log.info(line)
    return record
