import logging
from typing import Any, Dict, Iterable, Mapping, Union

import pandas as pd

from openet_pipeline.api_fetcher.schema import (
    CANONICAL_LEADING,
    CANONICAL_TRAILING,
    CanonicalRow,
    QuotaRecord,
)

logger = logging.getLogger(__name__)


def rows_to_frame(rows: Iterable[Union[CanonicalRow, Mapping[str, Any]]]) -> pd.DataFrame:
    """
    Canonical rows -> DataFrame in canonical column order, server row order kept.
    The date column is converted to datetime64.
    """
    records = [
        row.to_record() if isinstance(row, CanonicalRow) else dict(row) for row in rows
    ]
    if not records:
        return pd.DataFrame(columns=list(CANONICAL_LEADING + CANONICAL_TRAILING))

    df = pd.DataFrame.from_records(records)
    df["date"] = pd.to_datetime(df["date"])
    return df


def quota_to_frame(record: Union[QuotaRecord, Mapping[str, Any]]) -> pd.DataFrame:
    """One-row frame with one column per quota field."""
    entries = record.entries if isinstance(record, QuotaRecord) else dict(record)
    return pd.DataFrame([entries])


def frame_report(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Summarizes a canonical time-series frame: row/entity counts,
    date span and variable columns. Logs the report.
    """
    report: Dict[str, Any] = {}
    fixed = set(CANONICAL_LEADING + CANONICAL_TRAILING)

    report["rows"] = len(df)
    report["variables"] = [c for c in df.columns if c not in fixed]

    if "entity_id" in df.columns:
        report["entities"] = int(df["entity_id"].nunique())
    else:
        report["entities"] = 0

    if "date" in df.columns and len(df):
        dates = pd.to_datetime(df["date"], errors="coerce")
        report["start"] = dates.min().date().isoformat() if dates.notna().any() else None
        report["end"] = dates.max().date().isoformat() if dates.notna().any() else None
    else:
        report["start"] = None
        report["end"] = None

    # Missing values per variable column (a variable absent for some dates)
    report["missing_values"] = {
        c: int(df[c].isna().sum()) for c in report["variables"]
    }

    logger.info("frame_report report=%s", report)
    return report
