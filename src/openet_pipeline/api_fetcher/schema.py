from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import ErrorKind


class WireRequest(BaseModel):
    """
    Fully resolved HTTP request for one OpenET call.

    Built fresh per call and never retained. Headers carry the API key,
    so they are kept out of repr().
    """

    model_config = ConfigDict(frozen=True)

    operation: str = Field(..., description="Catalog name of the operation")
    method: str = Field(..., description="GET or POST")
    url: str = Field(..., description="Absolute endpoint URL")
    headers: Dict[str, str] = Field(default_factory=dict, repr=False)
    json_body: Optional[Dict[str, Any]] = Field(
        None, description="JSON body for POST encodings"
    )
    query: Optional[Dict[str, Any]] = Field(
        None, description="Query string for GET encodings"
    )
    params: Dict[str, Any] = Field(
        default_factory=dict,
        description="Resolved caller parameters (defaults applied, never the credential)",
    )


class RawResponse(BaseModel):
    """Status code and body as returned by the transport."""

    status_code: int
    content: bytes = b""
    content_type: str = ""
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


class ErrorRecord(BaseModel):
    """Structured failure returned instead of rows / record / URL."""

    kind: ErrorKind
    http_status: Optional[int] = None
    server_message: Optional[str] = None
    hint: str = ""

    @property
    def message(self) -> str:
        """Human-readable line suitable for direct display."""
        text = f"{self.kind.value}: {self.hint}" if self.hint else self.kind.value
        details = []
        if self.http_status is not None:
            details.append(f"HTTP {self.http_status}")
        if self.server_message and self.server_message != self.hint:
            details.append(self.server_message)
        if details:
            text += f" ({': '.join(details)})"
        return text


CANONICAL_LEADING = ("date", "year", "month", "julian_day", "entity_id")
CANONICAL_TRAILING = ("units", "model")


class CanonicalRow(BaseModel):
    """
    Uniform time-series record, regardless of which endpoint produced it.

    Variable columns (et, eto, pr, ...) are dynamic and stored as extras,
    one per requested variable once the rows are pivoted wide.
    """

    model_config = ConfigDict(extra="allow")

    date: dt.date
    year: int
    month: int
    julian_day: int
    entity_id: str
    units: Optional[str] = None
    model: Optional[str] = None

    @property
    def variables(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    def to_record(self) -> Dict[str, Any]:
        """Flat dict in canonical column order (variables between entity_id and units)."""
        record: Dict[str, Any] = {name: getattr(self, name) for name in CANONICAL_LEADING}
        record.update(self.variables)
        for name in CANONICAL_TRAILING:
            record[name] = getattr(self, name)
        return record


class QuotaRecord(BaseModel):
    """Flat quota/status mapping; null upstream values are stored as "None"."""

    entries: Dict[str, Any] = Field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        return self.entries[key]

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def get(self, key: str, default: Any = None) -> Any:
        return self.entries.get(key, default)

    def keys(self) -> List[str]:
        return list(self.entries)


class NormalizedResult(BaseModel):
    """
    Outcome of one OpenET call: either a value or an ErrorRecord.

    value is a list of CanonicalRow (time-series operations), a QuotaRecord
    (status operations) or a download URL string (export operations).
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    operation: str
    value: Any = None
    error: Optional[ErrorRecord] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return the value, or raise APIClientResponseError carrying the error record."""
        if self.error is not None:
            from .client_base import APIClientResponseError

            raise APIClientResponseError(self.error, operation=self.operation)
        return self.value
