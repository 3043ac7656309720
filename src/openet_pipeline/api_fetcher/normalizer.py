from __future__ import annotations

import datetime as dt
import io
import json
import logging
import math
import zipfile
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from .catalog import (
    ColumnRule,
    OperationDescriptor,
    ResponseShape,
    get_operation,
)
from .client_base import APIClientError, APIClientTimeout
from .errors import DEFAULT_HINTS, TIMEOUT_HINT, ErrorKind, classify_status
from .schema import CanonicalRow, ErrorRecord, NormalizedResult, QuotaRecord, RawResponse
from .units import mm_to_inches


logger = logging.getLogger(__name__)

NULL_SENTINEL = "None"

_MISSING = object()
_URL_KEYS = ("bucket_url", "url", "destination", "file_url")
_URL_PREFIXES = ("http://", "https://", "gs://")


# -----------------------------------------------------------------------------
# Small parsing helpers
# -----------------------------------------------------------------------------
def _first(record: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if key in record:
            return record[key]
    return _MISSING


def _parse_date(value: Any) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value).strip()[:10])


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    number = float(value)
    return None if math.isnan(number) else number


def date_parts(value: Any) -> Tuple[int, int, int]:
    """(year, month, julian day of year) for an ISO date or date object."""
    day = _parse_date(value)
    return day.year, day.month, day.timetuple().tm_yday


def _load_payload(response: RawResponse) -> Any:
    text = response.text().strip()
    if not text:
        raise ValueError("empty response body")
    return json.loads(text)


def _load_records(response: RawResponse) -> List[Dict[str, Any]]:
    """
    Accept common shapes:
    - JSON list[dict]
    - JSON {"data": list[dict]} / {"results": list[dict]}
    - CSV text, or a zip archive holding one CSV (bulk field exports)
    """
    content_type = response.content_type.lower()
    if "csv" in content_type or "zip" in content_type:
        frame = pd.read_csv(
            io.BytesIO(response.content),
            dtype=str,
            compression="zip" if "zip" in content_type else None,
        )
        frame = frame.astype(object).where(frame.notna(), None)
        return frame.to_dict(orient="records")

    payload = _load_payload(response)
    if isinstance(payload, dict):
        for key in ("data", "results"):
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break

    if not isinstance(payload, list):
        raise ValueError(
            f"expected a JSON list of objects, got {type(payload).__name__}"
        )
    if any(not isinstance(item, dict) for item in payload):
        raise ValueError("expected every list element to be a JSON object")
    return payload


def extract_server_message(response: RawResponse) -> Optional[str]:
    """Best-effort server message: JSON detail/message, else the raw text."""
    text = response.text().strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
    except (ValueError, RecursionError):
        return text

    if isinstance(payload, dict):
        detail = payload.get("detail")
        if isinstance(detail, str) and detail:
            return detail
        if isinstance(detail, list):
            msgs = [
                str(item.get("msg")) if isinstance(item, dict) and item.get("msg") else str(item)
                for item in detail
            ]
            if msgs:
                return "; ".join(msgs)
        for key in ("message", "error", "status"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    if isinstance(payload, str):
        return payload
    return text


# -----------------------------------------------------------------------------
# Shape parsers
# -----------------------------------------------------------------------------
def _requested(params: Mapping[str, Any], name: Optional[str]) -> List[str]:
    if not name:
        return []
    value = params.get(name)
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


def _canonical_row(
    operation: OperationDescriptor,
    row: Mapping[str, Any],
    variables: Sequence[str],
    units_label: Optional[str],
) -> CanonicalRow:
    day: dt.date = row["date"]
    year, month, julian_day = date_parts(day)
    data: Dict[str, Any] = {}
    for column in operation.output_schema:
        rule = column.rule
        if rule is ColumnRule.DATE:
            data[column.name] = day
        elif rule is ColumnRule.YEAR:
            data[column.name] = year
        elif rule is ColumnRule.MONTH:
            data[column.name] = month
        elif rule is ColumnRule.JULIAN_DAY:
            data[column.name] = julian_day
        elif rule is ColumnRule.ENTITY:
            data[column.name] = row["entity_id"]
        elif rule is ColumnRule.VARIABLES:
            for variable in variables:
                data[variable] = row["values"].get(variable)
        elif rule is ColumnRule.UNITS:
            data[column.name] = units_label
        elif rule is ColumnRule.MODEL:
            data[column.name] = row["model"]
    return CanonicalRow.model_validate(data)


_PIVOT_KEY = ["date", "entity_id", "model"]


def _long_frame(
    operation: OperationDescriptor,
    records: Sequence[Mapping[str, Any]],
    requested: Sequence[str],
    default_model: str,
) -> pd.DataFrame:
    """Upstream records -> long frame of (date, entity_id, model, variable, value)."""
    keys = operation.record_keys
    entity_column = next(
        (c for c in operation.output_schema if c.rule is ColumnRule.ENTITY), None
    )
    constant_entity = entity_column.constant if entity_column is not None else None

    rows: List[Dict[str, Any]] = []
    for record in records:
        raw_date = _first(record, keys.date)
        if raw_date is _MISSING or raw_date is None:
            raise ValueError(f"record has none of the date keys {keys.date}")

        if constant_entity is not None:
            entity = constant_entity
        else:
            raw_entity = _first(record, keys.entity)
            if raw_entity is _MISSING or raw_entity is None:
                raise ValueError(f"record has none of the id keys {keys.entity}")
            entity = str(raw_entity)

        raw_variable = _first(record, keys.variable)
        if raw_variable is _MISSING or raw_variable is None:
            raw_variable = requested[0] if requested else "value"
        raw_variable = str(raw_variable)
        variable = raw_variable.lower()

        raw_value = _first(record, (raw_variable, variable) + keys.value)
        if raw_value is _MISSING:
            raise ValueError(f"record has no value for variable '{variable}'")

        raw_model = _first(record, keys.model)
        model = default_model if raw_model is _MISSING or raw_model is None else str(raw_model)

        rows.append(
            {
                "date": _parse_date(raw_date),
                "entity_id": entity,
                "model": model,
                "variable": variable,
                "value": _to_float(raw_value),
            }
        )

    return pd.DataFrame.from_records(rows, columns=_PIVOT_KEY + ["variable", "value"])


def _timeseries_rows(
    operation: OperationDescriptor, response: RawResponse, params: Mapping[str, Any]
) -> List[CanonicalRow]:
    """
    Map upstream records to a long frame, convert units per variable, then
    pivot wide on (date, entity_id, model) keeping the order in which keys
    first appear. Two values for the same cell are rejected, never merged.
    """
    records = _load_records(response)
    if not records:
        return []

    requested = [v.lower() for v in _requested(params, operation.variable_param)]
    default_model = ",".join(_requested(params, operation.model_param))
    units = params.get(operation.unit_param) if operation.unit_param else None
    units_label = operation.unit_labels.get(units, units) if units is not None else None

    long = _long_frame(operation, records, requested, default_model)

    conflicts = long.duplicated(subset=_PIVOT_KEY + ["variable"], keep=False)
    if conflicts.any():
        first = long[conflicts].iloc[0]
        raise ValueError(
            f"{int(conflicts.sum())} records share one date/entity/model/variable cell "
            f"({first['date']} / {first['entity_id']} / {first['model'] or '-'} / "
            f"{first['variable']}); responses without a model key need one model per call"
        )

    conversion = operation.unit_conversion
    if conversion is not None:
        mask = long["variable"].map(lambda v: conversion.applies(units, v)).astype(bool)
        long.loc[mask, "value"] = long.loc[mask, "value"].map(mm_to_inches)

    variables = list(requested)
    variables += [v for v in long["variable"].unique() if v not in variables]

    order = pd.MultiIndex.from_frame(long[_PIVOT_KEY].drop_duplicates())
    wide = long.pivot(index=_PIVOT_KEY, columns="variable", values="value").reindex(
        index=order, columns=variables
    )

    rows: List[CanonicalRow] = []
    for (day, entity, model), values in wide.iterrows():
        row = {
            "date": day,
            "entity_id": entity,
            "model": model or None,
            "values": {name: _to_float(value) for name, value in values.items()},
        }
        rows.append(_canonical_row(operation, row, variables, units_label))
    return rows


def flatten_quota(payload: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten nested objects to "parent.child" keys; nulls become "None"."""
    flat: Dict[str, Any] = {}
    for key, value in payload.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping) and value:
            flat.update(flatten_quota(value, prefix=f"{name}."))
        elif value is None or (isinstance(value, Mapping) and not value):
            flat[name] = NULL_SENTINEL
        elif isinstance(value, list):
            flat[name] = ", ".join(NULL_SENTINEL if v is None else str(v) for v in value)
        else:
            flat[name] = value
    return flat


def _quota_record(
    operation: OperationDescriptor, response: RawResponse, params: Mapping[str, Any]
) -> QuotaRecord:
    payload = _load_payload(response)
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
    return QuotaRecord(entries=flatten_quota(payload))


def _download_url(
    operation: OperationDescriptor, response: RawResponse, params: Mapping[str, Any]
) -> str:
    text = response.text().strip()
    try:
        payload: Any = json.loads(text)
    except (ValueError, RecursionError):
        payload = text

    if isinstance(payload, dict):
        for key in _URL_KEYS:
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        raise ValueError(f"no download URL among response keys {sorted(payload)}")

    if isinstance(payload, str) and payload.strip().startswith(_URL_PREFIXES):
        return payload.strip()
    raise ValueError("response does not contain a download URL")


_SHAPE_PARSERS: Dict[ResponseShape, Callable[[OperationDescriptor, RawResponse, Mapping[str, Any]], Any]] = {
    ResponseShape.JSON_LIST_OF_OBJECTS: _timeseries_rows,
    ResponseShape.JSON_OBJECT: _quota_record,
    ResponseShape.CSV_URL: _download_url,
}


# -----------------------------------------------------------------------------
# Public entry points
# -----------------------------------------------------------------------------
def classify_failure(operation: OperationDescriptor, response: RawResponse) -> ErrorRecord:
    kind, hint = classify_status(response.status_code, operation.error_hints)
    server_message = extract_server_message(response)
    if kind is ErrorKind.UNKNOWN:
        hint = server_message or f"unexpected HTTP status {response.status_code}"
    return ErrorRecord(
        kind=kind,
        http_status=response.status_code,
        server_message=server_message,
        hint=hint or "",
    )


def normalize_response(
    operation: Union[str, OperationDescriptor],
    response: RawResponse,
    params: Optional[Mapping[str, Any]] = None,
) -> NormalizedResult:
    """
    Turn a raw response into rows / quota record / URL, or an ErrorRecord.

    Never raises for upstream problems: HTTP failures are classified and
    bodies that do not match the expected shape become MalformedResponse.
    """
    descriptor = get_operation(operation)

    if not response.ok:
        error = classify_failure(descriptor, response)
        logger.warning(
            "%s failed with HTTP %s [%s]: %s",
            descriptor.name,
            response.status_code,
            error.kind.value,
            error.server_message or error.hint,
        )
        return NormalizedResult(operation=descriptor.name, error=error)

    parser = _SHAPE_PARSERS[descriptor.response_shape]
    try:
        value = parser(descriptor, response, params or {})
    except (ValueError, TypeError, KeyError, RecursionError, zipfile.BadZipFile) as e:
        logger.warning("%s: unexpected response body: %s", descriptor.name, e)
        return NormalizedResult(
            operation=descriptor.name,
            error=ErrorRecord(
                kind=ErrorKind.MALFORMED_RESPONSE,
                http_status=response.status_code,
                server_message=str(e),
                hint=DEFAULT_HINTS[ErrorKind.MALFORMED_RESPONSE],
            ),
        )

    if isinstance(value, list):
        logger.info("%s: normalized %d row(s)", descriptor.name, len(value))
    else:
        logger.info("%s: normalized %s", descriptor.name, type(value).__name__)
    return NormalizedResult(operation=descriptor.name, value=value)


def transport_failure(
    operation: Union[str, OperationDescriptor], exc: APIClientError
) -> NormalizedResult:
    """Structured result for a call that never obtained a response."""
    descriptor = get_operation(operation)
    hint = TIMEOUT_HINT if isinstance(exc, APIClientTimeout) else DEFAULT_HINTS[ErrorKind.TRANSPORT]
    return NormalizedResult(
        operation=descriptor.name,
        error=ErrorRecord(kind=ErrorKind.TRANSPORT, server_message=str(exc), hint=hint),
    )
