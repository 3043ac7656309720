"""
OpenET operation catalog.

Every supported endpoint is described here as data: endpoint and method
(per wire encoding), default parameter values, required parameters, the
typed parameter model, the response shape and the output schema the
normalizer produces. Adding an endpoint means adding one descriptor to
CATALOG; the request builder and normalizer read everything they need
from it.
"""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    List,
    Literal,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    Union,
)

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .client_base import RequestValidationError


BASE_URL = "https://openet-api.org"

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

Reducer = Literal["mean", "median", "min", "max", "sum", "count"]
Interval = Literal["daily", "monthly"]


# -----------------------------------------------------------------------------
# Defaults evaluated at build time
# -----------------------------------------------------------------------------
def _today() -> str:
    return dt.date.today().isoformat()


def _days_ago(days: int) -> Callable[[], str]:
    def _resolve() -> str:
        return (dt.date.today() - dt.timedelta(days=days)).isoformat()

    return _resolve


def _start_of_year(lag_days: int = 0) -> Callable[[], str]:
    """Jan 1 of the year containing (today - lag_days)."""

    def _resolve() -> str:
        anchor = dt.date.today() - dt.timedelta(days=lag_days)
        return f"{anchor.year}-01-01"

    return _resolve


# -----------------------------------------------------------------------------
# Geometry helpers
# -----------------------------------------------------------------------------
def coordinate_pairs(coords: Sequence[float]) -> List[Tuple[float, float]]:
    """
    Pair a flat [lon, lat, lon, lat, ...] list into (longitude, latitude)
    tuples. Polygon topology (closure, winding) is not checked.
    """
    if len(coords) % 2:
        raise ValueError(
            f"geometry must hold longitude/latitude pairs; got an odd number of coordinates ({len(coords)})"
        )
    if len(coords) < 6:
        raise ValueError(
            f"geometry needs at least 3 longitude/latitude pairs; got {len(coords) // 2}"
        )
    return [(float(coords[i]), float(coords[i + 1])) for i in range(0, len(coords), 2)]


def _as_str_list(value: Any) -> Any:
    if value is None:
        return value
    if isinstance(value, (str, int, float)):
        value = [value]
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(v).strip() for v in value]
    return value


# -----------------------------------------------------------------------------
# Typed parameter models (one per operation)
# -----------------------------------------------------------------------------
class OperationParams(BaseModel):
    """Base for per-operation parameters; unknown names are rejected."""

    model_config = ConfigDict(extra="forbid")

    @field_validator("start_date", "end_date", check_fields=False)
    @classmethod
    def validate_iso_date(cls, v: str) -> str:
        if not _ISO_DATE.match(v):
            raise ValueError(f"expected a 'YYYY-MM-DD' date, got '{v}'")
        dt.date.fromisoformat(v)
        return v

    @model_validator(mode="after")
    def validate_date_order(self) -> "OperationParams":
        start = getattr(self, "start_date", None)
        end = getattr(self, "end_date", None)
        if start and end and start > end:
            raise ValueError(f"start_date {start} is after end_date {end}")
        return self


class FieldsTimeseriesParams(OperationParams):
    field_ids: List[str] = Field(..., min_length=1)
    start_date: str
    end_date: str
    model: List[str] = Field(..., min_length=1)
    variable: List[str] = Field(..., min_length=1)
    interval: Interval
    units: Literal["in", "mm"]
    file_format: Literal["csv", "json"]

    @field_validator("field_ids", "model", "variable", mode="before")
    @classmethod
    def wrap_scalars(cls, v: Any) -> Any:
        # Field ids stay strings: they may carry leading zeroes.
        return _as_str_list(v)


class PolygonTimeseriesParams(OperationParams):
    geometry: List[float]
    start_date: str
    end_date: str
    model: str
    variable: str
    units: Literal["english", "metric", "in", "mm"]
    reference_et: str = Field(..., min_length=1)
    reducer: Reducer
    interval: Interval
    provisional: bool

    @field_validator("geometry")
    @classmethod
    def validate_geometry(cls, v: List[float]) -> List[float]:
        coordinate_pairs(v)
        return v


class MultipolygonTimeseriesParams(OperationParams):
    asset_id: str = Field(..., min_length=1)
    start_date: str
    end_date: str
    model: str
    variable: List[str] = Field(..., min_length=1)
    units: Literal["english", "metric", "in", "mm"]
    reference_et: str = Field(..., min_length=1)
    reducer: Reducer
    interval: Interval
    attributes: List[str]
    filename_suffix: Optional[str] = None
    overpass: bool
    output_file_format: Literal["csv", "geojson"]

    @field_validator("variable", "attributes", mode="before")
    @classmethod
    def wrap_scalars(cls, v: Any) -> Any:
        return _as_str_list(v)


class NoParams(OperationParams):
    pass


# -----------------------------------------------------------------------------
# Descriptor building blocks
# -----------------------------------------------------------------------------
class ResponseShape(str, Enum):
    JSON_LIST_OF_OBJECTS = "json_list_of_objects"
    JSON_OBJECT = "json_object"
    CSV_URL = "csv_url"


class WireFieldKind(str, Enum):
    VALUE = "value"
    LIST = "list"
    CSV = "csv"
    DATE_RANGE = "date_range"
    COORDINATES = "coordinates"
    CONSTANT = "constant"


@dataclass(frozen=True)
class WireField:
    """One key of the request body / query string and where its value comes from."""

    name: str
    source: Tuple[str, ...] = ()
    kind: WireFieldKind = WireFieldKind.VALUE
    value: Any = None


def _wire(
    name: str,
    *source: str,
    kind: WireFieldKind = WireFieldKind.VALUE,
    value: Any = None,
) -> WireField:
    return WireField(name=name, source=source or (name,), kind=kind, value=value)


@dataclass(frozen=True)
class WireEncoding:
    http_method: Literal["GET", "POST"]
    endpoint: str
    payload: Literal["json", "query", "none"] = "json"
    accept: str = "application/json"
    wire_fields: Tuple[WireField, ...] = ()
    # Optional param whose value picks the Accept header (e.g. file_format).
    accept_param: Optional[str] = None
    accept_by_value: Mapping[str, str] = field(default_factory=dict)

    def accept_for(self, params: Mapping[str, Any]) -> str:
        if self.accept_param is None:
            return self.accept
        return self.accept_by_value.get(params.get(self.accept_param), self.accept)


class ColumnRule(str, Enum):
    DATE = "date"
    YEAR = "year"
    MONTH = "month"
    JULIAN_DAY = "julian_day"
    ENTITY = "entity"
    VARIABLES = "variables"
    UNITS = "units"
    MODEL = "model"


@dataclass(frozen=True)
class OutputColumn:
    name: str
    rule: ColumnRule
    constant: Optional[str] = None


@dataclass(frozen=True)
class RecordKeys:
    """Upstream key aliases, tried in order, for each canonical concept."""

    date: Tuple[str, ...] = ("time", "date", "start_date")
    entity: Tuple[str, ...] = ("field_id", "feature_id", "feature_unique_id")
    variable: Tuple[str, ...] = ("collection", "variable")
    value: Tuple[str, ...] = ("value_mm", "value")
    model: Tuple[str, ...] = ("model",)


@dataclass(frozen=True)
class UnitConversion:
    """mm -> inches conversion, applied only to the listed variables."""

    param: str = "units"
    convert_when: FrozenSet[str] = frozenset({"in"})
    variables: FrozenSet[str] = frozenset()

    def applies(self, units: Optional[str], variable: str) -> bool:
        return units in self.convert_when and variable in self.variables


@dataclass(frozen=True)
class OperationDescriptor:
    name: str
    params_model: Type[OperationParams]
    encodings: Mapping[str, WireEncoding]
    response_shape: ResponseShape
    default_params: Mapping[str, Any] = field(default_factory=dict)
    required_params: FrozenSet[str] = frozenset()
    default_encoding: str = "default"
    base_url: str = BASE_URL
    output_schema: Tuple[OutputColumn, ...] = ()
    record_keys: RecordKeys = field(default_factory=RecordKeys)
    unit_param: Optional[str] = None
    unit_labels: Mapping[str, str] = field(default_factory=dict)
    unit_conversion: Optional[UnitConversion] = None
    variable_param: Optional[str] = None
    model_param: Optional[str] = None
    error_hints: Mapping[int, str] = field(default_factory=dict)
    description: str = ""

    @property
    def endpoint(self) -> str:
        return self.encoding().endpoint

    @property
    def http_method(self) -> str:
        return self.encoding().http_method

    def encoding(self, name: Optional[str] = None) -> WireEncoding:
        key = name or self.default_encoding
        try:
            return self.encodings[key]
        except KeyError:
            raise RequestValidationError(
                f"{self.name}: unknown wire encoding '{key}' "
                f"(available: {', '.join(sorted(self.encodings))})",
                invalid={"encoding": f"unknown encoding '{key}'"},
            ) from None


# -----------------------------------------------------------------------------
# Static table
# -----------------------------------------------------------------------------
_TIMESERIES_SCHEMA: Tuple[OutputColumn, ...] = (
    OutputColumn("date", ColumnRule.DATE),
    OutputColumn("year", ColumnRule.YEAR),
    OutputColumn("month", ColumnRule.MONTH),
    OutputColumn("julian_day", ColumnRule.JULIAN_DAY),
    OutputColumn("entity_id", ColumnRule.ENTITY),
    OutputColumn("*", ColumnRule.VARIABLES),
    OutputColumn("units", ColumnRule.UNITS),
    OutputColumn("model", ColumnRule.MODEL),
)

_POLYGON_SCHEMA: Tuple[OutputColumn, ...] = tuple(
    OutputColumn("entity_id", ColumnRule.ENTITY, constant="polygon")
    if col.rule is ColumnRule.ENTITY
    else col
    for col in _TIMESERIES_SCHEMA
)

# ET-like variables reported in mm; fractions, indices, precipitation and
# counts are left as delivered.
ET_VARIABLES: FrozenSet[str] = frozenset({"et", "et_mad_min", "et_mad_max", "eto", "etr"})

_RASTER_UNIT_LABELS = {"english": "inches", "in": "inches", "metric": "mm", "mm": "mm"}

FIELDS_TIMESERIES = OperationDescriptor(
    name="fields-timeseries",
    description="Monthly/daily ET for one or more OpenET field ids",
    params_model=FieldsTimeseriesParams,
    encodings={
        "default": WireEncoding(
            http_method="POST",
            endpoint="/geodatabase/timeseries",
            accept="application/zip",
            accept_param="file_format",
            accept_by_value={"csv": "application/zip", "json": "application/json"},
            wire_fields=(
                _wire("field_ids", kind=WireFieldKind.LIST),
                _wire("models", "model", kind=WireFieldKind.LIST),
                _wire("variables", "variable", kind=WireFieldKind.LIST),
                _wire("date_range", "start_date", "end_date", kind=WireFieldKind.DATE_RANGE),
                _wire("interval"),
                _wire("file_format"),
            ),
        ),
    },
    response_shape=ResponseShape.JSON_LIST_OF_OBJECTS,
    default_params={
        "start_date": _start_of_year(lag_days=14),
        "end_date": _days_ago(14),
        "model": ["ensemble"],
        "variable": ["et"],
        "interval": "monthly",
        "units": "in",
        "file_format": "csv",
    },
    required_params=frozenset({"field_ids"}),
    output_schema=_TIMESERIES_SCHEMA,
    unit_param="units",
    unit_labels={"in": "in", "mm": "mm"},
    unit_conversion=UnitConversion(variables=ET_VARIABLES),
    variable_param="variable",
    model_param="model",
)

POLYGON_TIMESERIES = OperationDescriptor(
    name="polygon-timeseries",
    description="Monthly/daily ET for a single custom polygon",
    params_model=PolygonTimeseriesParams,
    encodings={
        "default": WireEncoding(
            http_method="POST",
            endpoint="/raster/timeseries/polygon",
            wire_fields=(
                _wire("geometry", kind=WireFieldKind.COORDINATES),
                _wire("date_range", "start_date", "end_date", kind=WireFieldKind.DATE_RANGE),
                _wire("interval"),
                _wire("model"),
                _wire("variable"),
                _wire("reference_et"),
                _wire("units"),
                _wire("reducer"),
                _wire("provisional"),
                _wire("file_format", kind=WireFieldKind.CONSTANT, value="JSON"),
            ),
        ),
    },
    response_shape=ResponseShape.JSON_LIST_OF_OBJECTS,
    default_params={
        "start_date": "2021-01-01",
        "end_date": _today,
        "model": "ensemble",
        "variable": "et",
        "units": "english",
        "reference_et": "cimis",
        "reducer": "mean",
        "interval": "daily",
        "provisional": False,
    },
    required_params=frozenset({"geometry"}),
    output_schema=_POLYGON_SCHEMA,
    unit_param="units",
    unit_labels=_RASTER_UNIT_LABELS,
    variable_param="variable",
    model_param="model",
)

MULTIPOLYGON_TIMESERIES = OperationDescriptor(
    name="multipolygon-timeseries",
    description="Export ET for every polygon of an Earth Engine asset; returns a download URL",
    params_model=MultipolygonTimeseriesParams,
    encodings={
        "post": WireEncoding(
            http_method="POST",
            endpoint="/raster/timeseries/multipolygon",
            wire_fields=(
                _wire("date_range", "start_date", "end_date", kind=WireFieldKind.DATE_RANGE),
                _wire("interval"),
                _wire("asset_id"),
                _wire("attributes", kind=WireFieldKind.LIST),
                _wire("reducer"),
                _wire("model"),
                _wire("variable", kind=WireFieldKind.LIST),
                _wire("reference_et"),
                _wire("units"),
                _wire("overpass"),
                _wire("file_format", "output_file_format"),
                _wire("filename_suffix"),
            ),
        ),
        # Legacy query-string variant of the same export.
        "get": WireEncoding(
            http_method="GET",
            endpoint="/raster/timeseries/multipolygon",
            payload="query",
            wire_fields=(
                _wire("start_date"),
                _wire("end_date"),
                _wire("model"),
                _wire("variable", kind=WireFieldKind.CSV),
                _wire("ref_et_source", "reference_et"),
                _wire("units"),
                _wire("shapefile_asset_id", "asset_id"),
                _wire("interval"),
                _wire("pixel_aggregation", "reducer"),
                _wire("include_columns", "attributes", kind=WireFieldKind.CSV),
                _wire("output_file_format"),
                _wire("filename_suffix"),
            ),
        ),
    },
    default_encoding="post",
    response_shape=ResponseShape.CSV_URL,
    default_params={
        "start_date": "2020-01-01",
        "end_date": _today,
        "model": "ensemble",
        "variable": ["et"],
        "units": "english",
        "reference_et": "cimis",
        "reducer": "mean",
        "interval": "monthly",
        "attributes": [],
        "overpass": False,
        "output_file_format": "csv",
    },
    required_params=frozenset({"asset_id"}),
    error_hints={500: "asset may not be shared with the service account"},
)

ACCOUNT_QUOTA = OperationDescriptor(
    name="account-quota",
    description="Quota limits and usage of the API key's account",
    params_model=NoParams,
    encodings={
        "default": WireEncoding(
            http_method="GET", endpoint="/account/status", payload="none"
        ),
    },
    response_shape=ResponseShape.JSON_OBJECT,
)

KEY_EXPIRATION = OperationDescriptor(
    name="key-expiration",
    description="Expiration date of the API key",
    params_model=NoParams,
    encodings={
        "default": WireEncoding(
            http_method="GET", endpoint="/home/key_expiration", payload="none"
        ),
    },
    response_shape=ResponseShape.JSON_OBJECT,
)

CATALOG: Mapping[str, OperationDescriptor] = MappingProxyType(
    {
        op.name: op
        for op in (
            FIELDS_TIMESERIES,
            POLYGON_TIMESERIES,
            MULTIPOLYGON_TIMESERIES,
            ACCOUNT_QUOTA,
            KEY_EXPIRATION,
        )
    }
)


def get_operation(operation: Union[str, OperationDescriptor]) -> OperationDescriptor:
    """Look up a descriptor by name (descriptors pass through unchanged)."""
    if isinstance(operation, OperationDescriptor):
        return operation
    try:
        return CATALOG[operation]
    except KeyError:
        raise RequestValidationError(
            f"unknown operation '{operation}' (available: {', '.join(sorted(CATALOG))})",
            invalid={"operation": f"unknown operation '{operation}'"},
        ) from None


def resolve_defaults(operation: OperationDescriptor) -> Dict[str, Any]:
    """Evaluate the descriptor's defaults (callables produce date defaults)."""
    resolved: Dict[str, Any] = {}
    for name, value in operation.default_params.items():
        if callable(value):
            value = value()
        elif isinstance(value, list):
            value = list(value)
        resolved[name] = value
    return resolved
