from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .catalog import (
    OperationDescriptor,
    WireField,
    WireFieldKind,
    coordinate_pairs,
    get_operation,
    resolve_defaults,
)
from .client_base import RequestValidationError
from .schema import WireRequest


logger = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def _wire_value(value: Any) -> Any:
    """The upstream API only accepts string booleans ("true"/"false")."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return [_wire_value(v) for v in value]
    return value


def resolve_params(
    operation: OperationDescriptor, params: Optional[Mapping[str, Any]]
) -> Dict[str, Any]:
    """
    Merge caller params over the operation defaults and validate them
    against the operation's typed parameter model.

    Raises RequestValidationError naming every unknown and missing
    parameter at once, or the malformed ones. Never touches the network.
    """
    params = dict(params or {})

    allowed = set(operation.params_model.model_fields)
    unknown = sorted(set(params) - allowed)

    merged = resolve_defaults(operation)
    merged.update({k: v for k, v in params.items() if v is not None and k in allowed})

    missing = sorted(p for p in operation.required_params if _is_empty(merged.get(p)))
    if unknown or missing:
        problems = []
        if missing:
            problems.append(f"missing required parameter(s): {', '.join(missing)}")
        if unknown:
            problems.append(f"unrecognized parameter(s): {', '.join(unknown)}")
        raise RequestValidationError(
            f"{operation.name}: {'; '.join(problems)}", missing=missing, unknown=unknown
        )

    try:
        typed = operation.params_model.model_validate(merged)
    except PydanticValidationError as e:
        invalid = {
            ".".join(str(p) for p in err["loc"]) or "params": err["msg"]
            for err in e.errors()
        }
        details = "; ".join(f"{k}: {v}" for k, v in invalid.items())
        raise RequestValidationError(
            f"{operation.name}: invalid parameter(s): {details}", invalid=invalid
        ) from e

    return typed.model_dump()


def _encode_field(wire_field: WireField, params: Mapping[str, Any]) -> Any:
    kind = wire_field.kind
    if kind is WireFieldKind.CONSTANT:
        return wire_field.value

    values = [params.get(name) for name in wire_field.source]
    first = values[0]

    if kind is WireFieldKind.DATE_RANGE:
        return [values[0], values[1]]

    if first is None:
        return None

    if kind is WireFieldKind.LIST:
        items = first if isinstance(first, (list, tuple)) else [first]
        return [_wire_value(v) for v in items]

    if kind is WireFieldKind.CSV:
        items = first if isinstance(first, (list, tuple)) else [first]
        joined = ",".join(str(_wire_value(v)) for v in items)
        return joined or None

    if kind is WireFieldKind.COORDINATES:
        try:
            pairs = coordinate_pairs(first)
        except ValueError as e:
            raise RequestValidationError(str(e), invalid={"geometry": str(e)}) from e
        return [coord for pair in pairs for coord in pair]

    return _wire_value(first)


def build_request(
    operation: Union[str, OperationDescriptor],
    params: Optional[Mapping[str, Any]],
    credential: str,
    encoding: Optional[str] = None,
) -> WireRequest:
    """
    Construct the wire-level request for one operation.

    Pure construction: fills defaults, validates, encodes the body or query
    string and attaches the credential as the raw Authorization header.
    """
    descriptor = get_operation(operation)

    if _is_empty(credential):
        raise RequestValidationError(
            f"{descriptor.name}: an OpenET API key is required",
            invalid={"credential": "API key is empty"},
        )

    wire = descriptor.encoding(encoding)
    resolved = resolve_params(descriptor, params)

    payload: Dict[str, Any] = {}
    for wire_field in wire.wire_fields:
        value = _encode_field(wire_field, resolved)
        if value is not None:
            payload[wire_field.name] = value

    # Raw key, no "Bearer" prefix.
    headers = {"Authorization": credential, "Accept": wire.accept_for(resolved)}
    if wire.http_method == "POST":
        headers["Content-Type"] = "application/json"

    url = f"{descriptor.base_url.rstrip('/')}/{wire.endpoint.lstrip('/')}"

    logger.debug(
        "Built %s %s for %s with fields: %s",
        wire.http_method,
        url,
        descriptor.name,
        sorted(payload),
    )

    return WireRequest(
        operation=descriptor.name,
        method=wire.http_method,
        url=url,
        headers=headers,
        json_body=payload if wire.payload == "json" else None,
        query=payload if wire.payload == "query" else None,
        params=resolved,
    )
