from __future__ import annotations

from enum import Enum
from typing import Dict, Mapping, Optional, Tuple


class ErrorKind(str, Enum):
    """Machine-readable failure kinds shared by every OpenET operation."""

    VALIDATION = "ValidationError"
    TRANSPORT = "TransportError"
    UNAUTHORIZED = "Unauthorized"
    FORBIDDEN = "Forbidden"
    NOT_FOUND = "NotFound"
    NOT_ACCEPTABLE = "NotAcceptable"
    UNPROCESSABLE_PARAMS = "UnprocessableParams"
    SERVER_ERROR = "ServerError"
    UNKNOWN = "Unknown"
    MALFORMED_RESPONSE = "MalformedResponse"


STATUS_KINDS: Dict[int, ErrorKind] = {
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    406: ErrorKind.NOT_ACCEPTABLE,
    422: ErrorKind.UNPROCESSABLE_PARAMS,
    500: ErrorKind.SERVER_ERROR,
}

DEFAULT_HINTS: Dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "check the request parameters",
    ErrorKind.TRANSPORT: (
        "no response received; check network connectivity, proxy/TLS settings or the timeout"
    ),
    ErrorKind.UNAUTHORIZED: "credential invalid or expired",
    ErrorKind.FORBIDDEN: "credential invalid, expired, or quota exceeded",
    ErrorKind.NOT_FOUND: "requested data not yet available for the date range",
    ErrorKind.NOT_ACCEPTABLE: "date range too large; request a shorter interval",
    ErrorKind.UNPROCESSABLE_PARAMS: "parameter type or formatting error",
    ErrorKind.SERVER_ERROR: "upstream server error; try again later",
    ErrorKind.MALFORMED_RESPONSE: "response did not match expected schema",
}

TIMEOUT_HINT = (
    "request timed out; request a shorter date range or raise the client timeout"
)


def classify_status(
    status_code: int, overrides: Optional[Mapping[int, str]] = None
) -> Tuple[ErrorKind, Optional[str]]:
    """
    Map a non-success HTTP status to (kind, hint).

    Unlisted statuses map to Unknown with no hint; the caller echoes the
    server's own message in that case.
    """
    kind = STATUS_KINDS.get(status_code, ErrorKind.UNKNOWN)
    if overrides and status_code in overrides:
        return kind, overrides[status_code]
    return kind, DEFAULT_HINTS.get(kind)
