from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import DEFAULT_HINTS, ErrorKind
from .schema import ErrorRecord, RawResponse, WireRequest


logger = logging.getLogger(__name__)


class APIClientError(RuntimeError):
    """Base error for API client failures (connection, DNS, TLS)."""


class APIClientTimeout(APIClientError):
    """Raised when request times out."""


class RequestValidationError(APIClientError, ValueError):
    """
    Raised before any network call when caller parameters are missing,
    unrecognized or malformed.
    """

    kind = ErrorKind.VALIDATION
    hint = DEFAULT_HINTS[ErrorKind.VALIDATION]

    def __init__(
        self,
        message: str,
        missing: Optional[List[str]] = None,
        unknown: Optional[List[str]] = None,
        invalid: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.missing = list(missing or [])
        self.unknown = list(unknown or [])
        self.invalid = dict(invalid or {})

    def to_error_record(self) -> ErrorRecord:
        return ErrorRecord(kind=self.kind, server_message=str(self), hint=self.hint)


class APIClientResponseError(APIClientError):
    """Raised by NormalizedResult.unwrap() for a failed call."""

    def __init__(self, error: ErrorRecord, operation: str = "") -> None:
        prefix = f"{operation}: " if operation else ""
        super().__init__(f"{prefix}{error.message}")
        self.error = error
        self.operation = operation


class BaseAPIClient:
    """
    Reusable HTTP transport for the OpenET API.

    Features:
    - Persistent session
    - Default headers
    - Exactly one attempt per call (no retries)
    - Configurable timeout
    - TLS verification on unless explicitly disabled
    """

    DEFAULT_TIMEOUT = 120  # seconds
    USER_AGENT = "openet-pipeline/0.1"

    def __init__(
        self,
        default_headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        verify_ssl: bool = True,
    ) -> None:

        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.verify_ssl = verify_ssl

        self.session = requests.Session()

        # Default headers
        headers = {
            "User-Agent": self.USER_AGENT,
            "Accept": "application/json",
        }

        if default_headers:
            headers.update(default_headers)

        self.session.headers.update(headers)
        self.session.verify = verify_ssl

        if not verify_ssl:
            logger.warning(
                "TLS certificate verification is DISABLED for this client; "
                "only use this behind a trusted intercepting proxy."
            )

        # Single attempt: the caller decides whether to retry.
        retry_strategy = Retry(total=0, raise_on_status=False)

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    # ---------------------------------------------------
    # Core request method
    # ---------------------------------------------------
    def send(self, request: WireRequest) -> RawResponse:
        """
        Send a built request and return the raw response.
        Non-2xx statuses are returned, not raised; connection failures
        and timeouts raise APIClientError / APIClientTimeout.
        """

        try:
            response = self.session.request(
                request.method,
                request.url,
                params=request.query,
                json=request.json_body,
                headers=request.headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise APIClientTimeout(
                f"Request timed out calling {request.url}"
            ) from e
        except requests.RequestException as e:
            raise APIClientError(
                f"Request failed calling {request.url}: {e}"
            ) from e

        logger.debug(
            "%s %s -> HTTP %s", request.method, request.url, response.status_code
        )

        return RawResponse(
            status_code=response.status_code,
            content=response.content or b"",
            content_type=response.headers.get("Content-Type", ""),
            url=request.url,
        )

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "BaseAPIClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
