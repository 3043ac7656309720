from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field

from .catalog import CATALOG, OperationDescriptor, get_operation
from .client_base import APIClientError, BaseAPIClient
from .normalizer import normalize_response, transport_failure
from .quota import render_expiration_summary, report_quota
from .request_builder import build_request
from .schema import NormalizedResult


logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class OpenETConfigError(RuntimeError):
    """Raised when required environment configuration is missing or invalid."""


def read_api_key_file(path: Union[str, Path]) -> str:
    """Return the first line of a local key file (the key itself)."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            key = fh.readline().strip()
    except OSError as e:
        raise OpenETConfigError(f"Could not read OpenET API key file '{path}': {e}") from e
    if not key:
        raise OpenETConfigError(f"OpenET API key file '{path}' is empty.")
    return key


class OpenETSettings(BaseModel):
    """
    Client configuration resolved from the environment:

        OPENET_API_KEY       - API key (takes precedence over the key file)
        OPENET_API_KEY_FILE  - Path to a text file whose first line is the key
        OPENET_TIMEOUT_SEC   - Request timeout (default: 120)
        OPENET_VERIFY_SSL    - TLS certificate verification (default: true)
    """

    api_key: Optional[str] = Field(default=None, repr=False)
    timeout_sec: float = Field(default=120.0, gt=0)
    verify_ssl: bool = True

    @classmethod
    def from_env(cls) -> "OpenETSettings":
        api_key = os.getenv("OPENET_API_KEY") or None
        key_file = os.getenv("OPENET_API_KEY_FILE") or None
        if not api_key and key_file:
            api_key = read_api_key_file(key_file)

        timeout_raw = os.getenv("OPENET_TIMEOUT_SEC", "120").strip()
        try:
            timeout_sec = float(timeout_raw)
        except ValueError as e:
            raise OpenETConfigError(
                f"OPENET_TIMEOUT_SEC must be a number, got '{timeout_raw}'."
            ) from e
        if timeout_sec <= 0:
            raise OpenETConfigError(
                f"OPENET_TIMEOUT_SEC must be positive, got '{timeout_raw}'."
            )

        verify_raw = os.getenv("OPENET_VERIFY_SSL", "true").strip().lower()
        if verify_raw in _TRUE:
            verify_ssl = True
        elif verify_raw in _FALSE:
            verify_ssl = False
        else:
            raise OpenETConfigError(
                f"OPENET_VERIFY_SSL must be true/false, got '{verify_raw}'."
            )

        return cls(api_key=api_key, timeout_sec=timeout_sec, verify_ssl=verify_ssl)


class OpenETClient(BaseAPIClient):
    """
    OpenET API client.

    Each call builds one request from the operation catalog, sends it once
    and normalizes the response into canonical rows, a quota record or a
    download URL. Invalid parameters raise RequestValidationError before
    any I/O; every other failure comes back as NormalizedResult.error.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        verify_ssl: Optional[bool] = None,
        settings: Optional[OpenETSettings] = None,
    ) -> None:
        settings = settings or OpenETSettings.from_env()

        # Never log the key; just attach it to requests.
        self.api_key: str = api_key or settings.api_key or ""
        if not self.api_key:
            raise OpenETConfigError(
                "OpenET API key is missing. Pass api_key=... or set "
                "OPENET_API_KEY / OPENET_API_KEY_FILE."
            )

        super().__init__(
            timeout=timeout or settings.timeout_sec,
            verify_ssl=settings.verify_ssl if verify_ssl is None else verify_ssl,
        )
        logger.info(
            "OpenETClient initialized (timeout=%ss, verify_ssl=%s).",
            self.timeout,
            self.verify_ssl,
        )

    # -------------------------------------------------
    # Generic call path
    # -------------------------------------------------
    def call(
        self,
        operation: Union[str, OperationDescriptor],
        params: Optional[Mapping[str, Any]] = None,
        encoding: Optional[str] = None,
    ) -> NormalizedResult:
        descriptor = get_operation(operation)
        request = build_request(descriptor, params, self.api_key, encoding=encoding)

        try:
            response = self.send(request)
        except APIClientError as e:
            logger.error("%s: no response from OpenET: %s", descriptor.name, e)
            return transport_failure(descriptor, e)

        return normalize_response(descriptor, response, request.params)

    # -------------------------------------------------
    # Operations
    # -------------------------------------------------
    def fields_timeseries(
        self, field_ids: Union[str, Sequence[str]], **params: Any
    ) -> NormalizedResult:
        """ET time series for OpenET field ids (kept as strings: leading zeroes matter)."""
        return self.call("fields-timeseries", {"field_ids": field_ids, **params})

    def polygon_timeseries(self, geometry: Sequence[float], **params: Any) -> NormalizedResult:
        """ET time series for one polygon given as flat [lon, lat, lon, lat, ...]."""
        return self.call("polygon-timeseries", {"geometry": list(geometry), **params})

    def multipolygon_timeseries(
        self, asset_id: str, encoding: Optional[str] = None, **params: Any
    ) -> NormalizedResult:
        """Export for every polygon of an Earth Engine asset; value is the download URL."""
        return self.call(
            "multipolygon-timeseries", {"asset_id": asset_id, **params}, encoding=encoding
        )

    def account_quota(self) -> NormalizedResult:
        result = self.call("account-quota")
        if result.ok:
            report_quota(result.value, log=logger)
        return result

    def key_expiration(self) -> NormalizedResult:
        result = self.call("key-expiration")
        if result.ok:
            logger.info(render_expiration_summary(result.value))
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}(timeout={self.timeout}, verify_ssl={self.verify_ssl})"


def describe_operations() -> Dict[str, str]:
    """Operation name -> short description, for CLI help."""
    return {name: op.description for name, op in CATALOG.items()}
