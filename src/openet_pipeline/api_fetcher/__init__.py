"""
OpenET Pipeline - API Fetcher Module

This module wraps the OpenET REST API and turns its responses into
analysis-ready records.

Why this module exists:
----------------------
The OpenET endpoints each speak a slightly different dialect:
1. Field time series come back as JSON or zipped CSV with upstream column names
2. Raster endpoints want a flat coordinate list and string booleans
3. Export endpoints only return a URL to the data
4. Errors arrive as bare HTTP statuses with terse server messages

This module hides all of that behind one catalog-driven call path.

Usage:
------
    from openet_pipeline.api_fetcher import OpenETClient

    client = OpenETClient()          # reads OPENET_API_KEY
    result = client.fields_timeseries(["06323746"], start_date="2021-01-01",
                                      end_date="2021-12-31", units="in")
    if result.ok:
        rows = result.value          # list[CanonicalRow]
    else:
        print(result.error.message)

Configuration:
--------------
Set these environment variables (optional):

    OPENET_API_KEY       - API key
    OPENET_API_KEY_FILE  - Text file whose first line is the API key
    OPENET_TIMEOUT_SEC   - Request timeout (default: 120)
    OPENET_VERIFY_SSL    - Set to "false" only behind an intercepting proxy (default: true)
"""

# -----------------------------------------------------------------------------
# Transport and exceptions
# -----------------------------------------------------------------------------
from .client_base import (
    BaseAPIClient,
    APIClientError,
    APIClientResponseError,
    APIClientTimeout,
    RequestValidationError,
)

# -----------------------------------------------------------------------------
# Operation catalog
# -----------------------------------------------------------------------------
from .catalog import (
    CATALOG,
    OperationDescriptor,
    ResponseShape,
    get_operation,
)

# -----------------------------------------------------------------------------
# Request building and response normalization
# -----------------------------------------------------------------------------
from .request_builder import build_request
from .normalizer import normalize_response
from .errors import ErrorKind
from .quota import render_expiration_summary, render_quota_summary, report_quota

# -----------------------------------------------------------------------------
# OpenET client
# -----------------------------------------------------------------------------
from .openet_api import (
    OpenETClient,
    OpenETConfigError,
    OpenETSettings,
    read_api_key_file,
)

# -----------------------------------------------------------------------------
# Records
# -----------------------------------------------------------------------------
from .schema import (
    CanonicalRow,
    ErrorRecord,
    NormalizedResult,
    QuotaRecord,
    RawResponse,
    WireRequest,
)


__all__ = [
    # Transport
    "BaseAPIClient",
    "APIClientError",
    "APIClientResponseError",
    "APIClientTimeout",
    "RequestValidationError",
    # Catalog
    "CATALOG",
    "OperationDescriptor",
    "ResponseShape",
    "get_operation",
    # Pipeline
    "build_request",
    "normalize_response",
    "ErrorKind",
    "render_quota_summary",
    "render_expiration_summary",
    "report_quota",
    # Client
    "OpenETClient",
    "OpenETConfigError",
    "OpenETSettings",
    "read_api_key_file",
    # Records
    "CanonicalRow",
    "ErrorRecord",
    "NormalizedResult",
    "QuotaRecord",
    "RawResponse",
    "WireRequest",
]
