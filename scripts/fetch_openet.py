#!/usr/bin/env python3
"""
OpenET Pipeline - command-line fetcher

Runs one catalog operation and writes the result:
- time series      -> CSV (canonical columns)
- quota / expiry   -> summary on stdout, optional one-row CSV
- export (URL)     -> URL on stdout, optional JSON pointer file

Outputs are written atomically so a failed call never leaves a partial file.

Examples:
    python scripts/fetch_openet.py --operation fields-timeseries \
        --param field_ids=06323746,06435895 --param start_date=2021-01-01 \
        --param end_date=2021-12-31 --out data/et_fields.csv

    python scripts/fetch_openet.py --operation account-quota
"""

from __future__ import annotations

import argparse
import datetime as dt
import json
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

# Make "src/" importable when running as: python3 scripts/fetch_openet.py
REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from openet_pipeline.api_fetcher import (  # noqa: E402
    CATALOG,
    OpenETClient,
    OpenETConfigError,
    OpenETSettings,
    RequestValidationError,
    ResponseShape,
    get_operation,
    read_api_key_file,
    render_expiration_summary,
    render_quota_summary,
)
from openet_pipeline.preprocessing import frame_report, quota_to_frame, rows_to_frame  # noqa: E402

# -----------------------------
# Utilities
# -----------------------------


def utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds")


def atomic_write_bytes(dest: Path, data: bytes) -> None:
    """
    Write to a temp file beside dest, then os.replace. The temp file is
    removed if anything fails before the replace.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp_path: Optional[Path] = None
    try:
        with tempfile.NamedTemporaryFile(
            dir=str(dest.parent), prefix=f".{dest.name}.", suffix=".tmp", delete=False
        ) as tf:
            tmp_path = Path(tf.name)
            tf.write(data)
            tf.flush()
            os.fsync(tf.fileno())
        os.replace(str(tmp_path), str(dest))
        tmp_path = None
    finally:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()


def atomic_write_json(dest: Path, obj: Any) -> None:
    atomic_write_bytes(
        dest, (json.dumps(obj, indent=2, ensure_ascii=False) + "\n").encode("utf-8")
    )


def setup_logging(log_level: str, log_file: Optional[Path]) -> logging.Logger:
    logger = logging.getLogger("fetch_openet")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    logger.handlers.clear()

    fmt = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stdout)
    ch.setFormatter(fmt)
    ch.setLevel(logger.level)
    logger.addHandler(ch)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(fmt)
        fh.setLevel(logger.level)
        logger.addHandler(fh)

    return logger


def parse_param_pairs(pairs: Sequence[str]) -> Dict[str, Any]:
    """
    "key=value" strings -> params dict. A comma in the value makes a list
    ("field_ids=001,002" -> ["001", "002"]). Repeating a key extends the list.
    """
    params: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Expected key=value, got '{pair}'")

        value: Any = raw.strip()
        if "," in raw:
            value = [x.strip() for x in raw.split(",") if x.strip()]

        if key in params:
            previous = params[key] if isinstance(params[key], list) else [params[key]]
            params[key] = previous + (value if isinstance(value, list) else [value])
        else:
            params[key] = value
    return params


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Fetch OpenET data as analysis-ready tables")
    p.add_argument(
        "--operation",
        required=True,
        choices=sorted(CATALOG),
        help="Catalog operation to run.",
    )
    p.add_argument(
        "--param",
        action="append",
        default=[],
        help="Operation parameter as key=value (repeatable; commas make lists).",
    )
    p.add_argument(
        "--encoding",
        default="",
        help="Alternate wire encoding (e.g. 'get' for the legacy multipolygon query).",
    )
    p.add_argument(
        "--out",
        default="",
        help="Output file (CSV for tables, JSON for export URLs). Empty = stdout only.",
    )
    p.add_argument(
        "--api-key-file",
        default="",
        help="Text file whose first line is the OpenET API key (overrides OPENET_API_KEY).",
    )
    p.add_argument(
        "--insecure",
        action="store_true",
        help="Disable TLS certificate verification (only behind an intercepting proxy).",
    )
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    p.add_argument(
        "--log-file",
        default="",
        help="Optional log file path (e.g., logs/fetch_openet.log).",
    )
    return p.parse_args(argv)


# -----------------------------
# Output writers
# -----------------------------


def write_result(operation: str, value: Any, out: Optional[Path], logger: logging.Logger) -> List[Path]:
    shape = get_operation(operation).response_shape
    written: List[Path] = []

    if shape is ResponseShape.JSON_LIST_OF_OBJECTS:
        df = rows_to_frame(value)
        frame_report(df)
        if out is not None:
            atomic_write_bytes(out, df.to_csv(index=False).encode("utf-8"))
            written.append(out)
        else:
            print(df.to_string(index=False))

    elif shape is ResponseShape.JSON_OBJECT:
        if operation == "key-expiration":
            print(render_expiration_summary(value))
        else:
            print(render_quota_summary(value))
        if out is not None:
            atomic_write_bytes(out, quota_to_frame(value).to_csv(index=False).encode("utf-8"))
            written.append(out)

    else:
        print(f"When ready, requested data can be accessed at this url:\n{value}")
        if out is not None:
            atomic_write_json(
                out, {"operation": operation, "url": value, "requested_at": utc_now_iso()}
            )
            written.append(out)

    for path in written:
        logger.info("Wrote: %s", path)
    return written


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    log_file = Path(args.log_file) if args.log_file.strip() else None
    logger = setup_logging(args.log_level, log_file)

    try:
        params = parse_param_pairs(args.param)
    except ValueError as e:
        logger.error("%s", e)
        return 2

    try:
        settings = OpenETSettings.from_env()
        api_key = read_api_key_file(args.api_key_file) if args.api_key_file.strip() else None
        client = OpenETClient(
            api_key=api_key,
            verify_ssl=False if args.insecure else None,
            settings=settings,
        )
    except OpenETConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2

    logger.info("Operation: %s", args.operation)
    logger.info("Parameters: %s", sorted(params))

    with client:
        try:
            result = client.call(args.operation, params, encoding=args.encoding.strip() or None)
        except RequestValidationError as e:
            logger.error("Invalid request: %s", e.to_error_record().message)
            return 2

    if not result.ok:
        logger.error("%s failed: %s", args.operation, result.error.message)
        return 1

    out = Path(args.out) if args.out.strip() else None
    write_result(args.operation, result.value, out, logger)
    logger.info("Done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
