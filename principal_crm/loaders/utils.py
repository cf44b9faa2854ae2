"""
Shared utilities for data ingestion: date normalisation, value coercion,
column renaming, header detection.
"""

import logging
import re
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

_TRUE_STRINGS = {"true", "t", "yes", "y", "1"}
_FALSE_STRINGS = {"false", "f", "no", "n", "0", ""}


def normalise_date(val: Any) -> pd.Timestamp | None:
    """Convert an ISO string, Excel serial number or datetime to a naive UTC pd.Timestamp.

    Timezone-aware values are converted to UTC and the tz info is dropped,
    so API timestamps and spreadsheet dates compare cleanly. Returns None
    for missing or unparseable values.
    """
    if val is None:
        return None
    if isinstance(val, float) and pd.isna(val):
        return None
    if val is pd.NaT:
        return None
    if isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        try:
            return pd.Timestamp("1899-12-30") + pd.Timedelta(days=int(val))
        except (ValueError, OverflowError):
            logger.warning("Could not convert serial number %s to date", val)
            return None
    if isinstance(val, str) and not val.strip():
        return None
    try:
        ts = pd.Timestamp(val)
    except (ValueError, TypeError):
        logger.warning("Could not parse date value: %s", val)
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def utc_now() -> pd.Timestamp:
    """Current time as a naive UTC timestamp, comparable with normalise_date output."""
    return pd.Timestamp.now(tz="UTC").tz_localize(None)


def resolve_now(now: Any = None) -> pd.Timestamp:
    """Return `now` normalised, or the current time when not given."""
    if now is None:
        return utc_now()
    ts = normalise_date(now)
    if ts is None:
        raise ValueError(f"Invalid reference time: {now!r}")
    return ts


def to_snake_case(name: str) -> str:
    """Convert a column name to snake_case.

    Handles spaces, parentheses, slashes, and percent signs.
    """
    s = str(name).strip()
    s = s.replace("%", "pct").replace("/", "_per_").replace("(", "").replace(")", "")
    s = s.replace("-", "_").replace(".", "_")
    s = re.sub(r"[^a-zA-Z0-9]+", "_", s)
    # CamelCase to snake_case
    s = re.sub(r"([a-z])([A-Z])", r"\1_\2", s)
    s = s.lower().strip("_")
    s = re.sub(r"_+", "_", s)
    return s


def find_header_row(
    sheet,
    signature: set[str],
    max_rows: int = 20,
) -> int | None:
    """Scan an openpyxl sheet for the row containing signature column names.

    Cell values are compared after snake_casing. Returns the 1-based row
    index where at least two cells match, or None if not found within
    `max_rows`.
    """
    for row_idx in range(1, min(max_rows, sheet.max_row) + 1):
        matches = 0
        for cell in sheet[row_idx]:
            if cell.value is not None and to_snake_case(cell.value) in signature:
                matches += 1
        if matches >= 2:
            return row_idx
    return None


def safe_float(val: Any) -> float | None:
    """Coerce a value to float, returning None for non-numeric values."""
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, str):
        val = val.strip()
        if val.startswith("=") or not val:
            return None
        # Percentage strings like "78%"
        if val.endswith("%"):
            try:
                return float(val[:-1])
            except ValueError:
                return None
        try:
            return float(val)
        except ValueError:
            return None
    try:
        result = float(val)
    except (ValueError, TypeError):
        return None
    if pd.isna(result):
        return None
    return result


def safe_int(val: Any, default: int = 0) -> int:
    """Coerce a value to int, falling back to `default` for non-numeric values."""
    result = safe_float(val)
    if result is None:
        return default
    return int(result)


def safe_bool(val: Any) -> bool | None:
    """Coerce booleans, 0/1 and yes/no strings. Returns None when unknown."""
    if val is None:
        return None
    if isinstance(val, bool):
        return val
    if isinstance(val, (int, float)):
        if pd.isna(val):
            return None
        return bool(val)
    text = str(val).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    return None


def safe_str(val: Any) -> str | None:
    """Strip strings; map None/NaN/blank to None."""
    if val is None:
        return None
    if isinstance(val, float) and pd.isna(val):
        return None
    text = str(val).strip()
    return text or None
