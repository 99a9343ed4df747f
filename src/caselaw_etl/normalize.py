"""Normalization functions for case-law JSONL ingestion.

All functions accept loosely typed input (whatever json.loads produced) and
return the coerced type or None.  None of them raise on bad input.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any, Mapping, Sequence

_DATE_FORMATS = ("%Y-%m-%d", "%Y-%m", "%Y")
_KEY_PUNCTUATION = re.compile(r"[.,]")
_WHITESPACE = re.compile(r"\s+")
_INTEGER = re.compile(r"-?[0-9]+")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: Any) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None.

    Non-string values (numbers from JSON) are stringified first.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: reference keys (court / jurisdiction deduplication)
# ---------------------------------------------------------------------------

def normalize_reference_key(value: str | None) -> str:
    """Lowercase, drop periods and commas, collapse whitespace.

    "Cal. Ct. App." and "cal ct app" both become "cal ct app".
    Returns "" (never None) so the result can be used directly as a dict key.
    """
    v = trim(value)
    if v is None:
        return ""
    v = v.lower()
    v = _KEY_PUNCTUATION.sub("", v)
    return _WHITESPACE.sub(" ", v).strip()


def pick_reference_field(
    fields: Mapping[str, Any],
    priority: Sequence[str],
) -> str | None:
    """Return the first non-empty field value in priority order."""
    for name in priority:
        v = trim(fields.get(name))
        if v:
            return v
    return None


def reference_key(fields: Mapping[str, Any], priority: Sequence[str]) -> str:
    """Normalized lookup key for a reference entity; "" means unidentifiable."""
    return normalize_reference_key(pick_reference_field(fields, priority))


# ---------------------------------------------------------------------------
# Rule 3: dates
# ---------------------------------------------------------------------------

def parse_decision_date(value: Any) -> date | None:
    """Parse 'YYYY-MM-DD', 'YYYY-MM' or 'YYYY'.

    Partial dates resolve to the first day of the month / year.
    """
    v = trim(value)
    if v is None:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(v, fmt).date()
        except ValueError:
            continue
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp.  Naive values are taken as UTC."""
    v = trim(value)
    if v is None:
        return None
    if v.endswith("Z"):
        v = v[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(v)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


# ---------------------------------------------------------------------------
# Rule 4: integers
# ---------------------------------------------------------------------------

def parse_int(value: Any) -> int | None:
    """Return an int for ints and digit strings, else None.

    Booleans are rejected even though bool is an int subclass.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    v = trim(value)
    if v is None:
        return None
    if _INTEGER.fullmatch(v):
        return int(v)
    return None
