"""
Date-encoded column names for the analyte matrix table.

Each sampled calendar date is stored as its own column, named
``d_YYYY_MM_DD`` (``2025-08-15`` -> ``d_2025_08_15``).
"""

from datetime import date
from typing import Any

DATE_COLUMN_PREFIX = "d_"
_SEPARATOR = "_"


def encode_date_column(day: date | str) -> str:
    """Return the matrix column name for *day*.

    Accepts a ``date`` (or ``datetime``) or an ISO ``YYYY-MM-DD`` string.
    Raises ``ValueError`` if the string is not a valid calendar date.
    """
    if isinstance(day, str):
        day = date.fromisoformat(day.strip())
    return (
        f"{DATE_COLUMN_PREFIX}{day.year:04d}{_SEPARATOR}"
        f"{day.month:02d}{_SEPARATOR}{day.day:02d}"
    )


def decode_date_column(name: Any) -> str | None:
    """Return the ISO date encoded in *name*, or ``None`` if it is not a date column.

    Never raises: metadata fields such as ``units`` or ``analyte``, malformed
    tokens and impossible dates (``d_2024_02_30``) all decode to ``None``.
    """
    if not isinstance(name, str) or not name.startswith(DATE_COLUMN_PREFIX):
        return None

    parts = name[len(DATE_COLUMN_PREFIX):].split(_SEPARATOR)
    if len(parts) != 3 or not all(p.isascii() and p.isdigit() for p in parts):
        return None
    year, month, day = parts
    if len(year) != 4 or len(month) != 2 or len(day) != 2:
        return None

    try:
        return date(int(year), int(month), int(day)).isoformat()
    except ValueError:
        return None


def is_date_column(name: Any) -> bool:
    return decode_date_column(name) is not None
