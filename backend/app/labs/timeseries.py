"""
Per-day averaging of event-log results.

Events are bucketed by (analyte_key, UTC calendar day). Incomplete events
(missing analyte, unparseable timestamp, non-numeric value) are dropped
rather than failing the whole request, so one bad row never blanks a chart.
"""

import math
from datetime import date, datetime, timezone
from typing import Any, Iterable

from app.labs.catalog import analyte_key, record_field
from app.schemas import DailyAverage


class EmptySelectionError(ValueError):
    """Raised when an aggregation is requested without any analyte."""


def parse_timestamp(raw: Any) -> datetime | None:
    """Parse a collection timestamp, returning ``None`` when it is unusable.

    Handles ``datetime``/``date`` objects and ISO-8601 strings such as:
      2024-01-15T08:30:00Z
      2024-01-15T08:30:00.000+02:00
      2024-01-15 08:30:00
      2024-01-15
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, date):
        return datetime.combine(raw, datetime.min.time())
    if not isinstance(raw, str):
        return None

    text = raw.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def utc_day(ts: datetime) -> date:
    """Calendar day of *ts* in UTC. Naive timestamps are taken as UTC already."""
    if ts.tzinfo is None:
        return ts.date()
    return ts.astimezone(timezone.utc).date()


def numeric_value(raw: Any) -> float | None:
    """Return *raw* as a finite float, or ``None``."""
    if raw is None or isinstance(raw, bool) or raw == "":
        return None
    try:
        value = float(raw)
    except (ValueError, TypeError):
        return None
    return value if math.isfinite(value) else None


def _as_day(bound: date | str | None) -> date | None:
    if bound is None:
        return None
    if isinstance(bound, datetime):
        return bound.date()
    if isinstance(bound, date):
        return bound
    ts = parse_timestamp(bound)
    if ts is None:
        raise ValueError(f"Invalid date bound: {bound!r}")
    return ts.date()


def aggregate_daily(
    events: Iterable[Any],
    wanted: Iterable[str] | str,
    start: date | str | None = None,
    end: date | str | None = None,
) -> list[DailyAverage]:
    """Average the selected analytes per UTC day.

    *events* are mappings or objects exposing ``analyte``, ``collected_at``
    and ``value_numeric``. *start*/*end* bound the collection day
    inclusively. Each (analyte, day) appears exactly once in the result,
    in the order the bucket was first seen; the displayed analyte keeps the
    casing of that first event.

    Raises ``EmptySelectionError`` if *wanted* holds no analyte names.
    A single name may be passed as a plain string.
    """
    if isinstance(wanted, str):
        wanted = [wanted]
    wanted_keys = {analyte_key(w) for w in wanted} - {""}
    if not wanted_keys:
        raise EmptySelectionError("No analytes selected")

    start_day = _as_day(start)
    end_day = _as_day(end)

    # (key, day) -> [display name, running sum, count]
    buckets: dict[tuple[str, str], list] = {}

    for event in events:
        key = analyte_key(record_field(event, "analyte"))
        if not key or key not in wanted_keys:
            continue

        value = numeric_value(record_field(event, "value_numeric"))
        if value is None:
            continue

        ts = parse_timestamp(record_field(event, "collected_at"))
        if ts is None:
            continue

        day = utc_day(ts)
        if start_day is not None and day < start_day:
            continue
        if end_day is not None and day > end_day:
            continue

        bucket_key = (key, day.isoformat())
        bucket = buckets.get(bucket_key)
        if bucket is None:
            display = str(record_field(event, "analyte"))
            buckets[bucket_key] = [display, value, 1]
        else:
            bucket[1] += value
            bucket[2] += 1

    return [
        DailyAverage(analyte=display, day=day, value=total / count)
        for (_, day), (display, total, count) in buckets.items()
    ]
