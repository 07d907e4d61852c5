"""
Read/write access to the lab-result tables.

The engine in ``app.labs`` only ever sees plain dicts produced here.
The ``analyte_matrix`` table grows one ``d_YYYY_MM_DD`` column per sampled
date, so its rows are read with plain SQL rather than through the ORM.
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

from app.labs.catalog import analyte_key
from app.labs.columns import encode_date_column
from app.labs.timeseries import numeric_value, parse_timestamp, utc_day
from app.models import AnalyteMatrixRow, BloodResult
from app.schemas import BloodSummary, LatestResult

logger = logging.getLogger(__name__)

MATRIX_TABLE = AnalyteMatrixRow.__tablename__

# Held from merge_into_matrix through commit: adding date columns and new
# analyte rows is check-then-write.
matrix_lock = threading.Lock()


def _dt_range(start_date: date | None, end_date: date | None):
    """Convert an inclusive day range into [start, end) datetimes."""
    start_dt = datetime.combine(start_date, datetime.min.time()) if start_date else None
    end_dt = (
        datetime.combine(end_date + timedelta(days=1), datetime.min.time())
        if end_date else None
    )
    return start_dt, end_dt


def _iso(value: Any) -> str | None:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


# ---------------------------------------------------------------------------
# Event log
# ---------------------------------------------------------------------------

def fetch_analyte_names(db: Session) -> list[dict[str, Any]]:
    """Every stored analyte name (one entry per result row), in insertion order."""
    rows = (
        db.query(BloodResult.analyte)
        .filter(BloodResult.analyte.isnot(None))
        .order_by(BloodResult.id)
        .all()
    )
    return [{"analyte": r.analyte} for r in rows]


def fetch_events(
    db: Session,
    start: date | None = None,
    end: date | None = None,
) -> list[dict[str, Any]]:
    """Numeric results collected within the inclusive ``[start, end]`` day range."""
    start_dt, end_dt = _dt_range(start, end)

    query = db.query(
        BloodResult.analyte, BloodResult.collected_at, BloodResult.value_numeric
    ).filter(BloodResult.value_numeric.isnot(None))
    if start_dt is not None:
        query = query.filter(BloodResult.collected_at >= start_dt)
    if end_dt is not None:
        query = query.filter(BloodResult.collected_at < end_dt)

    return [
        {
            "analyte": r.analyte,
            "collected_at": r.collected_at,
            "value_numeric": r.value_numeric,
        }
        for r in query.all()
    ]


def insert_results(db: Session, rows: Iterable[dict[str, Any]]) -> int:
    """Add normalized result rows to the event log. Caller commits."""
    count = 0
    for row in rows:
        db.add(BloodResult(**row))
        count += 1
    db.flush()
    return count


def build_blood_summary(db: Session, limit: int) -> BloodSummary:
    """Totals plus the latest result of each analyte (up to *limit* analytes)."""
    rows = db.query(BloodResult).order_by(
        BloodResult.collected_at.desc(), BloodResult.id.desc()
    ).all()

    latest: dict[str, BloodResult] = {}
    for r in rows:
        name = (r.analyte or "").strip()
        if not name:
            continue
        latest.setdefault(analyte_key(name), r)

    recent = [
        LatestResult(
            analyte=r.analyte.strip(),
            value_numeric=r.value_numeric,
            value_text=r.value_text,
            units=r.units,
            ref_low=r.ref_low,
            ref_high=r.ref_high,
            collected_at=_iso(r.collected_at),
            reported_at=_iso(r.reported_at),
        )
        for r in list(latest.values())[:limit]
    ]

    return BloodSummary(
        totalAnalytes=len(latest),
        totalResults=len(rows),
        lastCollectedDate=_iso(rows[0].collected_at) if rows else None,
        recentResults=recent,
    )


# ---------------------------------------------------------------------------
# Matrix table
# ---------------------------------------------------------------------------

def fetch_matrix_rows(db: Session) -> list[dict[str, Any]]:
    """All matrix rows with every column, ordered by analyte name."""
    result = db.execute(text(f"SELECT * FROM {MATRIX_TABLE} ORDER BY analyte ASC"))
    return [dict(m) for m in result.mappings()]


def _matrix_columns(db: Session) -> set[str]:
    # Inspect through the session's connection so uncommitted DDL is visible
    return {c["name"] for c in inspect(db.connection()).get_columns(MATRIX_TABLE)}


def _quote(db: Session, column: str) -> str:
    return db.get_bind().dialect.identifier_preparer.quote_identifier(column)


def ensure_date_column(db: Session, day: date | str) -> str:
    """Add the ``d_YYYY_MM_DD`` column for *day* if missing; return its name."""
    column = encode_date_column(day)
    if column not in _matrix_columns(db):
        db.execute(text(f"ALTER TABLE {MATRIX_TABLE} ADD COLUMN {_quote(db, column)} FLOAT"))
        logger.info("Added matrix column %s", column)
    return column


def merge_into_matrix(db: Session, rows: Iterable[dict[str, Any]]) -> int:
    """Write numeric results into the matrix table.

    Analytes are matched case-insensitively against existing matrix rows;
    new analytes get a new row. The first value seen for an (analyte, day)
    wins and cells that already hold a value are never overwritten.
    Returns the number of cells written. Caller commits, and must hold
    ``matrix_lock`` until then when merges can run concurrently.
    """
    existing = {analyte_key(r.analyte): r for r in db.query(AnalyteMatrixRow).all()}

    # (key, day) -> value, first value wins
    cells: dict[tuple[str, date], float] = {}
    for row in rows:
        name = (row.get("analyte") or "").strip()
        value = numeric_value(row.get("value_numeric"))
        ts = parse_timestamp(row.get("collected_at"))
        if not name or value is None or ts is None:
            continue

        key = analyte_key(name)
        matrix_row = existing.get(key)
        if matrix_row is None:
            matrix_row = AnalyteMatrixRow(analyte=name)
            db.add(matrix_row)
            existing[key] = matrix_row
        if matrix_row.units is None and row.get("units"):
            matrix_row.units = row["units"]
        if matrix_row.ref_low is None and row.get("ref_low") is not None:
            matrix_row.ref_low = row["ref_low"]
        if matrix_row.ref_high is None and row.get("ref_high") is not None:
            matrix_row.ref_high = row["ref_high"]

        cells.setdefault((key, utc_day(ts)), value)

    db.flush()

    written = 0
    known_columns = _matrix_columns(db)
    for (key, day), value in cells.items():
        column = encode_date_column(day)
        if column not in known_columns:
            ensure_date_column(db, day)
            known_columns.add(column)
        quoted = _quote(db, column)
        result = db.execute(
            text(
                f"UPDATE {MATRIX_TABLE} SET {quoted} = :value "
                f"WHERE id = :id AND {quoted} IS NULL"
            ),
            {"value": value, "id": existing[key].id},
        )
        written += result.rowcount

    logger.info("Merged %d cells into %s", written, MATRIX_TABLE)
    return written
