"""
Ingestion of extracted lab results.

Lab reports are turned into rows elsewhere (the extraction service emits a
CSV with one row per analyte result). This module:

  - parses and normalizes that CSV (decimal commas, blank cells, dates),
  - persists rows to the ``blood`` event log in batches,
  - merges numeric values into the ``analyte_matrix`` table,
  - renders the wide matrix CSV offered for download when a job finishes.

``run_ingest_job`` is the entry point used by FastAPI ``BackgroundTasks``.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, TextIO

from sqlalchemy.orm import Session

from app.labs.catalog import analyte_key
from app.labs.columns import encode_date_column
from app.labs.timeseries import numeric_value, parse_timestamp, utc_day
from app.services.jobs import IngestJobStore
from app.services.store import insert_results, matrix_lock, merge_into_matrix

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000

REQUIRED_COLUMNS = ("analyte", "collected_at")

_DECIMAL_COMMA = re.compile(r"(\d),(\d)")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _decimal_comma_to_dot(value: Any) -> str | None:
    """'5,4' -> '5.4' (reports printed with a decimal comma)."""
    text = _clean_text(value)
    if text is None:
        return None
    return _DECIMAL_COMMA.sub(r"\1.\2", text)


def _safe_number(value: Any) -> float | None:
    if isinstance(value, str):
        value = _decimal_comma_to_dot(value)
    return numeric_value(value)


def _to_naive_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def normalize_result(raw: dict[str, Any], source_filename: str | None = None) -> dict[str, Any] | None:
    """Normalize one extracted row into ``BloodResult`` fields.

    Returns ``None`` for rows without an analyte name or a parseable
    collection date. Analyte casing is kept as extracted.
    """
    analyte = _clean_text(raw.get("analyte"))
    if analyte is None:
        return None

    collected = parse_timestamp(_clean_text(raw.get("collected_at")))
    if collected is None:
        return None
    collected = _to_naive_utc(collected)

    reported = parse_timestamp(_clean_text(raw.get("reported_at")))
    reported = _to_naive_utc(reported) if reported is not None else collected

    return {
        "collected_at": collected,
        "reported_at": reported,
        "panel": _clean_text(raw.get("panel")),
        "analyte": analyte,
        "value_numeric": _safe_number(raw.get("value_numeric")),
        "value_text": _decimal_comma_to_dot(raw.get("value_text")),
        "units": _clean_text(raw.get("units")),
        "ref_low": _safe_number(raw.get("ref_low")),
        "ref_high": _safe_number(raw.get("ref_high")),
        "flag": _clean_text(raw.get("flag")),
        "source_filename": _clean_text(raw.get("source_filename")) or source_filename,
    }


def parse_lab_csv(stream: TextIO, source_filename: str | None = None) -> list[dict[str, Any]]:
    """Parse an extracted-results CSV into normalized rows.

    Raises ``ValueError`` if a required column is missing from the header.
    Rows that cannot be normalized are skipped with a warning.
    """
    reader = csv.DictReader(stream)
    header = {(name or "").strip().lower() for name in (reader.fieldnames or [])}
    missing = [c for c in REQUIRED_COLUMNS if c not in header]
    if missing:
        raise ValueError(f"CSV is missing required column(s): {', '.join(missing)}")

    results = []
    for line_no, row in enumerate(reader, start=2):
        cleaned = {(k or "").strip().lower(): v for k, v in row.items()}
        normalized = normalize_result(cleaned, source_filename)
        if normalized is None:
            logger.warning("Skipping line %d of %s: missing analyte or date", line_no, source_filename)
            continue
        results.append(normalized)
    return results


# ---------------------------------------------------------------------------
# Matrix CSV
# ---------------------------------------------------------------------------


def build_matrix_csv(rows: list[dict[str, Any]]) -> str:
    """Pivot normalized rows into the wide ``analyte, units, d_...`` CSV.

    Date columns ascend; analytes are sorted by their normalized key. The
    first value for an (analyte, day) wins, except that a numeric value
    replaces an earlier text-only one.
    """
    matrix: dict[str, dict[str, Any]] = {}
    columns: set[str] = set()

    for r in rows:
        key = analyte_key(r.get("analyte"))
        ts = parse_timestamp(r.get("collected_at") or r.get("reported_at"))
        if not key or ts is None:
            continue
        column = encode_date_column(utc_day(ts))
        columns.add(column)

        entry = matrix.setdefault(key, {"analyte": r["analyte"].strip(), "units": None})
        value = r.get("value_numeric")
        current = entry.get(column)
        if current is None:
            if value is not None:
                entry[column] = value
            elif r.get("value_text"):
                entry[column] = r["value_text"]
        elif not isinstance(current, (int, float)) and value is not None:
            entry[column] = value

        if not entry["units"] and r.get("units"):
            entry["units"] = r["units"]

    date_columns = sorted(columns)
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\r\n")
    writer.writerow(["analyte", "units", *date_columns])
    for key in sorted(matrix):
        entry = matrix[key]
        writer.writerow([
            entry["analyte"],
            entry["units"] or "",
            *("" if entry.get(c) is None else entry[c] for c in date_columns),
        ])
    return out.getvalue()


# ---------------------------------------------------------------------------
# Background job
# ---------------------------------------------------------------------------


def run_ingest_job(
    job_id: str,
    rows: list[dict[str, Any]],
    jobs: IngestJobStore,
    session_factory: Callable[[], Session],
) -> None:
    """Persist *rows* and refresh the matrix table, reporting progress on the job.

    Failures are recorded on the job (``done`` with ``error`` set) and the
    transaction is rolled back, so nothing is half-written.
    """
    jobs.append_log(job_id, "Starting background processing", "processing")
    db = session_factory()
    try:
        stored = 0
        for offset in range(0, len(rows), BATCH_SIZE):
            batch = rows[offset:offset + BATCH_SIZE]
            stored += insert_results(db, batch)
            jobs.update(job_id, processed=stored)
            jobs.append_log(job_id, f"Stored {stored} / {len(rows)} results")

        with matrix_lock:
            cells = merge_into_matrix(db, rows)
            db.commit()

        jobs.update(
            job_id,
            processed=len(rows),
            done=True,
            rows=rows,
            csv=build_matrix_csv(rows),
            error=None,
        )
        jobs.append_log(job_id, f"Matrix updated ({cells} cells). CSV ready", "done")
        logger.info("Ingest job %s complete: %d results, %d matrix cells", job_id, stored, cells)
    except Exception as exc:
        db.rollback()
        logger.exception("Ingest job %s failed", job_id)
        jobs.update(job_id, done=True, error=str(exc))
        jobs.append_log(job_id, f"Background processing failed: {exc}", "error")
    finally:
        db.close()
