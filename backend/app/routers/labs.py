import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.labs.catalog import list_analytes
from app.labs.pivot import build_pivot
from app.labs.timeseries import EmptySelectionError, aggregate_daily
from app.schemas import AnalyteList, ExploreResult
from app.services import store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["labs"])


# ─── Helper ───────────────────────────────────────────────────

def _parse_day(value: Optional[str], param: str) -> Optional[date]:
    """Parse an optional YYYY-MM-DD query param (a full timestamp is cut to its date)."""
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date for '{param}': {value!r}")


# ─── Analytes ─────────────────────────────────────────────────

@router.get("/analytes")
def get_analytes(db: Session = Depends(get_db)):
    """List every distinct analyte name stored in the event log."""
    analytes = list_analytes(store.fetch_analyte_names(db))
    logger.info("analytes ok, count: %d", len(analytes))
    return AnalyteList(analytes=analytes).model_dump()


# ─── Explore ──────────────────────────────────────────────────

@router.get("/explore")
def explore(
    analytes: str = Query(""),
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    db: Session = Depends(get_db),
):
    """Daily averages for a comma-separated analyte selection.

    ``from``/``to`` bound the collection day inclusively.
    """
    wanted = [a.strip() for a in analytes.split(",") if a.strip()]
    start_date = _parse_day(start, "from")
    end_date = _parse_day(end, "to")

    events = store.fetch_events(db, start_date, end_date) if wanted else []
    try:
        rows = aggregate_daily(events, wanted, start_date, end_date)
    except EmptySelectionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    logger.info("explore ok, rows: %d", len(rows))
    return ExploreResult(rows=rows).model_dump()


# ─── Pivot ────────────────────────────────────────────────────

@router.get("/pivot")
def get_pivot(db: Session = Depends(get_db)):
    """Analyte x date table reconstructed from the matrix table."""
    table = build_pivot(store.fetch_matrix_rows(db))
    logger.info("pivot ok, %d analytes x %d dates", len(table.rows), len(table.dates))
    return table.model_dump()


# ─── Blood summary ────────────────────────────────────────────

@router.get("/blood-data")
def get_blood_data(db: Session = Depends(get_db)):
    """Totals and the most recent result for each analyte."""
    summary = store.build_blood_summary(db, settings.LATEST_RESULTS_LIMIT)
    return {"success": True, "data": summary.model_dump()}
