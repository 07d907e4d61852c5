"""
Lab-result ingestion router.

  1. POST /api/ingest          — upload an extracted-results CSV, returns a job id
  2. GET  /api/ingest/status   — poll job progress
  3. GET  /api/ingest/result   — download the matrix CSV once the job is done
"""

from io import StringIO
from typing import Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from app.database import get_session_factory
from app.services.ingest import parse_lab_csv, run_ingest_job
from app.services.jobs import IngestJob, IngestJobStore, get_job_store

router = APIRouter(tags=["ingest"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
}


def _require_job(job_id: Optional[str], jobs: IngestJobStore) -> IngestJob:
    if not job_id:
        raise HTTPException(status_code=400, detail="missing jobId")
    job = jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="job not found")
    return job


@router.post("/ingest", status_code=202)
async def start_ingest(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    jobs: IngestJobStore = Depends(get_job_store),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """Queue an extracted-results CSV for storage and matrix merge."""
    if not file.filename or not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="File must be a CSV")

    content = await file.read()
    try:
        text = content.decode("utf-8-sig")  # handle BOM
        rows = parse_lab_csv(StringIO(text), source_filename=file.filename)
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8 encoded")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if not rows:
        raise HTTPException(status_code=400, detail="No lab results found in file")

    job = jobs.create(source=file.filename, total=len(rows))
    jobs.append_log(job.job_id, f"Upload received: {file.filename} ({len(rows)} rows)", "received")

    background_tasks.add_task(run_ingest_job, job.job_id, rows, jobs, session_factory)
    return {"jobId": job.job_id}


@router.get("/ingest/status")
def ingest_status(
    job_id: Optional[str] = Query(None, alias="jobId"),
    jobs: IngestJobStore = Depends(get_job_store),
):
    job = _require_job(job_id, jobs)
    return JSONResponse(content=job.to_status().model_dump(), headers=NO_CACHE_HEADERS)


@router.get("/ingest/result")
def ingest_result(
    job_id: Optional[str] = Query(None, alias="jobId"),
    jobs: IngestJobStore = Depends(get_job_store),
):
    """Return the matrix CSV of a finished job (204 when it produced no rows)."""
    job = _require_job(job_id, jobs)
    if not job.done:
        raise HTTPException(status_code=409, detail="job not finished")
    if job.error:
        raise HTTPException(status_code=409, detail=f"job failed: {job.error}")
    if not job.rows or not job.csv:
        return Response(status_code=204)

    return Response(
        content=job.csv,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="lab_results_{job.job_id}.csv"'},
    )
