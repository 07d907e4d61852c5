import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import init_db
from app.routers import labs, ingest
from app.services.jobs import IngestJobStore

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Lab Results Dashboard", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.ingest_jobs = IngestJobStore(
    ttl_seconds=settings.INGEST_JOB_TTL_SECONDS,
    max_entries=settings.INGEST_JOB_MAX_ENTRIES,
)

app.include_router(labs.router, prefix="/api")
app.include_router(ingest.router, prefix="/api")


@app.on_event("startup")
def on_startup():
    init_db()


@app.get("/api/health")
def health_check():
    return {"status": "ok"}
