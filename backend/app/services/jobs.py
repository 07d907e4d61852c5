"""
In-memory registry of ingestion jobs.

One ``IngestJobStore`` is created per application (``app.state.ingest_jobs``)
and handed to routes through the ``get_job_store`` dependency. Jobs expire
after ``ttl_seconds`` without being touched, and the registry never holds
more than ``max_entries`` jobs; the least recently touched job goes first.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from fastapi import Request

from app.schemas import IngestJobStatus


@dataclass
class IngestJob:
    job_id: str
    status: str = "created"
    processed: int = 0
    total: int = 1
    done: bool = False
    error: str | None = None
    source: str | None = None
    logs: list[str] = field(default_factory=list)
    last_log: str | None = None
    rows: list[dict[str, Any]] = field(default_factory=list)
    csv: str | None = None

    def to_status(self) -> IngestJobStatus:
        return IngestJobStatus(
            jobId=self.job_id,
            processed=self.processed,
            total=self.total,
            done=self.done,
            status=self.status,
            error=self.error,
            lastLog=self.last_log,
        )


class IngestJobStore:
    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        # job_id -> (job, last_touched); oldest first
        self._jobs: OrderedDict[str, tuple[IngestJob, float]] = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired()
            return len(self._jobs)

    def _evict_expired(self) -> None:
        cutoff = self._clock() - self.ttl_seconds
        while self._jobs:
            job_id, (_, touched) = next(iter(self._jobs.items()))
            if touched > cutoff:
                break
            del self._jobs[job_id]

    def _touch(self, job: IngestJob) -> None:
        self._jobs[job.job_id] = (job, self._clock())
        self._jobs.move_to_end(job.job_id)

    def create(self, source: str | None = None, total: int = 1) -> IngestJob:
        job = IngestJob(job_id=uuid.uuid4().hex, source=source, total=max(1, total))
        with self._lock:
            self._evict_expired()
            self._touch(job)
            while len(self._jobs) > self.max_entries:
                self._jobs.popitem(last=False)
        return job

    def get(self, job_id: str) -> IngestJob | None:
        with self._lock:
            self._evict_expired()
            entry = self._jobs.get(job_id)
            if entry is None:
                return None
            self._touch(entry[0])
            return entry[0]

    def update(self, job_id: str, **fields: Any) -> IngestJob | None:
        with self._lock:
            self._evict_expired()
            entry = self._jobs.get(job_id)
            if entry is None:
                return None
            job = entry[0]
            for name, value in fields.items():
                if not hasattr(job, name):
                    raise AttributeError(f"IngestJob has no field {name!r}")
                setattr(job, name, value)
            self._touch(job)
            return job

    def append_log(self, job_id: str, message: str, status: str | None = None) -> IngestJob | None:
        line = f"{datetime.now(timezone.utc).isoformat()} {message}"
        with self._lock:
            self._evict_expired()
            entry = self._jobs.get(job_id)
            if entry is None:
                return None
            job = entry[0]
            job.logs.append(line)
            job.last_log = line
            if status is not None:
                job.status = status
            self._touch(job)
            return job


def get_job_store(request: Request) -> IngestJobStore:
    """FastAPI dependency returning the application's job registry."""
    return request.app.state.ingest_jobs
