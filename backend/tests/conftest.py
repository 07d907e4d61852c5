"""
Shared pytest fixtures for the Lab Results Dashboard backend test suite.

Provides:
  - session_factory: A sessionmaker bound to an in-memory SQLite engine.
  - db:              A session from that factory (isolated per test).
  - client:          A FastAPI TestClient wired to the in-memory DB with a
                     fresh ingest job registry.
  - sample_results:  Event-log rows across a few analytes and days.
  - sample_matrix:   Sparse analyte_matrix rows with date columns.
"""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db, get_session_factory
from app.main import app
from app import models
from app.services import store
from app.services.jobs import IngestJobStore


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def session_factory():
    """Create a fresh in-memory SQLite database for each test.

    Uses ``StaticPool`` so that the same underlying connection is shared
    across threads.  FastAPI's ``TestClient`` dispatches requests (and
    background tasks) in a separate thread, and SQLite in-memory
    databases are per-connection.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=engine
    )
    yield TestingSessionLocal
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ---------------------------------------------------------------------------
# FastAPI TestClient fixture
# ---------------------------------------------------------------------------

@pytest.fixture()
def client(db, session_factory):
    """Return a TestClient whose DB dependencies point at the test database."""

    def _override_get_db():
        try:
            yield db
        finally:
            pass  # session lifecycle managed by the db fixture

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.state.ingest_jobs = IngestJobStore(ttl_seconds=3600, max_entries=100)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Sample-data fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def sample_results(db):
    """Insert LDL/HDL/Glucose results over three days.

    Includes one qualitative (text-only) result that has no numeric value.
    """
    rows = [
        ("LDL", datetime(2024, 1, 1, 8, 0), 90.0, "mg/dL"),
        ("LDL", datetime(2024, 1, 1, 20, 0), 100.0, "mg/dL"),
        ("ldl", datetime(2024, 1, 2, 8, 0), 110.0, "mg/dL"),
        ("HDL", datetime(2024, 1, 1, 8, 0), 55.0, "mg/dL"),
        ("HDL", datetime(2024, 1, 3, 8, 0), 60.0, "mg/dL"),
        ("Glucose", datetime(2024, 1, 2, 7, 30), 88.0, "mg/dL"),
    ]
    records = []
    for analyte, ts, value, units in rows:
        obj = models.BloodResult(
            analyte=analyte, collected_at=ts, value_numeric=value, units=units
        )
        db.add(obj)
        records.append(obj)

    urine = models.BloodResult(
        analyte="Urine nitrite",
        collected_at=datetime(2024, 1, 2, 9, 0),
        value_numeric=None,
        value_text="negative",
    )
    db.add(urine)
    records.append(urine)

    db.commit()
    return records


def add_matrix_row(db, analyte, cells, units=None, ref_low=None, ref_high=None):
    """Insert one analyte_matrix row with the given ``{iso_date: value}`` cells."""
    row = models.AnalyteMatrixRow(
        analyte=analyte, units=units, ref_low=ref_low, ref_high=ref_high
    )
    db.add(row)
    db.flush()
    for iso, value in cells.items():
        column = store.ensure_date_column(db, iso)
        db.execute(
            text(f'UPDATE analyte_matrix SET "{column}" = :v WHERE id = :id'),
            {"v": value, "id": row.id},
        )
    db.commit()
    return row


@pytest.fixture()
def sample_matrix(db):
    """Two sparse matrix rows: A sampled on Jan 1, B sampled on Jan 2."""
    add_matrix_row(db, "Hemoglobin", {"2024-01-01": 14.1}, units="g/dL", ref_low=13.5, ref_high=17.5)
    add_matrix_row(db, "Ferritin", {"2024-01-02": 120.0}, units="ng/mL")


@pytest.fixture()
def make_matrix_row(db):
    """Factory fixture wrapping ``add_matrix_row`` for the test session."""

    def _make(analyte, cells, **metadata):
        return add_matrix_row(db, analyte, cells, **metadata)

    return _make
