"""Response shapes returned to the dashboard frontend."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class AnalyteList(BaseModel):
    analytes: list[str] = Field(default_factory=list)


class DailyAverage(BaseModel):
    """Mean value of one analyte on one UTC calendar day."""
    analyte: str
    day: str  # YYYY-MM-DD
    value: float


class ExploreResult(BaseModel):
    rows: list[DailyAverage] = Field(default_factory=list)


class PivotRow(BaseModel):
    analyte: Optional[str] = None
    units: Optional[str] = None
    ref_low: Optional[float | str] = None
    ref_high: Optional[float | str] = None
    # Positionally aligned with PivotTable.dates; cells pass through as stored
    cols: list[Any] = Field(default_factory=list)


class PivotTable(BaseModel):
    dates: list[str] = Field(default_factory=list)
    rows: list[PivotRow] = Field(default_factory=list)


class LatestResult(BaseModel):
    analyte: str
    value_numeric: Optional[float] = None
    value_text: Optional[str] = None
    units: Optional[str] = None
    ref_low: Optional[float] = None
    ref_high: Optional[float] = None
    collected_at: Optional[str] = None
    reported_at: Optional[str] = None


class BloodSummary(BaseModel):
    totalAnalytes: int
    totalResults: int
    lastCollectedDate: Optional[str] = None
    recentResults: list[LatestResult] = Field(default_factory=list)


class IngestJobStatus(BaseModel):
    jobId: str
    processed: int
    total: int
    done: bool
    status: Optional[str] = None
    error: Optional[str] = None
    lastLog: Optional[str] = None
