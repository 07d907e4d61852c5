from sqlalchemy import Column, Integer, Float, String, DateTime, Text, Index
from app.database import Base


class BloodResult(Base):
    """Event log: one row per observed analyte measurement."""
    __tablename__ = "blood"

    id = Column(Integer, primary_key=True, autoincrement=True)
    collected_at = Column(DateTime, nullable=False, index=True)
    reported_at = Column(DateTime, nullable=True)
    panel = Column(String, nullable=True)
    analyte = Column(String, nullable=False, index=True)
    value_numeric = Column(Float, nullable=True)
    value_text = Column(Text, nullable=True)  # qualitative results, e.g. "negative"
    units = Column(String, nullable=True)
    ref_low = Column(Float, nullable=True)
    ref_high = Column(Float, nullable=True)
    flag = Column(String, nullable=True)  # H / L as printed on the report
    source_filename = Column(String, nullable=True)

    __table_args__ = (
        Index("ix_blood_analyte_collected", "analyte", "collected_at"),
    )


class AnalyteMatrixRow(Base):
    """Matrix table: one row per analyte.

    Only the fixed columns are declared here. Date columns named
    ``d_YYYY_MM_DD`` are added at runtime by ``store.ensure_date_column``
    and are read back with plain SQL, since the ORM does not know them.
    """
    __tablename__ = "analyte_matrix"

    id = Column(Integer, primary_key=True, autoincrement=True)
    analyte = Column(String, nullable=False, unique=True, index=True)
    units = Column(String, nullable=True)
    ref_low = Column(Float, nullable=True)
    ref_high = Column(Float, nullable=True)
