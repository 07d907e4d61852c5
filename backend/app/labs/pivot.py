"""
Dense pivot reconstruction from the wide analyte matrix.

Matrix rows are sparse: each carries only the date columns that were
sampled for it. The pivot pools date columns across every row, sorts them,
and aligns every row against that shared axis with explicit ``None`` gaps.
"""

from collections.abc import Mapping
from typing import Any, Iterable

from app.labs.columns import decode_date_column
from app.schemas import PivotRow, PivotTable


def _as_mapping(row: Any) -> Mapping:
    if isinstance(row, Mapping):
        return row
    # SQLAlchemy Row objects expose their columns through ._mapping
    mapping = getattr(row, "_mapping", None)
    if mapping is not None:
        return mapping
    return vars(row)


def _date_cells(row: Mapping) -> dict[str, Any]:
    """Map ISO date -> cell value for every date column present on *row*."""
    cells = {}
    for column, value in row.items():
        iso = decode_date_column(column)
        if iso is not None:
            cells[iso] = value
    return cells


def build_pivot(rows: Iterable[Any]) -> PivotTable:
    """Build the dense analyte x date table from matrix rows.

    Rows keep their input order. ``units``, ``ref_low`` and ``ref_high``
    are carried through untouched.
    """
    decoded = []
    pooled_dates: set[str] = set()
    for raw in rows:
        row = _as_mapping(raw)
        cells = _date_cells(row)
        pooled_dates.update(cells)
        decoded.append((row, cells))

    # ISO dates sort chronologically as plain strings
    dates = sorted(pooled_dates)

    return PivotTable(
        dates=dates,
        rows=[
            PivotRow(
                analyte=row.get("analyte"),
                units=row.get("units"),
                ref_low=row.get("ref_low"),
                ref_high=row.get("ref_high"),
                cols=[cells.get(d) for d in dates],
            )
            for row, cells in decoded
        ],
    )
