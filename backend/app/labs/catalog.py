"""
Analyte vocabulary derived from stored results.

``analyte_key`` is the one normalization applied wherever analyte names
are compared. Display values always keep the casing they were stored with.
"""

import unicodedata
from collections.abc import Mapping
from typing import Any, Iterable


def analyte_key(name: Any) -> str:
    """Case-insensitive identity of an analyte name ("" for missing names)."""
    if name is None:
        return ""
    return str(name).strip().lower()


def record_field(record: Any, field: str) -> Any:
    """Read *field* from a mapping (dict, RowMapping) or an ORM object."""
    if isinstance(record, Mapping):
        return record.get(field)
    return getattr(record, field, None)


def _collation_key(name: str) -> tuple[str, str]:
    # Base-letter comparison: case and accents ignored, exact string breaks ties
    decomposed = unicodedata.normalize("NFD", name)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return base.casefold(), name


def list_analytes(events: Iterable[Any]) -> list[str]:
    """Return the distinct analyte names in *events*, sorted alphabetically.

    Names are trimmed and blanks dropped. Names that differ only in case
    collapse to one entry, keeping the casing encountered first.
    """
    seen: dict[str, str] = {}
    for event in events:
        raw = record_field(event, "analyte")
        if raw is None:
            continue
        name = str(raw).strip()
        if not name:
            continue
        seen.setdefault(analyte_key(name), name)

    return sorted(seen.values(), key=_collation_key)
