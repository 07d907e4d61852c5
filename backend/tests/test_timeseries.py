"""
Tests for per-day aggregation (app.labs.timeseries).

Covers:
  - Timestamp / numeric parsing helpers
  - Bucketing by (analyte, UTC day) and averaging
  - Case-insensitive selection with original casing in output
  - Inclusive date-range filtering
  - Malformed-event exclusion and empty selections
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from app.labs.timeseries import (
    EmptySelectionError,
    aggregate_daily,
    numeric_value,
    parse_timestamp,
    utc_day,
)


def _event(analyte, collected_at, value):
    return {"analyte": analyte, "collected_at": collected_at, "value_numeric": value}


LDL_EVENTS = [
    _event("LDL", "2024-01-01T08:00:00Z", 90),
    _event("LDL", "2024-01-01T20:00:00Z", 100),
    _event("LDL", "2024-01-02T08:00:00Z", 110),
]


def _as_tuples(rows):
    return sorted((r.analyte, r.day, r.value) for r in rows)


# ======================================================================
# Helpers
# ======================================================================

class TestParseTimestamp:
    def test_zulu_suffix(self):
        assert parse_timestamp("2024-01-01T08:00:00Z") == datetime(2024, 1, 1, 8, tzinfo=timezone.utc)

    def test_offset(self):
        ts = parse_timestamp("2024-01-01T23:30:00-05:00")
        assert ts.utcoffset() == timedelta(hours=-5)

    def test_space_separated(self):
        assert parse_timestamp("2024-01-15 08:30:00") == datetime(2024, 1, 15, 8, 30)

    def test_date_only(self):
        assert parse_timestamp("2024-01-15") == datetime(2024, 1, 15)

    def test_date_and_datetime_objects(self):
        assert parse_timestamp(date(2024, 1, 15)) == datetime(2024, 1, 15)
        dt = datetime(2024, 1, 15, 10)
        assert parse_timestamp(dt) is dt

    @pytest.mark.parametrize("raw", [None, "", "   ", "garbage", "2024-13-01", 12345])
    def test_unparseable(self, raw):
        assert parse_timestamp(raw) is None


class TestUtcDay:
    def test_naive_is_taken_as_utc(self):
        assert utc_day(datetime(2024, 1, 1, 23, 59)) == date(2024, 1, 1)

    def test_aware_is_converted(self):
        ts = datetime(2024, 1, 1, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert utc_day(ts) == date(2024, 1, 2)


class TestNumericValue:
    @pytest.mark.parametrize("raw,expected", [
        (90, 90.0), (4.5, 4.5), ("110", 110.0), ("  7.25 ", 7.25),
    ])
    def test_numeric(self, raw, expected):
        assert numeric_value(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "n/a", True, float("nan"), float("inf"), [1]])
    def test_not_numeric(self, raw):
        assert numeric_value(raw) is None


# ======================================================================
# aggregate_daily
# ======================================================================

class TestAggregateDaily:
    def test_daily_means(self):
        rows = aggregate_daily(LDL_EVENTS, {"ldl"})
        assert _as_tuples(rows) == [
            ("LDL", "2024-01-01", 95.0),
            ("LDL", "2024-01-02", 110.0),
        ]

    def test_range_start(self):
        rows = aggregate_daily(LDL_EVENTS, {"ldl"}, start=date(2024, 1, 2))
        assert _as_tuples(rows) == [("LDL", "2024-01-02", 110.0)]

    def test_range_end_is_inclusive(self):
        rows = aggregate_daily(LDL_EVENTS, {"ldl"}, end="2024-01-01")
        assert _as_tuples(rows) == [("LDL", "2024-01-01", 95.0)]

    def test_range_both_bounds_same_day(self):
        rows = aggregate_daily(LDL_EVENTS, {"LDL"}, start="2024-01-02", end="2024-01-02")
        assert _as_tuples(rows) == [("LDL", "2024-01-02", 110.0)]

    def test_timestamp_bounds_use_date_part(self):
        rows = aggregate_daily(
            LDL_EVENTS, {"ldl"}, start="2024-01-02T00:00:00", end="2024-01-02T00:00:00Z"
        )
        assert _as_tuples(rows) == [("LDL", "2024-01-02", 110.0)]

    def test_invalid_bound(self):
        with pytest.raises(ValueError, match="Invalid date bound"):
            aggregate_daily(LDL_EVENTS, {"ldl"}, start="01/02/2024")

    def test_single_name_string(self):
        rows = aggregate_daily(LDL_EVENTS, "ldl")
        assert _as_tuples(rows) == [
            ("LDL", "2024-01-01", 95.0),
            ("LDL", "2024-01-02", 110.0),
        ]

    def test_case_insensitive_bucket_keeps_first_casing(self):
        events = [
            _event("ldl", "2024-01-01T08:00:00Z", 80),
            _event("LDL", "2024-01-01T09:00:00Z", 100),
        ]
        rows = aggregate_daily(events, ["Ldl"])
        assert len(rows) == 1
        assert rows[0].analyte == "ldl"
        assert rows[0].value == 90.0

    def test_selection_is_trimmed(self):
        rows = aggregate_daily(LDL_EVENTS, ["  ldl  "])
        assert len(rows) == 2

    def test_unselected_analytes_excluded(self):
        events = LDL_EVENTS + [_event("HDL", "2024-01-01T08:00:00Z", 50)]
        rows = aggregate_daily(events, {"hdl"})
        assert _as_tuples(rows) == [("HDL", "2024-01-01", 50.0)]

    def test_multiple_analytes(self):
        events = LDL_EVENTS + [_event("HDL", "2024-01-01T08:00:00Z", 50)]
        rows = aggregate_daily(events, {"ldl", "hdl"})
        assert len(rows) == 3
        assert len({(r.analyte.lower(), r.day) for r in rows}) == 3

    def test_buckets_by_utc_day(self):
        # 23:30 at UTC-5 on Jan 1 and 00:30 UTC on Jan 2 share a UTC day
        events = [
            _event("LDL", "2024-01-01T23:30:00-05:00", 100),
            _event("LDL", "2024-01-02T00:30:00Z", 120),
        ]
        rows = aggregate_daily(events, {"ldl"})
        assert _as_tuples(rows) == [("LDL", "2024-01-02", 110.0)]

    def test_datetime_objects(self):
        events = [_event("LDL", datetime(2024, 1, 1, 8), 90)]
        assert _as_tuples(aggregate_daily(events, {"ldl"})) == [("LDL", "2024-01-01", 90.0)]

    def test_malformed_events_excluded(self):
        events = LDL_EVENTS + [
            _event("LDL", "2024-01-01T10:00:00Z", None),
            _event("LDL", "2024-01-01T10:00:00Z", "high"),
            _event("LDL", "not a date", 500),
            _event("LDL", None, 500),
            _event("", "2024-01-01T10:00:00Z", 500),
            {"collected_at": "2024-01-01T10:00:00Z", "value_numeric": 500},
        ]
        rows = aggregate_daily(events, {"ldl"})
        assert _as_tuples(rows) == [
            ("LDL", "2024-01-01", 95.0),
            ("LDL", "2024-01-02", 110.0),
        ]

    def test_empty_events(self):
        assert aggregate_daily([], {"ldl"}) == []

    @pytest.mark.parametrize("wanted", [set(), [], ["", "  "]])
    def test_empty_selection_raises(self, wanted):
        with pytest.raises(EmptySelectionError, match="No analytes selected"):
            aggregate_daily(LDL_EVENTS, wanted)

    def test_empty_selection_is_value_error(self):
        with pytest.raises(ValueError):
            aggregate_daily([], [])

    def test_deterministic(self):
        assert aggregate_daily(LDL_EVENTS, {"ldl"}) == aggregate_daily(LDL_EVENTS, {"ldl"})

    def test_result_serializes(self):
        rows = aggregate_daily(LDL_EVENTS[:1], {"ldl"})
        assert rows[0].model_dump() == {"analyte": "LDL", "day": "2024-01-01", "value": 90.0}
