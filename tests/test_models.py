"""Tests for filters, date ranges and record parsing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from reply_analytics.constants import DateField, RequirementFlag
from reply_analytics.errors import DateRangeInvalid
from reply_analytics.models import (
    ComparisonRecord,
    DateRange,
    Filter,
    SupportThreadRecord,
    clamp_date_range,
    default_date_range,
    parse_timestamp,
)

UTC = timezone.utc
JAN_1 = datetime(2025, 1, 1, tzinfo=UTC)
FEB_1 = datetime(2025, 2, 1, tzinfo=UTC)


# =============================================================================
# Date ranges
# =============================================================================


class TestDateRange:
    """Tests for DateRange validation and arithmetic."""

    def test_start_after_end_is_invalid(self) -> None:
        with pytest.raises(DateRangeInvalid) as excinfo:
            DateRange(start=FEB_1, end=JAN_1)

        assert excinfo.value.start == FEB_1

    def test_mixed_naive_and_aware_is_invalid(self) -> None:
        with pytest.raises(DateRangeInvalid):
            DateRange(start=datetime(2025, 1, 1), end=FEB_1)

    def test_non_datetime_bounds_are_invalid(self) -> None:
        with pytest.raises(DateRangeInvalid):
            DateRange(start="2025-01-01", end=FEB_1)

    def test_invalid_range_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            Filter.create(start=FEB_1, end=JAN_1)

    def test_range_is_half_open(self) -> None:
        date_range = DateRange(start=JAN_1, end=FEB_1)

        assert date_range.contains(JAN_1)
        assert not date_range.contains(FEB_1)
        assert date_range.contains(FEB_1 - timedelta(microseconds=1))

    def test_previous(self) -> None:
        previous = DateRange(start=JAN_1, end=FEB_1).previous()

        assert previous.end == JAN_1 - timedelta(milliseconds=1)
        assert previous.duration == timedelta(days=31)

    def test_default_date_range(self) -> None:
        now = datetime(2025, 3, 15, 14, 30, tzinfo=UTC)

        date_range = default_date_range(days=30, now=now)

        assert date_range.start == datetime(2025, 2, 13, tzinfo=UTC)
        assert date_range.end == datetime(2025, 3, 15, 23, 59, 59, 999000, tzinfo=UTC)

    def test_clamp_extends_stale_range_to_today(self) -> None:
        now = datetime(2025, 3, 15, 14, 30, tzinfo=UTC)

        clamped = clamp_date_range(DateRange(start=JAN_1, end=FEB_1), now=now)

        assert clamped.start == JAN_1
        assert clamped.end.date() == now.date()

    @pytest.mark.parametrize("date_range", [None, DateRange(start=datetime(2026, 1, 1, tzinfo=UTC), end=datetime(2026, 2, 1, tzinfo=UTC))])
    def test_clamp_falls_back_to_default(self, date_range) -> None:
        now = datetime(2025, 3, 15, 14, 30, tzinfo=UTC)

        assert clamp_date_range(date_range, days=7, now=now) == default_date_range(days=7, now=now)


# =============================================================================
# Filters
# =============================================================================


class TestFilter:
    """Tests for Filter matching and fingerprints."""

    def test_matches_date_range_and_sets(self) -> None:
        filter = Filter.create(start=JAN_1, end=FEB_1, versions=["v1"], agents=["a@example.com"])

        assert filter.matches(
            {"created_at": "2025-01-05T00:00:00Z", "prompt_version": "v1", "email": "a@example.com"}
        )
        assert not filter.matches(
            {"created_at": "2025-01-05T00:00:00Z", "prompt_version": "v2", "email": "a@example.com"}
        )
        assert not filter.matches(
            {"created_at": "2025-02-01T00:00:00Z", "prompt_version": "v1", "email": "a@example.com"}
        )
        assert not filter.matches({"created_at": None, "prompt_version": "v1"})

    def test_matches_requirement_flags(self) -> None:
        filter = Filter.create(
            start=JAN_1, end=FEB_1, requirement_flags=[RequirementFlag.REQUIRES_TRACKING_INFO]
        )

        assert filter.matches({"created_at": "2025-01-05T00:00:00Z", "requires_tracking_info": True})
        assert not filter.matches({"created_at": "2025-01-05T00:00:00Z", "requires_tracking_info": False})
        assert not filter.matches({"created_at": "2025-01-05T00:00:00Z"})

    def test_matches_selected_date_field(self) -> None:
        filter = Filter.create(start=JAN_1, end=FEB_1, date_field=DateField.HUMAN_REPLY)

        assert filter.matches({"created_at": "2024-12-01T00:00:00Z", "human_reply_date": "2025-01-02T00:00:00Z"})
        assert not filter.matches({"created_at": "2025-01-02T00:00:00Z", "human_reply_date": None})

    def test_matches_epoch_and_naive_iso_timestamps(self) -> None:
        filter = Filter.create(start=JAN_1, end=FEB_1)

        assert filter.matches({"created_at": 1736000000000})
        assert filter.matches({"created_at": "2025-01-05T10:00:00"})
        assert not filter.matches({"created_at": 1738368000000})

    def test_naive_range_reads_bounds_as_utc(self) -> None:
        filter = Filter.create(start=datetime(2025, 1, 1), end=datetime(2025, 2, 1))

        assert filter.matches({"created_at": "2025-01-31T23:30:00Z"})
        assert filter.matches({"created_at": "2025-02-01T00:30:00+01:00"})
        assert not filter.matches({"created_at": "2025-02-01T00:30:00Z"})

    def test_unknown_requirement_flag_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            Filter.create(start=JAN_1, end=FEB_1, requirement_flags=["requires_magic"])

    def test_fingerprint_ignores_set_order(self) -> None:
        first = Filter.create(start=JAN_1, end=FEB_1, versions=["v1", "v2", "v3"])
        second = Filter.create(start=JAN_1, end=FEB_1, versions=["v3", "v1", "v2"])

        assert first.fingerprint() == second.fingerprint()
        assert first == second

    def test_fingerprint_changes_with_constraints(self) -> None:
        base = Filter.create(start=JAN_1, end=FEB_1)

        assert base.fingerprint() != base.with_categories(["billing"]).fingerprint()
        assert base.fingerprint() != base.previous_period().fingerprint()

    def test_without_requirements(self) -> None:
        filter = Filter.create(
            start=JAN_1, end=FEB_1, requirement_flags=[RequirementFlag.REQUIRES_REPLY], versions=["v1"]
        )

        relaxed = filter.without_requirements()

        assert relaxed.requirement_flags == frozenset()
        assert relaxed.versions == frozenset({"v1"})

    def test_set_constraints_skip_empty_sets(self) -> None:
        filter = Filter.create(start=JAN_1, end=FEB_1, statuses=["resolved"])

        assert filter.set_constraints() == {"status": frozenset({"resolved"})}


# =============================================================================
# Records
# =============================================================================


class TestRecords:
    """Tests for record parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2025-01-05T10:00:00Z", datetime(2025, 1, 5, 10, tzinfo=UTC)),
            ("2025-01-05T10:00:00+00:00", datetime(2025, 1, 5, 10, tzinfo=UTC)),
            ("2025-01-05T10:00:00", datetime(2025, 1, 5, 10, tzinfo=UTC)),
            (1736000000000, datetime(2025, 1, 4, 14, 13, 20, tzinfo=UTC)),
            (None, None),
            ("", None),
            ("not a date", None),
        ],
    )
    def test_parse_timestamp(self, value, expected) -> None:
        assert parse_timestamp(value) == expected

    def test_comparison_record_from_dict(self, make_comparison_row) -> None:
        record = ComparisonRecord.from_dict(
            data=make_comparison_row(
                7, change_classification="PERFECT_MATCH", changed=1, human_reply_date="2025-01-02T00:00:00Z"
            )
        )

        assert record.id == 7
        assert record.category == "billing"
        assert record.version == "v1"
        assert record.agent == "agent@example.com"
        assert record.changed is True
        assert record.classification == "PERFECT_MATCH"
        assert record.created_at == datetime(2025, 1, 1, 7, tzinfo=UTC)
        assert record.timestamp(DateField.HUMAN_REPLY) == datetime(2025, 1, 2, tzinfo=UTC)

    def test_support_thread_from_dict(self, make_thread_row) -> None:
        thread = SupportThreadRecord.from_dict(
            data=make_thread_row("t-1", requires_reply=True, requires_editing=None, changed=None)
        )

        assert thread.thread_id == "t-1"
        assert thread.flag(RequirementFlag.REQUIRES_REPLY) is True
        assert thread.flag(RequirementFlag.REQUIRES_EDITING) is False
        assert thread.changed is None
        assert thread.has_ai_draft

    def test_empty_draft_is_no_draft(self) -> None:
        assert not SupportThreadRecord(thread_id="t", ai_draft_reply="").has_ai_draft
