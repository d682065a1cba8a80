"""Tests for saving results to JSON and CSV."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import polars as pl

from reply_analytics import aggregator
from reply_analytics.constants import TrendDirection
from reply_analytics.models import ComparisonRecord, CorrelationCell
from reply_analytics.storage import ReportStorage, to_jsonable

UTC = timezone.utc


def detailed() -> list:
    records = [
        ComparisonRecord(
            id=1,
            created_at=datetime(2025, 1, 7, tzinfo=UTC),
            category="billing",
            version="v2",
            classification="PERFECT_MATCH",
        ),
        ComparisonRecord(
            id=2,
            created_at=datetime(2025, 1, 14, tzinfo=UTC),
            category="billing",
            version="v2",
            classification="critical_error",
        ),
    ]
    return aggregator.detailed_stats(records)


class TestToJsonable:
    """Tests for to_jsonable."""

    def test_dataclasses_and_containers(self) -> None:
        data = to_jsonable(
            {
                "cells": [CorrelationCell(x="a", y="b", value=0.5)],
                "when": datetime(2025, 1, 1, tzinfo=UTC),
                "trend": aggregator.trend(1, 2),
            }
        )

        assert data["cells"] == [{"x": "a", "y": "b", "value": 0.5}]
        assert data["when"] == "2025-01-01T00:00:00+00:00"
        assert data["trend"]["trend"]["direction"] == TrendDirection.DOWN


class TestReportStorage:
    """Tests for ReportStorage."""

    def test_save_json(self, tmp_path) -> None:
        path = ReportStorage().save_json(data=detailed(), filepath=tmp_path / "out" / "stats.json")

        data = json.loads(path.read_text())
        assert data[0]["category"] == "billing"
        assert data[0]["total"] == 2
        assert [week["dates"] for week in data[0]["weeks"]] == [
            "13.01.2025 — 19.01.2025",
            "06.01.2025 — 12.01.2025",
        ]

    def test_save_detailed_csv(self, tmp_path) -> None:
        path = ReportStorage().save_detailed_csv(stats=detailed(), filepath=tmp_path / "stats.csv")

        df = pl.read_csv(path)
        assert df.height == 3
        assert df["sort_order"].to_list() == [1, 2, 2]
        assert df["total"].to_list() == [2, 1, 1]
        assert df["CRITICAL_FACT_ERROR"].to_list() == [1, 1, 0]

    def test_save_detailed_csv_skips_empty(self, tmp_path) -> None:
        path = ReportStorage().save_detailed_csv(stats=[], filepath=tmp_path / "stats.csv")

        assert path is None
        assert not (tmp_path / "stats.csv").exists()
