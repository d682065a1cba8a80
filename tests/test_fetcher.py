"""Tests for the batch fetcher.

Tests cover:
    - Page planning and wave scheduling against the row count
    - Partial failures collected as warnings
    - Fatal count and all-pages failures
    - Cancellation between waves
    - Deduplication and truncation against the count
"""

from __future__ import annotations

import asyncio

import pytest

from reply_analytics.config import EngineConfig
from reply_analytics.constants import Table
from reply_analytics.errors import FatalQueryError, PageFetchError, PartialFetchWarning
from reply_analytics.fetcher import BatchFetcher
from reply_analytics.models import Filter


@pytest.fixture
def rows(make_comparison_row):
    return [make_comparison_row(index) for index in range(1300)]


@pytest.fixture
def port(make_port, rows):
    return make_port(tables={Table.COMPARISONS: rows})


@pytest.fixture
def fetcher(port) -> BatchFetcher:
    return BatchFetcher(port=port, page_size=500, max_concurrency=3, wave_delay_seconds=0)


# =============================================================================
# Planning and scheduling
# =============================================================================


class TestFetchAll:
    """Tests for BatchFetcher.fetch_all on a healthy store."""

    @pytest.mark.asyncio
    async def test_fetches_every_row_in_one_wave(self, fetcher, port, window) -> None:
        result = await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)

        assert len(port.calls_to("count")) == 1
        assert [call[2] for call in port.calls_to("fetch_page")] == [0, 500, 1000]
        assert len(result.records) == 1300
        assert result.warnings == []
        assert result.expected_count == 1300
        assert result.pages == 3
        assert not result.is_partial

    @pytest.mark.asyncio
    async def test_result_unpacks_as_records_and_warnings(self, fetcher, window) -> None:
        records, warnings = await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)

        assert len(records) == 1300
        assert warnings == []

    @pytest.mark.asyncio
    async def test_empty_count_skips_page_fetches(self, make_port, window) -> None:
        port = make_port(tables={Table.COMPARISONS: []})
        fetcher = BatchFetcher(port=port, wave_delay_seconds=0)

        result = await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)

        assert result.records == []
        assert result.warnings == []
        assert port.calls_to("fetch_page") == []

    @pytest.mark.asyncio
    async def test_waves_are_bounded_by_concurrency(self, make_port, rows, window) -> None:
        port = make_port(tables={Table.COMPARISONS: rows})
        in_flight = 0
        peak = 0
        original = port.fetch_page

        async def tracking_fetch_page(*args):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            try:
                return await original(*args)
            finally:
                in_flight -= 1

        port.fetch_page = tracking_fetch_page
        fetcher = BatchFetcher(port=port, page_size=100, max_concurrency=3, wave_delay_seconds=0)

        result = await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)

        assert len(result.records) == 1300
        assert result.pages == 13
        assert peak == 3

    @pytest.mark.asyncio
    async def test_delay_between_waves_only(self, port, window, monkeypatch) -> None:
        delays: list[float] = []
        real_sleep = asyncio.sleep

        async def fake_sleep(seconds, *args, **kwargs):
            delays.append(seconds)
            await real_sleep(0)

        monkeypatch.setattr("reply_analytics.fetcher.asyncio.sleep", fake_sleep)
        fetcher = BatchFetcher(port=port, page_size=250, max_concurrency=2, wave_delay_seconds=0.05)

        await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)

        # 6 pages in 3 waves -> 2 pauses
        assert delays == [0.05, 0.05]

    @pytest.mark.asyncio
    async def test_call_overrides_page_size(self, fetcher, port, window) -> None:
        result = await fetcher.fetch_all(table=Table.COMPARISONS, filter=window, page_size=1000)

        assert result.pages == 2
        assert [call[2] for call in port.calls_to("fetch_page")] == [0, 1000]

    @pytest.mark.asyncio
    async def test_select_fields_are_forwarded(self, fetcher, window) -> None:
        result = await fetcher.fetch_all(
            table=Table.COMPARISONS, filter=window, select_fields=["id", "changed"]
        )

        assert set(result.records[0]) == {"id", "changed"}

    @pytest.mark.asyncio
    async def test_repeated_fetches_return_equal_lengths(self, fetcher, window) -> None:
        first = await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)
        second = await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)

        assert len(first.records) == len(second.records) == 1300

    @pytest.mark.parametrize("page_size", [0, -1, 1001])
    def test_rejects_page_size_outside_backend_limit(self, port, page_size) -> None:
        with pytest.raises(ValueError):
            BatchFetcher(port=port, page_size=page_size)

    def test_from_config(self, port) -> None:
        config = EngineConfig(page_size=250, max_concurrency=5, wave_delay_seconds=0.1)

        fetcher = BatchFetcher.from_config(port=port, config=config)

        assert fetcher.page_size == 250
        assert fetcher.max_concurrency == 5
        assert fetcher.wave_delay_seconds == 0.1


# =============================================================================
# Failures
# =============================================================================


class TestFetchFailures:
    """Tests for partial and fatal failures."""

    @pytest.mark.asyncio
    async def test_failed_page_becomes_warning(self, fetcher, port, window) -> None:
        port.fail_offsets = {500}

        result = await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)

        assert len(result.records) == 800
        assert len(result.warnings) == 1
        warning = result.warnings[0]
        assert isinstance(warning, PageFetchError)
        assert warning.table == Table.COMPARISONS
        assert warning.page == 1
        assert warning.offset == 500
        assert warning.limit == 500
        assert warning.row_range == (500, 999)
        assert isinstance(warning.cause, ConnectionError)
        assert result.is_partial

    @pytest.mark.asyncio
    async def test_failed_page_does_not_stop_later_waves(self, port, window) -> None:
        port.fail_offsets = {0}
        fetcher = BatchFetcher(port=port, page_size=100, max_concurrency=2, wave_delay_seconds=0)

        result = await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)

        assert len(port.calls_to("fetch_page")) == 13
        assert len(result.records) == 1200

    @pytest.mark.asyncio
    async def test_partial_warning_lists_failed_ranges(self, fetcher, port, window) -> None:
        port.fail_offsets = {0, 1000}

        result = await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)
        warning = result.partial_warning

        assert isinstance(warning, PartialFetchWarning)
        assert warning.failed_ranges == [(0, 499), (1000, 1499)]

    @pytest.mark.asyncio
    async def test_no_partial_warning_when_complete(self, fetcher, window) -> None:
        result = await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)

        assert result.partial_warning is None

    @pytest.mark.asyncio
    async def test_all_pages_failed_is_fatal(self, fetcher, port, window) -> None:
        port.fail_offsets = {0, 500, 1000}

        with pytest.raises(FatalQueryError) as excinfo:
            await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)

        assert excinfo.value.table == Table.COMPARISONS
        assert [failure.offset for failure in excinfo.value.failures] == [0, 500, 1000]

    @pytest.mark.asyncio
    async def test_count_failure_is_fatal(self, fetcher, port, window) -> None:
        port.fail_count = True

        with pytest.raises(FatalQueryError) as excinfo:
            await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)

        assert isinstance(excinfo.value.__cause__, ConnectionError)
        assert port.calls_to("fetch_page") == []


# =============================================================================
# Cancellation and consistency
# =============================================================================


class TestCancellationAndConsistency:
    """Tests for cancellation, deduplication and count races."""

    @pytest.mark.asyncio
    async def test_cancellation_stops_new_waves(self, port, window) -> None:
        cancel = asyncio.Event()
        fetcher = BatchFetcher(port=port, page_size=100, max_concurrency=2, wave_delay_seconds=0)
        port.on_page = lambda offset: cancel.set() if offset == 300 else None

        result = await fetcher.fetch_all(
            table=Table.COMPARISONS, filter=window, cancel_event=cancel
        )

        # The second wave (offsets 200 and 300) finishes, no third wave starts
        assert [call[2] for call in port.calls_to("fetch_page")] == [0, 100, 200, 300]
        assert len(result.records) == 400
        assert result.cancelled
        assert result.is_partial
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_cancellation_during_pause_stops_next_wave(self, port, window) -> None:
        cancel = asyncio.Event()
        fetcher = BatchFetcher(port=port, page_size=100, max_concurrency=2, wave_delay_seconds=5)
        loop = asyncio.get_running_loop()
        # Fires once the first wave is done and the fetcher is pausing
        port.on_page = lambda offset: loop.call_later(0.05, cancel.set) if offset == 100 else None

        started = loop.time()
        result = await fetcher.fetch_all(
            table=Table.COMPARISONS, filter=window, cancel_event=cancel
        )

        assert [call[2] for call in port.calls_to("fetch_page")] == [0, 100]
        assert len(result.records) == 200
        assert result.cancelled
        assert loop.time() - started < 2

    @pytest.mark.asyncio
    async def test_cancelled_before_start_returns_nothing(self, fetcher, port, window) -> None:
        cancel = asyncio.Event()
        cancel.set()

        result = await fetcher.fetch_all(
            table=Table.COMPARISONS, filter=window, cancel_event=cancel
        )

        assert result.records == []
        assert result.cancelled
        assert port.calls_to("fetch_page") == []

    @pytest.mark.asyncio
    async def test_rows_never_exceed_count(self, fetcher, port, window) -> None:
        # Rows arriving after the count land on the last page
        port.count_bias = -50

        result = await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)

        assert result.expected_count == 1250
        assert len(result.records) == 1250

    @pytest.mark.asyncio
    async def test_overlapping_pages_are_deduplicated(self, make_port, make_comparison_row, window) -> None:
        rows = [make_comparison_row(index) for index in range(10)]
        port = make_port(tables={Table.COMPARISONS: rows})
        original = port.fetch_page

        async def shifted_fetch_page(table, filter, select_fields, offset, limit):
            # A row inserted mid-fetch shifts the second page back by one row
            return await original(table, filter, select_fields, max(offset - 1, 0), limit)

        port.fetch_page = shifted_fetch_page
        fetcher = BatchFetcher(port=port, page_size=5, max_concurrency=1, wave_delay_seconds=0)

        result = await fetcher.fetch_all(table=Table.COMPARISONS, filter=window)

        ids = [row["id"] for row in result.records]
        assert len(ids) == len(set(ids))
        assert len(ids) <= 10

    @pytest.mark.asyncio
    async def test_filter_is_applied_by_the_port(self, make_port, make_comparison_row, window) -> None:
        rows = [make_comparison_row(index, prompt_version=f"v{index % 2}") for index in range(20)]
        port = make_port(tables={Table.COMPARISONS: rows})
        fetcher = BatchFetcher(port=port, page_size=5, wave_delay_seconds=0)

        only_v1 = Filter.create(
            start=window.date_range.start, end=window.date_range.end, versions=["v1"]
        )

        result = await fetcher.fetch_all(table=Table.COMPARISONS, filter=only_v1)

        assert len(result.records) == 10
        assert {row["prompt_version"] for row in result.records} == {"v1"}
