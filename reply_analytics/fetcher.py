"""Batch fetcher: retrieves every row matching a filter from a row-limited store."""

import asyncio
import contextlib
import math
from typing import Any

from loguru import logger
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
)

from .config import EngineConfig
from .constants import (
    BACKEND_MAX_ROWS,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_PAGE_SIZE,
    DEFAULT_WAVE_DELAY_SECONDS,
    ROW_KEYS,
    Column,
    LogMessage,
)
from .errors import FatalQueryError, PageFetchError
from .models import FetchResult, Filter
from .port import QueryPort


class BatchFetcher:
    """Fetches all matching rows in waves of concurrent page requests.

    The fetcher first counts the matching rows, splits the count into pages of
    ``page_size`` and issues at most ``max_concurrency`` page requests at a
    time. Each wave completes before the next one starts, with a short pause in
    between to stay under the store's rate limits.

    Attributes:
        port: Query port the rows are read from.
        page_size: Rows per page request.
        max_concurrency: Page requests per wave.
        wave_delay_seconds: Pause between waves.
        show_progress: Whether to render a rich progress bar.
    """

    def __init__(
        self,
        *,
        port: QueryPort,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        wave_delay_seconds: float = DEFAULT_WAVE_DELAY_SECONDS,
        show_progress: bool = False,
    ):
        _check_page_size(page_size)
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self.port = port
        self.page_size = page_size
        self.max_concurrency = max_concurrency
        self.wave_delay_seconds = wave_delay_seconds
        self.show_progress = show_progress

    @classmethod
    def from_config(
        cls, *, port: QueryPort, config: EngineConfig, show_progress: bool = False
    ) -> "BatchFetcher":
        return cls(
            port=port,
            page_size=config.page_size,
            max_concurrency=config.max_concurrency,
            wave_delay_seconds=config.wave_delay_seconds,
            show_progress=show_progress,
        )

    async def count(self, *, table: str, filter: Filter) -> int:
        """Count matching rows, raising FatalQueryError on failure."""
        try:
            total = await self.port.count(table, filter)
        except Exception as e:
            logger.error(LogMessage.COUNT_FAILED.format(table, e))
            raise FatalQueryError(
                f"Count query failed for {table}: {e}", table=table
            ) from e
        logger.debug(LogMessage.COUNT_RESULT.format(total, table))
        return total

    async def fetch_all(
        self,
        *,
        table: str,
        filter: Filter,
        select_fields: list[str] | None = None,
        page_size: int | None = None,
        max_concurrency: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> FetchResult:
        """Fetch every row of ``table`` matching ``filter``.

        Args:
            table: Table to read.
            filter: Predicate the rows must satisfy.
            select_fields: Columns to return, all columns if None.
            page_size: Overrides the fetcher's page size for this call.
            max_concurrency: Overrides the fetcher's wave width for this call.
            cancel_event: When set, no further waves are started and the rows
                gathered so far are returned with ``cancelled=True``.

        Returns:
            FetchResult: Rows of every successful page plus one warning per
                failed page. Rows are deduplicated by the table's row key and
                never exceed the counted total.

        Raises:
            FatalQueryError: If the count query fails or every page fails.
            ValueError: If ``page_size`` is outside 1..1000.
        """
        size = page_size if page_size is not None else self.page_size
        width = max_concurrency if max_concurrency is not None else self.max_concurrency
        _check_page_size(size)

        total = await self.count(table=table, filter=filter)
        if total == 0:
            logger.info(LogMessage.NOTHING_TO_FETCH.format(table))
            return FetchResult(table=table)

        pages = math.ceil(total / size)
        logger.info(LogMessage.FETCH_PLAN.format(total, table, pages, size, width))

        page_rows: dict[int, list[dict[str, Any]]] = {}
        failures: list[PageFetchError] = []
        attempted = 0
        cancelled = False

        with Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("[green]{task.fields[rows]} rows"),
            disable=not self.show_progress,
        ) as progress:
            task = progress.add_task(f"Fetching {table}...", total=pages, rows=0)

            for wave_start in range(0, pages, width):
                if wave_start > 0 and self.wave_delay_seconds > 0:
                    await self._pause(cancel_event)

                if cancel_event is not None and cancel_event.is_set():
                    logger.info(LogMessage.WAVE_CANCELLED.format(attempted, pages))
                    cancelled = True
                    break

                wave = range(wave_start, min(wave_start + width, pages))
                results = await asyncio.gather(
                    *(
                        self._fetch_page(
                            table=table,
                            filter=filter,
                            select_fields=select_fields,
                            page=page,
                            page_size=size,
                        )
                        for page in wave
                    ),
                    return_exceptions=True,
                )
                attempted += len(wave)

                for page, result in zip(wave, results):
                    if isinstance(result, PageFetchError):
                        failures.append(result)
                    elif isinstance(result, BaseException):
                        raise result
                    else:
                        page_rows[page] = result

                progress.update(
                    task,
                    advance=len(wave),
                    rows=sum(len(rows) for rows in page_rows.values()),
                )

        if failures and len(failures) == attempted:
            logger.error(LogMessage.ALL_PAGES_FAILED.format(attempted, table))
            raise FatalQueryError(
                f"All {attempted} pages failed for {table}",
                table=table,
                failures=failures,
            )

        records = self._merge(
            table=table,
            pages=[page_rows[page] for page in sorted(page_rows)],
            limit=total,
        )

        if failures:
            logger.warning(
                LogMessage.PARTIAL_FETCH.format(len(failures), pages, table, len(records))
            )
        else:
            logger.success(LogMessage.FETCH_COMPLETE.format(len(records), table, attempted))

        return FetchResult(
            table=table,
            records=records,
            warnings=failures,
            expected_count=total,
            pages=pages,
            cancelled=cancelled,
        )

    async def _pause(self, cancel_event: asyncio.Event | None) -> None:
        """Wait out the inter-wave delay, waking early on cancellation."""
        if cancel_event is None:
            await asyncio.sleep(self.wave_delay_seconds)
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(cancel_event.wait(), timeout=self.wave_delay_seconds)

    async def _fetch_page(
        self,
        *,
        table: str,
        filter: Filter,
        select_fields: list[str] | None,
        page: int,
        page_size: int,
    ) -> list[dict[str, Any]]:
        """Fetch one page, wrapping any failure in a PageFetchError."""
        offset = page * page_size
        try:
            rows = await self.port.fetch_page(table, filter, select_fields, offset, page_size)
        except Exception as e:
            logger.warning(LogMessage.PAGE_FAILED.format(page, table, offset, page_size, e))
            raise PageFetchError(
                table=table, page=page, offset=offset, limit=page_size, cause=e
            ) from e
        logger.debug(LogMessage.PAGE_FETCHED.format(page, table, len(rows)))
        return rows

    def _merge(
        self, *, table: str, pages: list[list[dict[str, Any]]], limit: int
    ) -> list[dict[str, Any]]:
        """Concatenate pages, dropping rows whose key was already seen."""
        key = ROW_KEYS.get(table, Column.ID)
        seen: set[Any] = set()
        merged: list[dict[str, Any]] = []
        duplicates = 0

        for rows in pages:
            for row in rows:
                row_id = row.get(key)
                if row_id is not None:
                    if row_id in seen:
                        duplicates += 1
                        continue
                    seen.add(row_id)
                merged.append(row)

        if duplicates:
            logger.warning(LogMessage.DUPLICATES_DROPPED.format(duplicates, table))

        # Rows inserted between the count and the page reads can push pages past the count
        if len(merged) > limit:
            logger.warning(LogMessage.ROWS_TRUNCATED.format(len(merged) - limit, limit, table))
            merged = merged[:limit]

        return merged


def _check_page_size(page_size: int) -> None:
    if not 1 <= page_size <= BACKEND_MAX_ROWS:
        raise ValueError(
            f"page_size must be between 1 and {BACKEND_MAX_ROWS}, got {page_size}"
        )
