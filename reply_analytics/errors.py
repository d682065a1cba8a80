"""Error types raised and reported by the aggregation engine."""

from dataclasses import dataclass


class AnalyticsError(Exception):
    """Base class for engine errors."""


class DateRangeInvalid(AnalyticsError, ValueError):
    """Raised before any query when a filter's date range is unusable.

    Attributes:
        start: The offending range start.
        end: The offending range end.
    """

    def __init__(self, message: str, *, start: object = None, end: object = None):
        super().__init__(message)
        self.start = start
        self.end = end


class PageFetchError(AnalyticsError):
    """A single page request failed.

    Wraps the lower-level I/O error with enough context to reconstruct which
    range of which table was lost.

    Attributes:
        table: Table the page was read from.
        page: Zero-based page index.
        offset: Row offset of the page.
        limit: Requested page size.
        cause: The original exception.
    """

    def __init__(
        self,
        *,
        table: str,
        page: int,
        offset: int,
        limit: int,
        cause: BaseException,
    ):
        super().__init__(
            f"{table}: page {page} (rows {offset}-{offset + limit - 1}) failed: {cause}"
        )
        self.table = table
        self.page = page
        self.offset = offset
        self.limit = limit
        self.cause = cause

    @property
    def row_range(self) -> tuple[int, int]:
        """Inclusive row range covered by the failed page."""
        return (self.offset, self.offset + self.limit - 1)


class FatalQueryError(AnalyticsError):
    """The count query failed or every page failed; no partial result exists.

    Attributes:
        table: Table being queried.
        failures: Page failures when every page failed, empty for count failures.
    """

    def __init__(
        self,
        message: str,
        *,
        table: str,
        failures: list[PageFetchError] | None = None,
    ):
        super().__init__(message)
        self.table = table
        self.failures = failures or []


class PartialFetchWarning(UserWarning):
    """Some, but not all, pages failed.

    Attributes:
        table: Table being queried.
        failures: One PageFetchError per lost page.
    """

    def __init__(self, *, table: str, failures: list[PageFetchError]):
        super().__init__(
            f"{len(failures)} page(s) of {table} failed: "
            + ", ".join(f"{start}-{end}" for start, end in self._ranges(failures))
        )
        self.table = table
        self.failures = failures

    @staticmethod
    def _ranges(failures: list[PageFetchError]) -> list[tuple[int, int]]:
        return [failure.row_range for failure in failures]

    @property
    def failed_ranges(self) -> list[tuple[int, int]]:
        """Inclusive row ranges that were not retrieved."""
        return self._ranges(self.failures)


@dataclass(frozen=True)
class ClassificationGap:
    """A label outside both vocabularies, counted as unclassified.

    Attributes:
        label: The unknown label string.
        occurrences: How many records carried it.
    """

    label: str
    occurrences: int
