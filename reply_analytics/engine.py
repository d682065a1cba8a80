"""Analytics engine: thin call sites over the fetcher, taxonomy and aggregators."""

import asyncio
from typing import Any

from loguru import logger

from . import aggregator
from .cache import IncrementalLoader
from .config import EngineConfig
from .constants import (
    PERCENT,
    REQUIREMENT_FLAGS,
    CategoryStatKey,
    FlowAttribution,
    KpiStatKey,
    Procedure,
    ProcedureArg,
    Table,
)
from .correlation import correlate
from .fetcher import BatchFetcher
from .flow import build_flow
from .models import (
    BestCategory,
    CategoryShare,
    ComparisonRecord,
    CorrelationCell,
    FetchResult,
    Filter,
    FlowGraph,
    GroupedStat,
    KpiSummary,
    QualityTrendPoint,
    ResolutionTimeBucket,
    StatusShare,
    SupportKpis,
    SupportThreadRecord,
    VersionShare,
)
from .port import QueryPort
from .taxonomy import ClassificationTaxonomy


def procedure_args(filter: Filter, *, include_date_field: bool = True) -> dict[str, Any]:
    """Arguments of the aggregate procedures for ``filter``.

    Empty sets are sent as null, which the procedures read as "all".
    """
    args: dict[str, Any] = {
        ProcedureArg.FROM_DATE: filter.date_range.start.isoformat(),
        ProcedureArg.TO_DATE: filter.date_range.end.isoformat(),
        ProcedureArg.VERSIONS: sorted(filter.versions) or None,
        ProcedureArg.CATEGORIES: sorted(filter.categories) or None,
        ProcedureArg.AGENTS: sorted(filter.agents) or None,
    }
    if include_date_field:
        args[ProcedureArg.DATE_FIELD] = filter.date_column
    return args


class AnalyticsEngine:
    """Answers aggregate questions over comparison and support-thread records.

    Every method takes a Filter, fetches what it needs through one
    BatchFetcher and hands the rows to a pure aggregation function. The engine
    keeps no state between calls, so one instance can serve concurrent callers.

    Attributes:
        config: Engine configuration.
        port: Query port to the remote store.
        fetcher: Batch fetcher built from ``config``.
        taxonomy: Classification taxonomy used for every count.
    """

    def __init__(
        self,
        *,
        config: EngineConfig,
        port: QueryPort,
        show_progress: bool = False,
        taxonomy: ClassificationTaxonomy | None = None,
    ):
        self.config = config
        self.port = port
        self.fetcher = BatchFetcher.from_config(
            port=port, config=config, show_progress=show_progress
        )
        self.taxonomy = taxonomy if taxonomy is not None else ClassificationTaxonomy()

    # ------------------------------------------------------------------------
    # Raw records
    # ------------------------------------------------------------------------

    async def _fetch(
        self,
        *,
        table: str,
        filter: Filter,
        allow_partial: bool,
        cancel_event: asyncio.Event | None = None,
    ) -> FetchResult:
        result = await self.fetcher.fetch_all(
            table=table, filter=filter, cancel_event=cancel_event
        )
        warning = result.partial_warning
        if warning is not None and not allow_partial:
            raise warning
        return result

    async def fetch_comparisons(
        self,
        filter: Filter,
        *,
        allow_partial: bool = True,
        cancel_event: asyncio.Event | None = None,
    ) -> tuple[list[ComparisonRecord], FetchResult]:
        """Fetch and parse comparison records.

        Args:
            filter: Records to fetch.
            allow_partial: When False, a fetch with failed pages raises its
                PartialFetchWarning instead of returning.
            cancel_event: Stops issuing page waves once set.

        Returns:
            tuple[list[ComparisonRecord], FetchResult]: Parsed records and the
                raw fetch result with its warnings.
        """
        result = await self._fetch(
            table=Table.COMPARISONS,
            filter=filter,
            allow_partial=allow_partial,
            cancel_event=cancel_event,
        )
        return [ComparisonRecord.from_dict(data=row) for row in result.records], result

    async def fetch_threads(
        self,
        filter: Filter,
        *,
        allow_partial: bool = True,
        cancel_event: asyncio.Event | None = None,
    ) -> tuple[list[SupportThreadRecord], FetchResult]:
        """Fetch and parse support threads; see ``fetch_comparisons``."""
        result = await self._fetch(
            table=Table.SUPPORT_THREADS,
            filter=filter,
            allow_partial=allow_partial,
            cancel_event=cancel_event,
        )
        return [SupportThreadRecord.from_dict(data=row) for row in result.records], result

    def incremental_loader(self, *, table: str, filter: Filter) -> IncrementalLoader:
        """New loader with its own cache for paced consumption of ``table``."""
        return IncrementalLoader.from_config(
            port=self.port, table=table, filter=filter, config=self.config
        )

    # ------------------------------------------------------------------------
    # Comparison record aggregates
    # ------------------------------------------------------------------------

    async def detailed_stats(self, filter: Filter) -> list[GroupedStat]:
        """Category x version table with weekly breakdown."""
        records, _ = await self.fetch_comparisons(filter)
        return aggregator.detailed_stats(
            records,
            date_field=filter.date_field,
            tz=self.config.tzinfo,
            taxonomy=self.taxonomy,
        )

    async def kpi_summary(self, filter: Filter, *, pushdown: bool = False) -> KpiSummary:
        """Headline KPIs for ``filter`` against the previous period.

        Args:
            filter: Current period and constraints.
            pushdown: Use the server-side procedures instead of fetching rows.

        Returns:
            KpiSummary: Totals, average quality, changed records and the best
                category, each with a trend.
        """
        previous = filter.previous_period()
        if pushdown:
            return await self._kpi_summary_pushdown(filter, previous)

        (current_records, _), (previous_records, _) = await asyncio.gather(
            self.fetch_comparisons(filter), self.fetch_comparisons(previous)
        )
        current_counts = self.taxonomy.count_all(current_records)
        previous_counts = self.taxonomy.count_all(previous_records)

        return KpiSummary(
            total_records=aggregator.trend(current_counts.total, previous_counts.total),
            average_quality=aggregator.trend(
                current_counts.quality_percentage, previous_counts.quality_percentage
            ),
            records_changed=aggregator.trend(
                sum(record.changed for record in current_records),
                sum(record.changed for record in previous_records),
            ),
            best_category=self._best_category(current_records, previous_records),
        )

    def _best_category(
        self,
        current: list[ComparisonRecord],
        previous: list[ComparisonRecord],
    ) -> BestCategory | None:
        def by_category(records: list[ComparisonRecord]) -> dict[str | None, GroupedStat]:
            return aggregator.group_by(
                records, lambda record: record.category, taxonomy=self.taxonomy
            )

        candidates = [
            (category, stat)
            for category, stat in by_category(current).items()
            if category and stat.evaluable > 0
        ]
        if not candidates:
            return None
        category, stat = max(candidates, key=lambda item: (item[1].quality_percentage, item[0]))

        earlier = by_category(previous).get(category)
        previous_percentage = earlier.quality_percentage if earlier else 0.0
        return BestCategory(
            category=category,
            percentage=stat.quality_percentage,
            previous_percentage=previous_percentage,
            trend=aggregator.compute_trend(stat.quality_percentage, previous_percentage),
        )

    async def _kpi_summary_pushdown(self, current: Filter, previous: Filter) -> KpiSummary:
        (
            current_stats,
            previous_stats,
            current_best,
            previous_best,
        ) = await asyncio.gather(
            self.port.call_procedure(Procedure.KPI_STATS, procedure_args(current)),
            self.port.call_procedure(Procedure.KPI_STATS, procedure_args(previous)),
            self.port.call_procedure(Procedure.BEST_CATEGORY, procedure_args(current)),
            self.port.call_procedure(Procedure.BEST_CATEGORY, procedure_args(previous)),
        )
        now = current_stats[0] if current_stats else {}
        before = previous_stats[0] if previous_stats else {}

        best_category = None
        if current_best:
            category = current_best[0][CategoryStatKey.CATEGORY]
            percentage = float(current_best[0][CategoryStatKey.QUALITY_PERCENTAGE] or 0)
            previous_percentage = next(
                (
                    float(row[CategoryStatKey.QUALITY_PERCENTAGE] or 0)
                    for row in previous_best
                    if row[CategoryStatKey.CATEGORY] == category
                ),
                0.0,
            )
            best_category = BestCategory(
                category=category,
                percentage=percentage,
                previous_percentage=previous_percentage,
                trend=aggregator.compute_trend(percentage, previous_percentage),
            )

        return KpiSummary(
            total_records=aggregator.trend(
                _stat(now, KpiStatKey.TOTAL_RECORDS), _stat(before, KpiStatKey.TOTAL_RECORDS)
            ),
            average_quality=aggregator.trend(_quality_percentage(now), _quality_percentage(before)),
            records_changed=aggregator.trend(
                _stat(now, KpiStatKey.CHANGED_RECORDS), _stat(before, KpiStatKey.CHANGED_RECORDS)
            ),
            best_category=best_category,
        )

    async def category_distribution(
        self, filter: Filter, *, pushdown: bool = False
    ) -> list[CategoryShare]:
        """Volume and unchanged share per category, largest first."""
        if not pushdown:
            records, _ = await self.fetch_comparisons(filter)
            return aggregator.category_distribution(records)

        rows = await self.port.call_procedure(
            Procedure.CATEGORY_DISTRIBUTION, procedure_args(filter, include_date_field=False)
        )
        shares = []
        for row in rows:
            total = int(row.get(CategoryStatKey.TOTAL_RECORDS) or 0)
            unchanged = int(row.get(CategoryStatKey.UNCHANGED_RECORDS) or 0)
            shares.append(
                CategoryShare(
                    category=row[CategoryStatKey.CATEGORY],
                    total_records=total,
                    good_percentage=unchanged / total * PERCENT if total else 0.0,
                )
            )
        shares.sort(key=lambda share: (-share.total_records, share.category))
        return shares

    async def version_comparison(self, filter: Filter) -> list[VersionShare]:
        records, _ = await self.fetch_comparisons(filter)
        return aggregator.version_comparison(records)

    async def quality_trends(self, filter: Filter) -> list[QualityTrendPoint]:
        records, _ = await self.fetch_comparisons(filter)
        return aggregator.quality_trends(
            records,
            date_range=filter.date_range,
            date_field=filter.date_field,
            tz=self.config.tzinfo,
        )

    async def resolution_times(self, filter: Filter) -> list[ResolutionTimeBucket]:
        records, _ = await self.fetch_comparisons(filter)
        return aggregator.resolution_time_by_week(records, tz=self.config.tzinfo)

    # ------------------------------------------------------------------------
    # Support thread aggregates
    # ------------------------------------------------------------------------

    async def correlation_matrix(
        self, filter: Filter, *, flag_names: list[str] | None = None
    ) -> list[CorrelationCell]:
        """Requirement flag co-occurrence; the requirement filter is ignored."""
        threads, _ = await self.fetch_threads(filter.without_requirements())
        return correlate(threads, flag_names or list(REQUIREMENT_FLAGS))

    async def flow_graph(
        self,
        filter: Filter,
        *,
        attribution: FlowAttribution = FlowAttribution.PER_THREAD,
    ) -> FlowGraph:
        threads, _ = await self.fetch_threads(filter)
        return build_flow(threads, attribution=attribution)

    async def support_kpis(self, filter: Filter) -> SupportKpis:
        (current, _), (previous, _) = await asyncio.gather(
            self.fetch_threads(filter), self.fetch_threads(filter.previous_period())
        )
        return aggregator.support_kpis(current, previous)

    async def status_distribution(self, filter: Filter) -> list[StatusShare]:
        threads, _ = await self.fetch_threads(filter)
        return aggregator.status_distribution(threads)


def _stat(row: dict[str, Any], key: str) -> int:
    return int(row.get(key) or 0)


def _quality_percentage(row: dict[str, Any]) -> float:
    evaluable = _stat(row, KpiStatKey.REVIEWED_RECORDS) - _stat(row, KpiStatKey.EXCLUDED_RECORDS)
    if evaluable <= 0:
        return 0.0
    quality = _stat(row, KpiStatKey.QUALITY_RECORDS) / evaluable * PERCENT
    logger.debug(f"Pushed-down quality {quality:.2f}% over {evaluable} evaluable records")
    return quality
