"""CLI interface for reply analytics."""

import asyncio
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable

import typer
from loguru import logger

from .config import EngineConfig
from .constants import (
    DEFAULT_CORRELATION_OUTPUT,
    DEFAULT_DETAILED_OUTPUT,
    DEFAULT_FLOW_OUTPUT,
    DEFAULT_KPI_OUTPUT,
    EXIT_CODE_ERROR,
    CliHelp,
    DateField,
    FlowAttribution,
    LogMessage,
)
from .engine import AnalyticsEngine
from .models import DateRange, Filter, default_date_range
from .port import QueryPort
from .postgrest import PostgrestQueryPort
from .storage import ReportStorage

app = typer.Typer(help=CliHelp.APP)


def configure_logging(*, verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def build_filter(
    *,
    config: EngineConfig,
    date_from: datetime | None,
    date_to: datetime | None,
    date_field: DateField,
    versions: list[str] | None = None,
    categories: list[str] | None = None,
    agents: list[str] | None = None,
    statuses: list[str] | None = None,
) -> Filter:
    """Build a Filter from CLI options.

    Naive dates are read in the configured timezone. A missing bound falls
    back to the default range (the last 30 days up to the end of today).

    Raises:
        DateRangeInvalid: If the resulting start is after the end.
    """
    tz = config.tzinfo
    default = default_date_range(now=datetime.now(tz))

    def localize(value: datetime | None, fallback: datetime) -> datetime:
        if value is None:
            return fallback
        return value if value.tzinfo is not None else value.replace(tzinfo=tz)

    return Filter(
        date_range=DateRange(
            start=localize(date_from, default.start),
            end=localize(date_to, default.end),
        ),
        versions=frozenset(versions or ()),
        categories=frozenset(categories or ()),
        agents=frozenset(agents or ()),
        statuses=frozenset(statuses or ()),
        date_field=date_field,
    )


@asynccontextmanager
async def open_port(config: EngineConfig) -> AsyncIterator[QueryPort]:
    async with PostgrestQueryPort(config=config) as port:
        yield port


def _run(
    action: Callable[[AnalyticsEngine, Filter], Awaitable[None]],
    *,
    overrides: dict,
    filter_options: dict,
) -> None:
    """Run one engine action, turning any failure into exit code 1."""

    async def runner(config: EngineConfig) -> None:
        filter = build_filter(config=config, **filter_options)
        async with open_port(config) as port:
            engine = AnalyticsEngine(config=config, port=port, show_progress=True)
            await action(engine, filter)

    try:
        asyncio.run(runner(EngineConfig.from_env(**overrides)))
    except Exception as e:
        logger.exception(LogMessage.ERROR_OCCURRED.format(e))
        raise typer.Exit(code=EXIT_CODE_ERROR)


DateFromOption = typer.Option(None, "--from", help=CliHelp.DATE_FROM)
DateToOption = typer.Option(None, "--to", help=CliHelp.DATE_TO)
DateFieldOption = typer.Option(DateField.CREATED, "--date-field", help=CliHelp.DATE_FIELD)
VersionsOption = typer.Option(None, "--version", help=CliHelp.VERSIONS)
CategoriesOption = typer.Option(None, "--category", help=CliHelp.CATEGORIES)
AgentsOption = typer.Option(None, "--agent", help=CliHelp.AGENTS)
StatusesOption = typer.Option(None, "--status", help=CliHelp.STATUSES)
PageSizeOption = typer.Option(None, "--page-size", help=CliHelp.PAGE_SIZE)
ConcurrencyOption = typer.Option(None, "--concurrency", help=CliHelp.CONCURRENCY)
VerboseOption = typer.Option(False, "--verbose", help=CliHelp.VERBOSE)


@app.command("detailed-stats")
def detailed_stats(
    date_from: datetime = DateFromOption,
    date_to: datetime = DateToOption,
    date_field: DateField = DateFieldOption,
    versions: list[str] = VersionsOption,
    categories: list[str] = CategoriesOption,
    agents: list[str] = AgentsOption,
    page_size: int = PageSizeOption,
    concurrency: int = ConcurrencyOption,
    output: Path = typer.Option(DEFAULT_DETAILED_OUTPUT, "--output", "-o", help=CliHelp.OUTPUT),
    csv_output: Path = typer.Option(None, "--csv", help=CliHelp.CSV_OUTPUT),
    verbose: bool = VerboseOption,
) -> None:
    """Category x version quality table with a weekly breakdown."""
    configure_logging(verbose=verbose)
    storage = ReportStorage()

    async def action(engine: AnalyticsEngine, filter: Filter) -> None:
        stats = await engine.detailed_stats(filter)
        storage.save_json(data=stats, filepath=output)
        if csv_output is not None:
            storage.save_detailed_csv(stats=stats, filepath=csv_output)

    _run(
        action,
        overrides={"page_size": page_size, "max_concurrency": concurrency},
        filter_options={
            "date_from": date_from,
            "date_to": date_to,
            "date_field": date_field,
            "versions": versions,
            "categories": categories,
            "agents": agents,
        },
    )


@app.command()
def kpis(
    date_from: datetime = DateFromOption,
    date_to: datetime = DateToOption,
    date_field: DateField = DateFieldOption,
    versions: list[str] = VersionsOption,
    categories: list[str] = CategoriesOption,
    agents: list[str] = AgentsOption,
    page_size: int = PageSizeOption,
    concurrency: int = ConcurrencyOption,
    output: Path = typer.Option(DEFAULT_KPI_OUTPUT, "--output", "-o", help=CliHelp.OUTPUT),
    pushdown: bool = typer.Option(False, "--pushdown", help=CliHelp.PUSHDOWN),
    verbose: bool = VerboseOption,
) -> None:
    """Headline KPIs and distributions against the previous period."""
    configure_logging(verbose=verbose)

    async def action(engine: AnalyticsEngine, filter: Filter) -> None:
        report = {
            "summary": await engine.kpi_summary(filter, pushdown=pushdown),
            "category_distribution": await engine.category_distribution(
                filter, pushdown=pushdown
            ),
            "version_comparison": await engine.version_comparison(filter),
            "quality_trends": await engine.quality_trends(filter),
            "resolution_times": await engine.resolution_times(filter),
        }
        ReportStorage().save_json(data=report, filepath=output)

    _run(
        action,
        overrides={"page_size": page_size, "max_concurrency": concurrency},
        filter_options={
            "date_from": date_from,
            "date_to": date_to,
            "date_field": date_field,
            "versions": versions,
            "categories": categories,
            "agents": agents,
        },
    )


@app.command()
def correlation(
    date_from: datetime = DateFromOption,
    date_to: datetime = DateToOption,
    versions: list[str] = VersionsOption,
    statuses: list[str] = StatusesOption,
    page_size: int = PageSizeOption,
    concurrency: int = ConcurrencyOption,
    output: Path = typer.Option(
        DEFAULT_CORRELATION_OUTPUT, "--output", "-o", help=CliHelp.OUTPUT
    ),
    verbose: bool = VerboseOption,
) -> None:
    """Requirement flag co-occurrence matrix for support threads."""
    configure_logging(verbose=verbose)

    async def action(engine: AnalyticsEngine, filter: Filter) -> None:
        cells = await engine.correlation_matrix(filter)
        ReportStorage().save_json(data=cells, filepath=output)

    _run(
        action,
        overrides={"page_size": page_size, "max_concurrency": concurrency},
        filter_options={
            "date_from": date_from,
            "date_to": date_to,
            "date_field": DateField.CREATED,
            "versions": versions,
            "statuses": statuses,
        },
    )


@app.command()
def flow(
    date_from: datetime = DateFromOption,
    date_to: datetime = DateToOption,
    versions: list[str] = VersionsOption,
    statuses: list[str] = StatusesOption,
    page_size: int = PageSizeOption,
    concurrency: int = ConcurrencyOption,
    attribution: FlowAttribution = typer.Option(
        FlowAttribution.PER_THREAD, "--attribution", help=CliHelp.ATTRIBUTION
    ),
    output: Path = typer.Option(DEFAULT_FLOW_OUTPUT, "--output", "-o", help=CliHelp.OUTPUT),
    verbose: bool = VerboseOption,
) -> None:
    """AI draft flow graph plus support-thread KPIs and status shares."""
    configure_logging(verbose=verbose)

    async def action(engine: AnalyticsEngine, filter: Filter) -> None:
        report = {
            "flow": await engine.flow_graph(filter, attribution=attribution),
            "support_kpis": await engine.support_kpis(filter),
            "status_distribution": await engine.status_distribution(filter),
        }
        ReportStorage().save_json(data=report, filepath=output)

    _run(
        action,
        overrides={"page_size": page_size, "max_concurrency": concurrency},
        filter_options={
            "date_from": date_from,
            "date_to": date_to,
            "date_field": DateField.CREATED,
            "versions": versions,
            "statuses": statuses,
        },
    )
