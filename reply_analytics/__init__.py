"""Batched aggregation engine for AI reply quality analytics."""

from .cache import IncrementalCache, IncrementalLoader
from .config import EngineConfig
from .engine import AnalyticsEngine
from .errors import (
    AnalyticsError,
    ClassificationGap,
    DateRangeInvalid,
    FatalQueryError,
    PageFetchError,
    PartialFetchWarning,
)
from .fetcher import BatchFetcher
from .models import (
    ClassificationCounts,
    ComparisonRecord,
    DateRange,
    FetchResult,
    Filter,
    FlowGraph,
    GroupedStat,
    SupportThreadRecord,
    TrendMetric,
)
from .port import InMemoryQueryPort, QueryPort
from .postgrest import PostgrestQueryPort
from .storage import ReportStorage
from .taxonomy import ClassificationTaxonomy

__all__ = [
    "AnalyticsEngine",
    "AnalyticsError",
    "BatchFetcher",
    "ClassificationCounts",
    "ClassificationGap",
    "ClassificationTaxonomy",
    "ComparisonRecord",
    "DateRange",
    "DateRangeInvalid",
    "EngineConfig",
    "FatalQueryError",
    "FetchResult",
    "Filter",
    "FlowGraph",
    "GroupedStat",
    "IncrementalCache",
    "IncrementalLoader",
    "InMemoryQueryPort",
    "PageFetchError",
    "PartialFetchWarning",
    "PostgrestQueryPort",
    "QueryPort",
    "ReportStorage",
    "SupportThreadRecord",
    "TrendMetric",
]
