"""Data models for reply analytics."""

import hashlib
import json
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable

from .constants import (
    DEFAULT_RANGE_DAYS,
    PERCENT,
    REQUIREMENT_FLAGS,
    WEEK_LABEL_DATE_FORMAT,
    WEEK_LABEL_SEPARATOR,
    Column,
    DateField,
    FlowAttribution,
    TrendDirection,
)
from .errors import ClassificationGap, DateRangeInvalid, PageFetchError, PartialFetchWarning


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a timestamp from the store into a datetime.

    Accepts datetimes, ISO strings (with a trailing ``Z``) and milliseconds
    since the epoch. Values without an offset are taken as UTC, so every
    parsed timestamp is timezone-aware.

    Args:
        value: Raw value from a row.

    Returns:
        datetime | None: Parsed timestamp, or None if missing or unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_epoch_ms(value)

    try:
        return _as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return _from_epoch_ms(value)


def _from_epoch_ms(value: Any) -> datetime | None:
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (ValueError, TypeError, OverflowError, OSError):
        return None


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def _frozen(values: Iterable[str] | None) -> frozenset[str]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        return frozenset({values})
    return frozenset(values)


@dataclass(frozen=True)
class DateRange:
    """Half-open date range ``[start, end)``.

    Attributes:
        start: Inclusive lower bound.
        end: Exclusive upper bound.
    """

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if not isinstance(self.start, datetime) or not isinstance(self.end, datetime):
            raise DateRangeInvalid(
                "Date range bounds must be datetimes", start=self.start, end=self.end
            )
        try:
            reversed_bounds = self.start > self.end
        except TypeError as e:
            raise DateRangeInvalid(
                "Date range mixes timezone-aware and naive bounds",
                start=self.start,
                end=self.end,
            ) from e
        if reversed_bounds:
            raise DateRangeInvalid(
                f"Date range start {self.start.isoformat()} is after end {self.end.isoformat()}",
                start=self.start,
                end=self.end,
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def contains(self, moment: datetime) -> bool:
        if self.start.tzinfo is None and moment.tzinfo is not None:
            # Naive bounds are read as UTC
            moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
        return self.start <= moment < self.end

    def previous(self) -> "DateRange":
        """Immediately preceding range of identical duration.

        The previous range ends 1 ms before this range starts.
        """
        previous_end = self.start - timedelta(milliseconds=1)
        return DateRange(start=previous_end - self.duration, end=previous_end)


@dataclass(frozen=True)
class Filter:
    """Query filter shared by the fetcher, the port and the cache.

    Empty sets mean "no constraint".

    Attributes:
        date_range: Range applied to ``date_field``.
        versions: Allowed prompt versions.
        categories: Allowed categories.
        agents: Allowed agent emails.
        statuses: Allowed statuses.
        requirement_flags: Flags that must all be true.
        date_field: Which timestamp the range applies to.
    """

    date_range: DateRange
    versions: frozenset[str] = frozenset()
    categories: frozenset[str] = frozenset()
    agents: frozenset[str] = frozenset()
    statuses: frozenset[str] = frozenset()
    requirement_flags: frozenset[str] = frozenset()
    date_field: DateField = DateField.CREATED

    def __post_init__(self) -> None:
        for name in ("versions", "categories", "agents", "statuses", "requirement_flags"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))
        object.__setattr__(self, "date_field", DateField(self.date_field))

        unknown_flags = self.requirement_flags - set(REQUIREMENT_FLAGS)
        if unknown_flags:
            raise ValueError(f"Unknown requirement flags: {sorted(unknown_flags)}")

    @classmethod
    def create(
        cls,
        *,
        start: datetime,
        end: datetime,
        versions: Iterable[str] = (),
        categories: Iterable[str] = (),
        agents: Iterable[str] = (),
        statuses: Iterable[str] = (),
        requirement_flags: Iterable[str] = (),
        date_field: DateField | str = DateField.CREATED,
    ) -> "Filter":
        """Build a filter from plain arguments, validating the date range first."""
        return cls(
            date_range=DateRange(start=start, end=end),
            versions=frozenset(versions),
            categories=frozenset(categories),
            agents=frozenset(agents),
            statuses=frozenset(statuses),
            requirement_flags=frozenset(requirement_flags),
            date_field=DateField(date_field),
        )

    @property
    def date_column(self) -> str:
        return self.date_field.column

    def set_constraints(self) -> dict[str, frozenset[str]]:
        """Non-empty set-membership constraints keyed by column."""
        constraints = {
            Column.VERSION: self.versions,
            Column.CATEGORY: self.categories,
            Column.AGENT: self.agents,
            Column.STATUS: self.statuses,
        }
        return {column: values for column, values in constraints.items() if values}

    def with_range(self, date_range: DateRange) -> "Filter":
        return replace(self, date_range=date_range)

    def previous_period(self) -> "Filter":
        return self.with_range(self.date_range.previous())

    def without_requirements(self) -> "Filter":
        return replace(self, requirement_flags=frozenset())

    def with_categories(self, categories: Iterable[str]) -> "Filter":
        return replace(self, categories=frozenset(categories))

    def fingerprint(self) -> str:
        """Stable hash of the filter, insensitive to set ordering."""
        payload = {
            "start": self.date_range.start.isoformat(),
            "end": self.date_range.end.isoformat(),
            "versions": sorted(self.versions),
            "categories": sorted(self.categories),
            "agents": sorted(self.agents),
            "statuses": sorted(self.statuses),
            "requirement_flags": sorted(self.requirement_flags),
            "date_field": str(self.date_field),
        }
        encoded = json.dumps(payload, sort_keys=True).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()

    def matches(self, row: dict[str, Any]) -> bool:
        """Evaluate the filter predicate against a raw row."""
        moment = parse_timestamp(row.get(self.date_column))
        if moment is None or not self.date_range.contains(moment):
            return False
        for column, values in self.set_constraints().items():
            if row.get(column) not in values:
                return False
        return all(row.get(flag) is True for flag in self.requirement_flags)


def default_date_range(*, days: int = DEFAULT_RANGE_DAYS, now: datetime | None = None) -> DateRange:
    """Safe default range: midnight ``days`` ago up to the end of today."""
    now = now or datetime.now().astimezone()
    start = (now - timedelta(days=days)).replace(hour=0, minute=0, second=0, microsecond=0)
    end = now.replace(hour=23, minute=59, second=59, microsecond=999000)
    return DateRange(start=start, end=end)


def clamp_date_range(
    date_range: DateRange | None,
    *,
    days: int = DEFAULT_RANGE_DAYS,
    now: datetime | None = None,
) -> DateRange:
    """Repair a persisted range for reuse.

    Missing ranges and ranges starting in the future fall back to the default;
    the upper bound is moved to the end of today so stale ranges pick up new
    records.
    """
    now = now or datetime.now().astimezone()
    if date_range is None or date_range.start > now:
        return default_date_range(days=days, now=now)
    end_of_today = now.replace(hour=23, minute=59, second=59, microsecond=999000)
    return DateRange(start=date_range.start, end=end_of_today)


@dataclass
class ComparisonRecord:
    """One AI-generated reply compared with its human-edited counterpart.

    Attributes:
        id: Row identifier.
        created_at: When the AI reply was created.
        human_reply_date: When the human reply was sent.
        category: Request category (``request_subtype``).
        subcategory: Request subcategory.
        version: Prompt version that produced the AI reply.
        agent: Email of the human agent.
        changed: Whether the human edited the AI output.
        classification: Review label, None when unreviewed.
        reviewer: Who reviewed the record.
        thread_id: Linked support thread.
        status: Comparison status.
        ai_reply: AI reply text (not processed).
        human_reply: Human reply text (not processed).
    """

    id: int | str | None
    created_at: datetime | None = None
    human_reply_date: datetime | None = None
    category: str | None = None
    subcategory: str | None = None
    version: str | None = None
    agent: str | None = None
    changed: bool = False
    classification: str | None = None
    reviewer: str | None = None
    thread_id: str | None = None
    status: str | None = None
    ai_reply: str | None = None
    human_reply: str | None = None

    @classmethod
    def from_dict(cls, *, data: dict[str, Any]) -> "ComparisonRecord":
        """Create a ComparisonRecord from a store row.

        Args:
            data: Row as returned by the query port.

        Returns:
            ComparisonRecord: Parsed record; missing columns become None.
        """
        return cls(
            id=data.get(Column.ID),
            created_at=parse_timestamp(data.get(Column.CREATED_AT)),
            human_reply_date=parse_timestamp(data.get(Column.HUMAN_REPLY_DATE)),
            category=data.get(Column.CATEGORY),
            subcategory=data.get(Column.SUBCATEGORY),
            version=data.get(Column.VERSION),
            agent=data.get(Column.AGENT),
            changed=bool(data.get(Column.CHANGED)),
            classification=data.get(Column.CLASSIFICATION),
            reviewer=data.get(Column.REVIEWER),
            thread_id=data.get(Column.THREAD_ID),
            status=data.get(Column.STATUS),
            ai_reply=data.get(Column.AI_REPLY),
            human_reply=data.get(Column.HUMAN_REPLY),
        )

    def timestamp(self, date_field: DateField = DateField.CREATED) -> datetime | None:
        if date_field is DateField.HUMAN_REPLY:
            return self.human_reply_date
        return self.created_at

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SupportThreadRecord:
    """A customer support thread with its requirement flags.

    Attributes:
        thread_id: Thread identifier.
        created_at: When the thread was created.
        status: Thread status.
        request_type: Request type.
        category: Request category.
        version: Prompt version of the AI draft.
        ai_draft_reply: AI draft text, None when no draft was produced.
        changed: Whether a human changed the AI output, None if unknown.
        flags: Requirement flag values by flag name.
    """

    thread_id: str | None
    created_at: datetime | None = None
    status: str | None = None
    request_type: str | None = None
    category: str | None = None
    version: str | None = None
    ai_draft_reply: str | None = None
    changed: bool | None = None
    flags: dict[str, bool] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, *, data: dict[str, Any]) -> "SupportThreadRecord":
        """Create a SupportThreadRecord from a store row.

        Args:
            data: Row as returned by the query port.

        Returns:
            SupportThreadRecord: Parsed thread; absent flags read as False.
        """
        changed = data.get(Column.CHANGED)
        return cls(
            thread_id=data.get(Column.THREAD_ID),
            created_at=parse_timestamp(data.get(Column.CREATED_AT)),
            status=data.get(Column.STATUS),
            request_type=data.get(Column.REQUEST_TYPE),
            category=data.get(Column.CATEGORY),
            version=data.get(Column.VERSION),
            ai_draft_reply=data.get(Column.AI_DRAFT),
            changed=None if changed is None else bool(changed),
            flags={flag: data.get(flag) is True for flag in REQUIREMENT_FLAGS},
        )

    @property
    def has_ai_draft(self) -> bool:
        return bool(self.ai_draft_reply)

    def flag(self, name: str) -> bool:
        return self.flags.get(name, False)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ClassificationCounts:
    """Classification counters for a set of comparison records.

    Attributes:
        total: Number of records counted.
        label_counts: Raw count per concrete label of both vocabularies.
        unified: Per new label, its own count plus the legacy label mapped to it.
        combined_legacy: Per legacy label, its own count plus every new label
            that maps back into it.
        quality: Records in the QUALITY partition.
        error: Records in the ERROR partition.
        excluded: Records in the EXCLUDED partition.
        unclassified: Records carrying a label outside both vocabularies.
        unreviewed: Records without a label.
        average_score: Mean penalty score of scored records, None if none.
        gaps: Unknown labels and their occurrences.
    """

    total: int = 0
    label_counts: dict[str, int] = field(default_factory=dict)
    unified: dict[str, int] = field(default_factory=dict)
    combined_legacy: dict[str, int] = field(default_factory=dict)
    quality: int = 0
    error: int = 0
    excluded: int = 0
    unclassified: int = 0
    unreviewed: int = 0
    average_score: float | None = None
    gaps: list[ClassificationGap] = field(default_factory=list)

    @property
    def reviewed(self) -> int:
        return self.total - self.unreviewed

    @property
    def evaluable(self) -> int:
        return self.reviewed - self.excluded

    @property
    def quality_percentage(self) -> float:
        if self.evaluable == 0:
            return 0.0
        return self.quality / self.evaluable * PERCENT

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["reviewed"] = self.reviewed
        data["evaluable"] = self.evaluable
        data["quality_percentage"] = self.quality_percentage
        return data


@dataclass(frozen=True)
class Trend:
    """Change between two values.

    Attributes:
        delta: ``current - previous`` (signed).
        percent: Magnitude of the change relative to ``previous``.
        direction: Sign of ``delta``.
    """

    delta: float
    percent: float
    direction: TrendDirection


@dataclass(frozen=True)
class TrendMetric:
    """A value for the current period with its previous-period comparison."""

    current: float
    previous: float
    trend: Trend

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class GroupedStat:
    """Classification counters for one group of records.

    Attributes:
        group_key: Key the records were grouped under.
        counts: Classification counters of the group.
        category: Category of the group, if grouped by category.
        version: Prompt version of the group, if grouped by version.
        week_start: Monday midnight of the group's week, for week buckets.
        weeks: Week buckets of a (category, version) group, newest first.
    """

    group_key: str
    counts: ClassificationCounts
    category: str | None = None
    version: str | None = None
    week_start: datetime | None = None
    weeks: list["GroupedStat"] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.counts.total

    @property
    def quality(self) -> int:
        return self.counts.quality

    @property
    def error(self) -> int:
        return self.counts.error

    @property
    def excluded(self) -> int:
        return self.counts.excluded

    @property
    def unclassified_count(self) -> int:
        return self.counts.unclassified

    @property
    def reviewed(self) -> int:
        return self.counts.reviewed

    @property
    def evaluable(self) -> int:
        return self.counts.evaluable

    @property
    def quality_percentage(self) -> float:
        return self.counts.quality_percentage

    @property
    def week_label(self) -> str | None:
        """``DD.MM.YYYY — DD.MM.YYYY`` label of a week bucket."""
        if self.week_start is None:
            return None
        week_end = self.week_start + timedelta(days=6)
        return (
            self.week_start.strftime(WEEK_LABEL_DATE_FORMAT)
            + WEEK_LABEL_SEPARATOR
            + week_end.strftime(WEEK_LABEL_DATE_FORMAT)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_key": self.group_key,
            "category": self.category,
            "version": self.version,
            "week_start": self.week_start.isoformat() if self.week_start else None,
            "dates": self.week_label,
            "total": self.total,
            "reviewed": self.reviewed,
            "quality": self.quality,
            "error": self.error,
            "excluded": self.excluded,
            "unclassified": self.unclassified_count,
            "evaluable": self.evaluable,
            "quality_percentage": self.quality_percentage,
            "counts": self.counts.to_dict(),
            "weeks": [week.to_dict() for week in self.weeks],
        }


@dataclass(frozen=True)
class CorrelationCell:
    """Co-occurrence rate of two flags.

    Attributes:
        x: First flag name.
        y: Second flag name.
        value: Fraction of records where both flags are true.
    """

    x: str
    y: str
    value: float


@dataclass(frozen=True)
class FlowNode:
    """A node of the flow graph with the number of threads that reached it."""

    id: str
    label: str
    count: int


@dataclass(frozen=True)
class FlowEdge:
    """A weighted transition between two flow nodes."""

    source: str
    target: str
    value: int


@dataclass
class FlowGraph:
    """Six-node AI draft flow graph.

    Attributes:
        nodes: The fixed nodes, in display order.
        edges: Non-zero transitions.
        attribution: How outcomes were attributed to used/edited drafts.
    """

    nodes: list[FlowNode]
    edges: list[FlowEdge]
    attribution: FlowAttribution = FlowAttribution.PER_THREAD

    def node(self, node_id: str) -> FlowNode:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise KeyError(node_id)

    def outgoing(self, node_id: str) -> list[FlowEdge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def outgoing_weight(self, node_id: str) -> int:
        return sum(edge.value for edge in self.outgoing(node_id))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class FetchResult:
    """Rows retrieved by the batch fetcher.

    Attributes:
        table: Table the rows came from.
        records: Rows of every page that succeeded, in no particular order.
        warnings: One PageFetchError per page that failed.
        expected_count: Row count reported before the page fetches.
        pages: Number of pages planned.
        cancelled: Whether cancellation stopped the fetch early.
    """

    table: str
    records: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[PageFetchError] = field(default_factory=list)
    expected_count: int = 0
    pages: int = 0
    cancelled: bool = False

    @property
    def is_partial(self) -> bool:
        return bool(self.warnings) or self.cancelled

    @property
    def partial_warning(self) -> PartialFetchWarning | None:
        if not self.warnings:
            return None
        return PartialFetchWarning(table=self.table, failures=list(self.warnings))

    def __iter__(self):
        # Unpacks as (records, warnings)
        return iter((self.records, self.warnings))


@dataclass(frozen=True)
class StatusShare:
    """Share of threads in one status."""

    status: str
    count: int
    percentage: float


@dataclass(frozen=True)
class ResolutionTimeBucket:
    """Average time to human reply for one week."""

    week_start: datetime
    average_hours: float
    record_count: int


@dataclass(frozen=True)
class CategoryShare:
    """Record volume and unchanged share for one category."""

    category: str
    total_records: int
    good_percentage: float


@dataclass(frozen=True)
class VersionShare:
    """Record volume and unchanged share for one prompt version."""

    version: str
    total_records: int
    good_percentage: float


@dataclass(frozen=True)
class QualityTrendPoint:
    """Unchanged share of one category in one day or week bucket."""

    category: str
    bucket_start: datetime
    good_percentage: float
    record_count: int


@dataclass(frozen=True)
class BestCategory:
    """Category with the highest quality percentage in the current period."""

    category: str
    percentage: float
    previous_percentage: float
    trend: Trend


@dataclass(frozen=True)
class KpiSummary:
    """Headline comparison-record KPIs with period-over-period trends."""

    total_records: TrendMetric
    average_quality: TrendMetric
    records_changed: TrendMetric
    best_category: BestCategory | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SupportKpis:
    """Support-thread KPIs with period-over-period trends."""

    reply_required: TrendMetric
    data_collection_rate: TrendMetric
    average_requirements: TrendMetric
    ai_draft_coverage: TrendMetric

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
