"""Grouping and trend aggregation over fetched records."""

import re
from collections import Counter, defaultdict
from datetime import datetime, timedelta, tzinfo
from typing import Any, Callable, Hashable, Iterable, TypeVar

from .constants import (
    DAY_GROUPING_MAX_DAYS,
    MAX_RESOLUTION_HOURS,
    PERCENT,
    RESOLVED_STATUSES,
    UNKNOWN_GROUP,
    DateField,
    Partition,
    RequirementFlag,
    TrendDirection,
)
from .models import (
    CategoryShare,
    ComparisonRecord,
    DateRange,
    GroupedStat,
    QualityTrendPoint,
    ResolutionTimeBucket,
    StatusShare,
    SupportKpis,
    SupportThreadRecord,
    Trend,
    TrendMetric,
    VersionShare,
)
from .taxonomy import ClassificationTaxonomy, partition_of

K = TypeVar("K", bound=Hashable)

_VERSION_NUMBER = re.compile(r"\d+")


# ============================================================================
# Trends and periods
# ============================================================================


def compute_trend(current: float, previous: float) -> Trend:
    """Signed change from ``previous`` to ``current``.

    ``percent`` is the magnitude of the change relative to ``previous``. With a
    zero baseline it is 0 when ``current`` is also 0 and 100 otherwise.
    """
    delta = current - previous
    if previous == 0:
        percent = 0.0 if current == 0 else PERCENT
    else:
        percent = abs(delta) / abs(previous) * PERCENT

    if delta > 0:
        direction = TrendDirection.UP
    elif delta < 0:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.NEUTRAL
    return Trend(delta=delta, percent=percent, direction=direction)


def trend(current: float, previous: float) -> TrendMetric:
    """Current-vs-previous metric with its trend.

    Examples:
        >>> trend(100, 50).trend
        Trend(delta=50, percent=100.0, direction=<TrendDirection.UP: 'up'>)
    """
    return TrendMetric(current=current, previous=previous, trend=compute_trend(current, previous))


def previous_period(date_range: DateRange) -> DateRange:
    """Interval of identical duration ending 1 ms before ``date_range`` starts."""
    return date_range.previous()


# ============================================================================
# Buckets and keys
# ============================================================================


def _localize(moment: datetime, tz: tzinfo | None) -> datetime:
    if tz is not None and moment.tzinfo is not None:
        return moment.astimezone(tz)
    return moment


def day_start(moment: datetime, tz: tzinfo | None = None) -> datetime:
    """Midnight of the day containing ``moment`` in ``tz``."""
    return _localize(moment, tz).replace(hour=0, minute=0, second=0, microsecond=0)


def week_start(moment: datetime, tz: tzinfo | None = None) -> datetime:
    """Monday midnight of the week containing ``moment`` in ``tz``.

    Naive datetimes are taken as already local.
    """
    start = day_start(moment, tz)
    return start - timedelta(days=start.weekday())


def version_number(version: str | None) -> int:
    """First run of digits in a version string (``"v3.2"`` -> 3), 0 if none."""
    if not version:
        return 0
    match = _VERSION_NUMBER.search(version)
    return int(match.group()) if match else 0


def _group_name(value: str | None) -> str:
    return value if value else UNKNOWN_GROUP


def _version_order(version: str | None) -> tuple[int, str]:
    # Sorted ascending, so negate to get highest version first
    return (-version_number(version), version or "")


# ============================================================================
# Grouping
# ============================================================================


def group_by(
    records: Iterable[ComparisonRecord],
    key_fn: Callable[[ComparisonRecord], K],
    *,
    taxonomy: ClassificationTaxonomy | None = None,
) -> dict[K, GroupedStat]:
    """Group records by ``key_fn`` and count classifications per group.

    Every record lands in exactly one group, so group totals sum to the
    number of records.

    Args:
        records: Records to group.
        key_fn: Maps a record to its group key.
        taxonomy: Taxonomy used for counting; a fresh one if None.

    Returns:
        dict[K, GroupedStat]: Stats per key, in first-seen key order.
    """
    taxonomy = taxonomy if taxonomy is not None else ClassificationTaxonomy()
    buckets: dict[K, list[ComparisonRecord]] = defaultdict(list)
    for record in records:
        buckets[key_fn(record)].append(record)

    return {
        key: GroupedStat(group_key=str(key), counts=taxonomy.count_all(members))
        for key, members in buckets.items()
    }


def detailed_stats(
    records: Iterable[ComparisonRecord],
    *,
    date_field: DateField = DateField.CREATED,
    tz: tzinfo | None = None,
    taxonomy: ClassificationTaxonomy | None = None,
) -> list[GroupedStat]:
    """Two-level detailed table: (category, version) groups split into weeks.

    Groups are ordered by category ascending then version descending by its
    embedded number; each group's weeks are ordered newest first. Records
    without a timestamp for ``date_field`` form a trailing week bucket with no
    start, so parent counts always equal the sum of their weeks.

    Args:
        records: Comparison records to tabulate.
        date_field: Timestamp used for week buckets.
        tz: Zone the week boundaries are computed in.
        taxonomy: Taxonomy used for counting.

    Returns:
        list[GroupedStat]: One parent per (category, version) with ``weeks``.
    """
    taxonomy = taxonomy if taxonomy is not None else ClassificationTaxonomy()
    records = list(records)

    def parent_key(record: ComparisonRecord) -> tuple[str, str]:
        return (_group_name(record.category), _group_name(record.version))

    def week_key(record: ComparisonRecord) -> datetime | None:
        moment = record.timestamp(date_field)
        return week_start(moment, tz) if moment is not None else None

    parents: dict[tuple[str, str], list[ComparisonRecord]] = defaultdict(list)
    for record in records:
        parents[parent_key(record)].append(record)

    stats: list[GroupedStat] = []
    for (category, version), members in parents.items():
        weeks = group_by(members, week_key, taxonomy=taxonomy)
        dated = sorted((start for start in weeks if start is not None), reverse=True)
        if None in weeks:
            dated.append(None)
        week_stats = [
            GroupedStat(
                group_key=f"{category}|{version}|{start.isoformat() if start else UNKNOWN_GROUP}",
                counts=weeks[start].counts,
                category=category,
                version=version,
                week_start=start,
            )
            for start in dated
        ]
        stats.append(
            GroupedStat(
                group_key=f"{category}|{version}",
                counts=taxonomy.count_all(members),
                category=category,
                version=version,
                weeks=week_stats,
            )
        )

    stats.sort(key=lambda stat: (stat.category, *_version_order(stat.version)))
    return stats


def flatten_detailed_rows(stats: Iterable[GroupedStat]) -> list[dict[str, Any]]:
    """Flat table rows: each (category, version) row followed by its week rows."""
    rows: list[dict[str, Any]] = []
    for parent in stats:
        rows.append(_flat_row(parent, level=1))
        rows.extend(_flat_row(week, level=2) for week in parent.weeks)
    return rows


def _flat_row(stat: GroupedStat, *, level: int) -> dict[str, Any]:
    row: dict[str, Any] = {
        "category": stat.category,
        "version": stat.version,
        "dates": stat.week_label,
        "sort_order": level,
        "total": stat.total,
        "reviewed": stat.reviewed,
        "quality": stat.quality,
        "error": stat.error,
        "excluded": stat.excluded,
        "unclassified": stat.unclassified_count,
        "evaluable": stat.evaluable,
        "quality_percentage": round(stat.quality_percentage, 2),
        "average_score": stat.counts.average_score,
    }
    row.update({str(label): count for label, count in stat.counts.unified.items()})
    return row


# ============================================================================
# Comparison record distributions
# ============================================================================


def _is_excluded(record: ComparisonRecord) -> bool:
    return partition_of(record.classification) is Partition.EXCLUDED


def quality_trends(
    records: Iterable[ComparisonRecord],
    *,
    date_range: DateRange,
    date_field: DateField = DateField.CREATED,
    tz: tzinfo | None = None,
) -> list[QualityTrendPoint]:
    """Unchanged share per category per day (short ranges) or week.

    Only reviewed, non-excluded records are counted; a record is "good" when
    the human did not change the AI reply.
    """
    by_day = date_range.duration <= timedelta(days=DAY_GROUPING_MAX_DAYS)
    bucket_fn = day_start if by_day else week_start

    totals: Counter[tuple[str, datetime]] = Counter()
    unchanged: Counter[tuple[str, datetime]] = Counter()
    for record in records:
        moment = record.timestamp(date_field)
        if record.classification is None or moment is None or _is_excluded(record):
            continue
        key = (_group_name(record.category), bucket_fn(moment, tz))
        totals[key] += 1
        if not record.changed:
            unchanged[key] += 1

    return [
        QualityTrendPoint(
            category=category,
            bucket_start=bucket,
            good_percentage=unchanged[(category, bucket)] / count * PERCENT,
            record_count=count,
        )
        for (category, bucket), count in sorted(totals.items())
    ]


def version_comparison(records: Iterable[ComparisonRecord]) -> list[VersionShare]:
    """Volume and unchanged share per prompt version, highest version first."""
    totals: Counter[str] = Counter()
    unchanged: Counter[str] = Counter()
    for record in records:
        if _is_excluded(record):
            continue
        version = _group_name(record.version)
        totals[version] += 1
        if not record.changed:
            unchanged[version] += 1

    return [
        VersionShare(
            version=version,
            total_records=totals[version],
            good_percentage=unchanged[version] / totals[version] * PERCENT,
        )
        for version in sorted(totals, key=_version_order)
    ]


def category_distribution(records: Iterable[ComparisonRecord]) -> list[CategoryShare]:
    """Volume and unchanged share per category, largest first."""
    totals: Counter[str] = Counter()
    unchanged: Counter[str] = Counter()
    for record in records:
        if _is_excluded(record):
            continue
        category = _group_name(record.category)
        totals[category] += 1
        if not record.changed:
            unchanged[category] += 1

    return [
        CategoryShare(
            category=category,
            total_records=count,
            good_percentage=unchanged[category] / count * PERCENT,
        )
        for category, count in sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    ]


def resolution_time_by_week(
    records: Iterable[ComparisonRecord], *, tz: tzinfo | None = None
) -> list[ResolutionTimeBucket]:
    """Average hours from creation to human reply, per creation week.

    Negative durations and durations over 30 days are treated as bad data and
    skipped. Averages are rounded to one decimal; weeks are oldest first.
    """
    hours_by_week: dict[datetime, list[float]] = defaultdict(list)
    for record in records:
        if record.created_at is None or record.human_reply_date is None:
            continue
        try:
            hours = (record.human_reply_date - record.created_at).total_seconds() / 3600
        except TypeError:
            # naive and aware timestamps on the same row
            continue
        if hours < 0 or hours > MAX_RESOLUTION_HOURS:
            continue
        hours_by_week[week_start(record.created_at, tz)].append(hours)

    return [
        ResolutionTimeBucket(
            week_start=start,
            average_hours=round(sum(hours) / len(hours), 1),
            record_count=len(hours),
        )
        for start, hours in sorted(hours_by_week.items())
    ]


# ============================================================================
# Support thread aggregates
# ============================================================================


def status_distribution(threads: Iterable[SupportThreadRecord]) -> list[StatusShare]:
    """Thread count and share per status, most common first."""
    counts = Counter(_group_name(thread.status) for thread in threads)
    total = sum(counts.values())
    return [
        StatusShare(status=status, count=count, percentage=count / total * PERCENT)
        for status, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    ]


def _support_rates(threads: list[SupportThreadRecord]) -> tuple[float, float, float, float]:
    total = len(threads)
    if total == 0:
        return (0.0, 0.0, 0.0, 0.0)
    requires_reply = sum(thread.flag(RequirementFlag.REQUIRES_REPLY) for thread in threads)
    resolved = sum(thread.status in RESOLVED_STATUSES for thread in threads)
    requirements = sum(sum(thread.flags.values()) for thread in threads)
    with_draft = sum(thread.has_ai_draft for thread in threads)
    return (
        requires_reply / total * PERCENT,
        resolved / total * PERCENT,
        requirements / total,
        with_draft / total * PERCENT,
    )


def support_kpis(
    current: Iterable[SupportThreadRecord],
    previous: Iterable[SupportThreadRecord],
) -> SupportKpis:
    """Support-thread KPIs for the current period against the previous one."""
    now = _support_rates(list(current))
    before = _support_rates(list(previous))
    return SupportKpis(
        reply_required=trend(now[0], before[0]),
        data_collection_rate=trend(now[1], before[1]),
        average_requirements=trend(now[2], before[2]),
        ai_draft_coverage=trend(now[3], before[3]),
    )
