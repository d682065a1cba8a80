"""Classification taxonomy: legacy and new review labels mapped into partitions.

Two vocabularies coexist in the data. The legacy (v3) scheme has five
snake_case labels; the new (v4) scheme has ten UPPER_CASE labels with penalty
scores. A record carries at most one label from one vocabulary, so partition
counts are plain sums over whichever labels occur.
"""

from collections import Counter
from enum import StrEnum
from typing import Final, Iterable

from loguru import logger

from .constants import (
    CRITICAL_SCORE_CEILING,
    MAX_QUALITY_SCORE,
    NEEDS_WORK_SCORE_CEILING,
    LogMessage,
    Partition,
    ScoreGroup,
)
from .errors import ClassificationGap
from .models import ClassificationCounts, ComparisonRecord


class LegacyLabel(StrEnum):
    """Legacy (v3.x) classification labels."""

    CRITICAL_ERROR = "critical_error"
    MEANINGFUL_IMPROVEMENT = "meaningful_improvement"
    STYLISTIC_PREFERENCE = "stylistic_preference"
    NO_SIGNIFICANT_CHANGE = "no_significant_change"
    CONTEXT_SHIFT = "context_shift"


class NewLabel(StrEnum):
    """New (v4.0) classification labels."""

    CRITICAL_FACT_ERROR = "CRITICAL_FACT_ERROR"
    MAJOR_FUNCTIONAL_OMISSION = "MAJOR_FUNCTIONAL_OMISSION"
    MINOR_INFO_GAP = "MINOR_INFO_GAP"
    CONFUSING_VERBOSITY = "CONFUSING_VERBOSITY"
    TONAL_MISALIGNMENT = "TONAL_MISALIGNMENT"
    STRUCTURAL_FIX = "STRUCTURAL_FIX"
    STYLISTIC_EDIT = "STYLISTIC_EDIT"
    PERFECT_MATCH = "PERFECT_MATCH"
    EXCL_WORKFLOW_SHIFT = "EXCL_WORKFLOW_SHIFT"
    EXCL_DATA_DISCREPANCY = "EXCL_DATA_DISCREPANCY"


ALL_LABELS: Final[tuple[str, ...]] = (*LegacyLabel, *NewLabel)
_LEGACY_VALUES: Final[frozenset[str]] = frozenset(LegacyLabel)
_NEW_VALUES: Final[frozenset[str]] = frozenset(NewLabel)

PARTITIONS: Final[dict[str, Partition]] = {
    LegacyLabel.CRITICAL_ERROR: Partition.ERROR,
    LegacyLabel.MEANINGFUL_IMPROVEMENT: Partition.ERROR,
    LegacyLabel.STYLISTIC_PREFERENCE: Partition.QUALITY,
    LegacyLabel.NO_SIGNIFICANT_CHANGE: Partition.QUALITY,
    LegacyLabel.CONTEXT_SHIFT: Partition.EXCLUDED,
    NewLabel.CRITICAL_FACT_ERROR: Partition.ERROR,
    NewLabel.MAJOR_FUNCTIONAL_OMISSION: Partition.ERROR,
    NewLabel.MINOR_INFO_GAP: Partition.ERROR,
    NewLabel.CONFUSING_VERBOSITY: Partition.ERROR,
    NewLabel.TONAL_MISALIGNMENT: Partition.ERROR,
    NewLabel.STRUCTURAL_FIX: Partition.QUALITY,
    NewLabel.STYLISTIC_EDIT: Partition.QUALITY,
    NewLabel.PERFECT_MATCH: Partition.QUALITY,
    NewLabel.EXCL_WORKFLOW_SHIFT: Partition.EXCLUDED,
    NewLabel.EXCL_DATA_DISCREPANCY: Partition.EXCLUDED,
}

# Score = 100 + penalty; None means excluded from scoring
PENALTIES: Final[dict[str, int | None]] = {
    NewLabel.CRITICAL_FACT_ERROR: -100,
    NewLabel.MAJOR_FUNCTIONAL_OMISSION: -50,
    NewLabel.MINOR_INFO_GAP: -20,
    NewLabel.CONFUSING_VERBOSITY: -15,
    NewLabel.TONAL_MISALIGNMENT: -10,
    NewLabel.STRUCTURAL_FIX: -5,
    NewLabel.STYLISTIC_EDIT: -2,
    NewLabel.PERFECT_MATCH: 0,
    NewLabel.EXCL_WORKFLOW_SHIFT: None,
    NewLabel.EXCL_DATA_DISCREPANCY: None,
}

# Legacy label -> the new label that replaced it
LEGACY_TO_NEW: Final[dict[str, str]] = {
    LegacyLabel.CRITICAL_ERROR: NewLabel.CRITICAL_FACT_ERROR,
    LegacyLabel.MEANINGFUL_IMPROVEMENT: NewLabel.MINOR_INFO_GAP,
    LegacyLabel.STYLISTIC_PREFERENCE: NewLabel.STYLISTIC_EDIT,
    LegacyLabel.NO_SIGNIFICANT_CHANGE: NewLabel.PERFECT_MATCH,
    LegacyLabel.CONTEXT_SHIFT: NewLabel.EXCL_WORKFLOW_SHIFT,
}

# New label -> the legacy column it is reported under
NEW_TO_LEGACY: Final[dict[str, str]] = {
    NewLabel.CRITICAL_FACT_ERROR: LegacyLabel.CRITICAL_ERROR,
    NewLabel.MAJOR_FUNCTIONAL_OMISSION: LegacyLabel.CRITICAL_ERROR,
    NewLabel.MINOR_INFO_GAP: LegacyLabel.MEANINGFUL_IMPROVEMENT,
    NewLabel.CONFUSING_VERBOSITY: LegacyLabel.MEANINGFUL_IMPROVEMENT,
    NewLabel.TONAL_MISALIGNMENT: LegacyLabel.MEANINGFUL_IMPROVEMENT,
    NewLabel.STRUCTURAL_FIX: LegacyLabel.STYLISTIC_PREFERENCE,
    NewLabel.STYLISTIC_EDIT: LegacyLabel.STYLISTIC_PREFERENCE,
    NewLabel.PERFECT_MATCH: LegacyLabel.NO_SIGNIFICANT_CHANGE,
    NewLabel.EXCL_WORKFLOW_SHIFT: LegacyLabel.CONTEXT_SHIFT,
    NewLabel.EXCL_DATA_DISCREPANCY: LegacyLabel.CONTEXT_SHIFT,
}


def _check_tables() -> None:
    missing = set(ALL_LABELS) - set(PARTITIONS)
    if missing:
        raise RuntimeError(f"Labels without a partition: {sorted(missing)}")
    for legacy, new in LEGACY_TO_NEW.items():
        if PARTITIONS[legacy] is not PARTITIONS[new]:
            raise RuntimeError(f"{legacy} and {new} map to different partitions")
    for new, legacy in NEW_TO_LEGACY.items():
        if PARTITIONS[legacy] is not PARTITIONS[new]:
            raise RuntimeError(f"{new} and {legacy} map to different partitions")


_check_tables()


def is_legacy_label(label: str | None) -> bool:
    return label in _LEGACY_VALUES


def is_new_label(label: str | None) -> bool:
    return label in _NEW_VALUES


def partition_of(label: str | None) -> Partition:
    """Partition a label belongs to.

    Args:
        label: A legacy or new label. Anything else, including None, is
            UNCLASSIFIED; callers decide whether None means "unreviewed".

    Returns:
        Partition: QUALITY, ERROR, EXCLUDED or UNCLASSIFIED.
    """
    if label is None:
        return Partition.UNCLASSIFIED
    return PARTITIONS.get(label, Partition.UNCLASSIFIED)


def quality_score(label: str | None) -> int | None:
    """Penalty-based quality score (0-100), None if excluded or unknown."""
    if is_legacy_label(label):
        label = LEGACY_TO_NEW[label]
    if not is_new_label(label):
        return None
    penalty = PENALTIES[label]
    if penalty is None:
        return None
    return MAX_QUALITY_SCORE + penalty


def score_group(score: int | float | None) -> ScoreGroup:
    """Display group of a quality score."""
    if score is None:
        return ScoreGroup.EXCLUDED
    if score <= CRITICAL_SCORE_CEILING:
        return ScoreGroup.CRITICAL
    if score <= NEEDS_WORK_SCORE_CEILING:
        return ScoreGroup.NEEDS_WORK
    return ScoreGroup.GOOD


class ClassificationTaxonomy:
    """Counts classification labels into per-label and per-partition totals.

    Unknown labels are logged once per distinct value for the lifetime of the
    instance.
    """

    def __init__(self) -> None:
        self._reported_gaps: set[str] = set()

    def partition_of(self, label: str | None) -> Partition:
        return partition_of(label)

    def count_labels(self, labels: Iterable[str | None]) -> ClassificationCounts:
        """Count raw label values.

        Args:
            labels: One label per record; None marks an unreviewed record.

        Returns:
            ClassificationCounts: Per-label, unified and partition counters.
        """
        raw = Counter(labels)
        total = sum(raw.values())
        unreviewed = raw.pop(None, 0)

        label_counts = {label: raw.get(label, 0) for label in ALL_LABELS}
        partition_totals = Counter[Partition]()
        gaps: list[ClassificationGap] = []
        scores: list[int] = []

        for label, occurrences in raw.items():
            partition = partition_of(label)
            partition_totals[partition] += occurrences
            if partition is Partition.UNCLASSIFIED:
                gaps.append(ClassificationGap(label=str(label), occurrences=occurrences))
                self._report_gap(str(label))
                continue
            score = quality_score(label)
            if score is not None:
                scores.extend([score] * occurrences)

        unified = {new: label_counts[new] for new in NewLabel}
        for legacy, new in LEGACY_TO_NEW.items():
            unified[new] += label_counts[legacy]

        combined_legacy = {legacy: label_counts[legacy] for legacy in LegacyLabel}
        for new, legacy in NEW_TO_LEGACY.items():
            combined_legacy[legacy] += label_counts[new]

        return ClassificationCounts(
            total=total,
            label_counts=label_counts,
            unified=unified,
            combined_legacy=combined_legacy,
            quality=partition_totals[Partition.QUALITY],
            error=partition_totals[Partition.ERROR],
            excluded=partition_totals[Partition.EXCLUDED],
            unclassified=partition_totals[Partition.UNCLASSIFIED],
            unreviewed=unreviewed,
            average_score=sum(scores) / len(scores) if scores else None,
            gaps=sorted(gaps, key=lambda gap: gap.label),
        )

    def count_all(self, records: Iterable[ComparisonRecord]) -> ClassificationCounts:
        """Count the classification labels of comparison records."""
        return self.count_labels(record.classification for record in records)

    def _report_gap(self, label: str) -> None:
        if label in self._reported_gaps:
            return
        self._reported_gaps.add(label)
        logger.warning(LogMessage.UNKNOWN_LABEL.format(label))


def count_all(records: Iterable[ComparisonRecord]) -> ClassificationCounts:
    """Count records with a fresh taxonomy."""
    return ClassificationTaxonomy().count_all(records)
