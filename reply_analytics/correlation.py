"""Requirement flag co-occurrence matrix."""

from typing import Iterable, Sequence

from .constants import REQUIREMENT_FLAGS
from .models import CorrelationCell, SupportThreadRecord


def correlate(
    records: Iterable[SupportThreadRecord],
    flag_names: Sequence[str] = REQUIREMENT_FLAGS,
) -> list[CorrelationCell]:
    """Co-occurrence rate for every ordered pair of flags.

    ``value(x, y)`` is the fraction of all records where both ``x`` and ``y``
    are true. This is a population co-occurrence rate, not a Pearson
    coefficient: the diagonal holds each flag's own true rate, and every
    value lies in ``[0, 1]``.

    Args:
        records: Support threads carrying the flags.
        flag_names: Flags to correlate; the matrix has ``len(flag_names) ** 2``
            cells in row-major order.

    Returns:
        list[CorrelationCell]: Full matrix, all zeros when there are no records.
    """
    records = list(records)
    total = len(records)

    both: dict[tuple[str, str], int] = {(x, y): 0 for x in flag_names for y in flag_names}
    for record in records:
        active = [name for name in flag_names if record.flag(name)]
        for x in active:
            for y in active:
                both[(x, y)] += 1

    return [
        CorrelationCell(x=x, y=y, value=both[(x, y)] / total if total else 0.0)
        for x in flag_names
        for y in flag_names
    ]


def as_matrix(cells: Iterable[CorrelationCell]) -> dict[str, dict[str, float]]:
    """Nest cells as ``matrix[x][y] = value``."""
    matrix: dict[str, dict[str, float]] = {}
    for cell in cells:
        matrix.setdefault(cell.x, {})[cell.y] = cell.value
    return matrix
