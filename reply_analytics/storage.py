"""Storage for aggregation results."""

import json
from dataclasses import asdict, is_dataclass
from datetime import date
from pathlib import Path
from typing import Any, Iterable

import polars as pl
from loguru import logger

from .aggregator import flatten_detailed_rows
from .constants import JSON_INDENT, LogMessage
from .models import GroupedStat


def to_jsonable(value: Any) -> Any:
    """Convert results into plain JSON-ready structures.

    Objects with a ``to_dict`` method use it; other dataclasses go through
    ``asdict``; lists, tuples and dicts are converted recursively.
    """
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, date):
        return value.isoformat()
    return value


class ReportStorage:
    """Handles saving aggregation results to disk."""

    def save_json(self, *, data: Any, filepath: Path | str) -> Path:
        """Save a result structure to a JSON file.

        Args:
            data: Result object, list of results or dict of results.
            filepath: Path where the JSON file should be saved.

        Returns:
            Path: The written file.
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with filepath.open("w") as f:
            json.dump(to_jsonable(data), f, indent=JSON_INDENT, default=str)

        logger.success(LogMessage.SAVED_JSON.format(type(data).__name__, filepath))
        return filepath

    def save_detailed_csv(
        self, *, stats: Iterable[GroupedStat], filepath: Path | str
    ) -> Path | None:
        """Save the detailed table to CSV using Polars.

        Each (category, version) row is followed by its week rows, matching the
        on-screen table.

        Args:
            stats: Output of the detailed stats aggregation.
            filepath: Path where the CSV file should be saved.

        Returns:
            Path | None: The written file, None when there was nothing to save.
        """
        filepath = Path(filepath)
        rows = flatten_detailed_rows(stats)

        if not rows:
            logger.warning("No detailed stats to save to CSV")
            return None

        filepath.parent.mkdir(parents=True, exist_ok=True)
        df = pl.DataFrame(rows, infer_schema_length=None)
        df.write_csv(filepath)

        logger.success(LogMessage.SAVED_CSV.format(len(df), filepath))
        return filepath
