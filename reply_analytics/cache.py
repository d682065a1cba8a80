"""Session-scoped batch cache for UI-paced incremental loading."""

from typing import Any

from cachetools import LRUCache
from loguru import logger

from .config import EngineConfig
from .constants import CLIENT_BATCH_SIZE, MAX_CACHED_BATCHES, LogMessage
from .errors import PageFetchError
from .models import Filter
from .port import QueryPort


class _BatchLRU(LRUCache):
    def popitem(self):
        key, rows = super().popitem()
        logger.debug(LogMessage.CACHE_EVICTED.format(key[1]))
        return key, rows


class IncrementalCache:
    """Batches fetched for one filter, keyed by (filter fingerprint, batch index).

    The cache follows one filter at a time: binding a different filter drops
    every cached batch. When more than ``max_batches`` batches are held the
    least recently used one is evicted.

    Not shared between sessions; each loader owns its cache.
    """

    def __init__(self, *, max_batches: int = MAX_CACHED_BATCHES):
        self.max_batches = max_batches
        self._batches: LRUCache = _BatchLRU(maxsize=max_batches)
        self._fingerprint: str | None = None

    def __len__(self) -> int:
        return len(self._batches)

    @property
    def fingerprint(self) -> str | None:
        return self._fingerprint

    def bind(self, filter: Filter) -> bool:
        """Point the cache at ``filter``.

        Returns:
            bool: True if the filter changed and cached batches were dropped.
        """
        fingerprint = filter.fingerprint()
        if fingerprint == self._fingerprint:
            return False
        if self._batches:
            logger.debug(LogMessage.CACHE_INVALIDATED.format(len(self._batches)))
        self._batches = _BatchLRU(maxsize=self.max_batches)
        self._fingerprint = fingerprint
        return True

    def get(self, filter: Filter, index: int) -> list[dict[str, Any]] | None:
        return self._batches.get((filter.fingerprint(), index))

    def put(self, filter: Filter, index: int, rows: list[dict[str, Any]]) -> None:
        self.bind(filter)
        self._batches[(self._fingerprint, index)] = rows

    def invalidate(self) -> None:
        self._batches = _BatchLRU(maxsize=self.max_batches)
        self._fingerprint = None

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._batches),
            "maxsize": self._batches.maxsize,
            "fingerprint": self._fingerprint,
        }


class IncrementalLoader:
    """Loads rows one small batch at a time for paced consumers.

    Attributes:
        port: Query port rows are read from.
        table: Table being loaded.
        filter: Current filter; change it with ``set_filter``.
        batch_size: Rows per batch.
        select_fields: Columns to return, all if None.
        cache: Batch cache owned by this loader.
    """

    def __init__(
        self,
        *,
        port: QueryPort,
        table: str,
        filter: Filter,
        batch_size: int = CLIENT_BATCH_SIZE,
        select_fields: list[str] | None = None,
        cache: IncrementalCache | None = None,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.port = port
        self.table = table
        self.batch_size = batch_size
        self.select_fields = select_fields
        self.cache = cache if cache is not None else IncrementalCache()
        self.filter = filter
        self.cache.bind(filter)
        self._next_index = 0
        self._has_more = True
        self._rows: list[dict[str, Any]] = []

    @classmethod
    def from_config(
        cls,
        *,
        port: QueryPort,
        table: str,
        filter: Filter,
        config: EngineConfig,
        select_fields: list[str] | None = None,
    ) -> "IncrementalLoader":
        return cls(
            port=port,
            table=table,
            filter=filter,
            batch_size=config.client_batch_size,
            select_fields=select_fields,
            cache=IncrementalCache(max_batches=config.max_cached_batches),
        )

    @property
    def has_more(self) -> bool:
        """False once a batch came back shorter than ``batch_size``."""
        return self._has_more

    @property
    def batches_loaded(self) -> int:
        return self._next_index

    def all_loaded(self) -> list[dict[str, Any]]:
        """Every row loaded since the filter was last set."""
        return list(self._rows)

    def set_filter(self, filter: Filter) -> bool:
        """Switch to ``filter``, restarting from the first batch if it changed.

        Returns:
            bool: True if the filter changed.
        """
        if not self.cache.bind(filter):
            return False
        self.filter = filter
        self.reset()
        return True

    def reset(self) -> None:
        """Start again from the first batch, keeping cached batches."""
        self._next_index = 0
        self._has_more = True
        self._rows = []

    async def load_batch(self, index: int) -> list[dict[str, Any]]:
        """Rows of batch ``index``, from the cache when available.

        Raises:
            PageFetchError: If the batch could not be fetched.
        """
        cached = self.cache.get(self.filter, index)
        if cached is not None:
            logger.debug(LogMessage.CACHE_HIT.format(index))
            return [dict(row) for row in cached]

        offset = index * self.batch_size
        try:
            rows = await self.port.fetch_page(
                self.table, self.filter, self.select_fields, offset, self.batch_size
            )
        except Exception as e:
            raise PageFetchError(
                table=self.table, page=index, offset=offset, limit=self.batch_size, cause=e
            ) from e

        self.cache.put(self.filter, index, [dict(row) for row in rows])
        return rows

    async def load_next(self) -> list[dict[str, Any]]:
        """Load the next batch and append it to the loaded rows.

        Returns:
            list[dict[str, Any]]: The new rows, empty when nothing is left.
        """
        if not self._has_more:
            return []
        rows = await self.load_batch(self._next_index)
        self._next_index += 1
        self._rows.extend(rows)
        if len(rows) < self.batch_size:
            self._has_more = False
        return rows
