"""Query port: the three calls the engine needs from the remote store."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable

from .models import Filter

ProcedureHandler = Callable[[dict[str, Any]], list[dict[str, Any]]]


class QueryPort(ABC):
    """Interface to a paginated, row-limited store.

    Predicates are limited to the shape a Filter describes: a date range on
    one column (``>= start``, ``< end``), set membership on zero or more
    columns and ``= true`` on zero or more flag columns.
    """

    @abstractmethod
    async def count(self, table: str, filter: Filter) -> int:
        """Number of rows in ``table`` matching ``filter``."""

    @abstractmethod
    async def fetch_page(
        self,
        table: str,
        filter: Filter,
        select_fields: list[str] | None,
        offset: int,
        limit: int,
    ) -> list[dict[str, Any]]:
        """Rows ``offset`` to ``offset + limit - 1`` of the filtered table."""

    @abstractmethod
    async def call_procedure(self, name: str, args: dict[str, Any]) -> list[dict[str, Any]]:
        """Invoke a named server-side aggregate procedure."""


class InMemoryQueryPort(QueryPort):
    """QueryPort over rows held in memory.

    Useful for running the engine over an exported snapshot of the store.
    Rows keep their insertion order, so page ranges never overlap.

    Attributes:
        tables: Rows per table name.
        procedures: Procedure handlers by name.
    """

    def __init__(
        self,
        *,
        tables: dict[str, Iterable[dict[str, Any]]] | None = None,
        procedures: dict[str, ProcedureHandler] | None = None,
    ):
        self.tables: dict[str, list[dict[str, Any]]] = {
            name: list(rows) for name, rows in (tables or {}).items()
        }
        self.procedures: dict[str, ProcedureHandler] = dict(procedures or {})

    def _matching(self, table: str, filter: Filter) -> list[dict[str, Any]]:
        return [row for row in self.tables.get(table, []) if filter.matches(row)]

    async def count(self, table: str, filter: Filter) -> int:
        return len(self._matching(table, filter))

    async def fetch_page(
        self,
        table: str,
        filter: Filter,
        select_fields: list[str] | None,
        offset: int,
        limit: int,
    ) -> list[dict[str, Any]]:
        rows = self._matching(table, filter)[offset : offset + limit]
        if not select_fields:
            return [dict(row) for row in rows]
        return [{name: row.get(name) for name in select_fields} for row in rows]

    async def call_procedure(self, name: str, args: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            handler = self.procedures[name]
        except KeyError:
            raise LookupError(f"Unknown procedure: {name}") from None
        return handler(args)
