"""QueryPort adapter for a PostgREST (Supabase) REST endpoint."""

from typing import Any

import httpx
from aiolimiter import AsyncLimiter
from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .config import EngineConfig
from .constants import ROW_KEYS, Column, LogMessage
from .models import Filter
from .port import QueryPort

REST_PATH = "/rest/v1"
RPC_PATH = "/rpc"
CONTENT_RANGE_HEADER = "Content-Range"
PREFER_HEADER = "Prefer"
PREFER_EXACT_COUNT = "count=exact"
RETRYABLE_STATUS = 429


def _is_transient(error: BaseException) -> bool:
    """Transport failures, 5xx and 429 responses are worth retrying."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status >= 500 or status == RETRYABLE_STATUS
    return False


def _quote(value: str) -> str:
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def filter_params(filter: Filter) -> list[tuple[str, str]]:
    """Translate a Filter into PostgREST query parameters.

    Args:
        filter: Filter to translate.

    Returns:
        list[tuple[str, str]]: ``gte``/``lt`` on the date column, ``in`` per
            set constraint and ``eq.true`` per requirement flag.
    """
    column = filter.date_column
    params = [
        (column, f"gte.{filter.date_range.start.isoformat()}"),
        (column, f"lt.{filter.date_range.end.isoformat()}"),
    ]
    for name, values in sorted(filter.set_constraints().items()):
        params.append((name, f"in.({','.join(_quote(value) for value in sorted(values))})"))
    for flag in sorted(filter.requirement_flags):
        params.append((flag, "eq.true"))
    return params


def row_key(table: str) -> str:
    return ROW_KEYS.get(table, Column.ID)


def parse_content_range(header: str | None) -> int:
    """Total row count from a ``Content-Range`` header such as ``0-24/3573``."""
    if not header or "/" not in header:
        raise ValueError(f"Missing row count in Content-Range: {header!r}")
    total = header.rsplit("/", 1)[1]
    if total == "*":
        raise ValueError(f"Row count not reported in Content-Range: {header!r}")
    return int(total)


class PostgrestQueryPort(QueryPort):
    """Async QueryPort backed by httpx.

    Requests are rate limited and retried on transient failures here, at the
    adapter level; the engine itself never retries.

    Attributes:
        config: Engine configuration with the endpoint and credentials.
        rate_limiter: AsyncLimiter bounding requests per second.
    """

    def __init__(
        self,
        *,
        config: EngineConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not config.base_url:
            raise ValueError("EngineConfig.base_url is required for the REST adapter")
        self.config = config
        self.rate_limiter = AsyncLimiter(max_rate=config.requests_per_second, time_period=1)
        api_key = config.api_key.get_secret_value()
        self._client = httpx.AsyncClient(
            base_url=config.base_url.rstrip("/") + REST_PATH,
            headers={"apikey": api_key, "Authorization": f"Bearer {api_key}"},
            timeout=config.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "PostgrestQueryPort":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
            reraise=True,
        ):
            with attempt:
                async with self.rate_limiter:
                    response = await self._client.request(method, path, **kwargs)
                response.raise_for_status()
        return response

    async def count(self, table: str, filter: Filter) -> int:
        response = await self._request(
            "HEAD",
            f"/{table}",
            params=[("select", row_key(table)), *filter_params(filter)],
            headers={PREFER_HEADER: PREFER_EXACT_COUNT},
        )
        return parse_content_range(response.headers.get(CONTENT_RANGE_HEADER))

    async def fetch_page(
        self,
        table: str,
        filter: Filter,
        select_fields: list[str] | None,
        offset: int,
        limit: int,
    ) -> list[dict[str, Any]]:
        params = [
            ("select", ",".join(select_fields) if select_fields else "*"),
            *filter_params(filter),
            # Stable order keeps page ranges from overlapping
            ("order", f"{row_key(table)}.asc"),
            ("offset", str(offset)),
            ("limit", str(limit)),
        ]
        response = await self._request("GET", f"/{table}", params=params)
        return response.json()

    async def call_procedure(self, name: str, args: dict[str, Any]) -> list[dict[str, Any]]:
        logger.debug(LogMessage.PROCEDURE_CALL.format(name))
        response = await self._request("POST", f"{RPC_PATH}/{name}", json=args)
        data = response.json()
        if isinstance(data, dict):
            return [data]
        return data or []
