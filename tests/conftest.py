"""Shared fixtures for the reply analytics test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from reply_analytics.models import Filter
from reply_analytics.port import InMemoryQueryPort

# January 2025; the 1st is a Wednesday
WINDOW_START = datetime(2025, 1, 1, tzinfo=timezone.utc)
WINDOW_END = datetime(2025, 2, 1, tzinfo=timezone.utc)


class RecordingPort(InMemoryQueryPort):
    """In-memory port that records calls and injects failures.

    Attributes:
        calls: ``(method, table, offset)`` per call, in call order.
        fail_offsets: Page offsets whose fetch raises.
        fail_count: Whether count raises.
        count_bias: Added to the real count, to simulate concurrent writes.
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.calls: list[tuple[str, str, int | None]] = []
        self.fail_offsets: set[int] = set()
        self.fail_count = False
        self.count_bias = 0
        self.on_page: Callable[[int], None] | None = None

    def calls_to(self, method: str) -> list[tuple[str, str, int | None]]:
        return [call for call in self.calls if call[0] == method]

    async def count(self, table, filter):
        self.calls.append(("count", table, None))
        if self.fail_count:
            raise ConnectionError("count timed out")
        return await super().count(table, filter) + self.count_bias

    async def fetch_page(self, table, filter, select_fields, offset, limit):
        self.calls.append(("fetch_page", table, offset))
        if self.on_page is not None:
            self.on_page(offset)
        if offset in self.fail_offsets:
            raise ConnectionError(f"connection reset at offset {offset}")
        return await super().fetch_page(table, filter, select_fields, offset, limit)

    async def call_procedure(self, name, args):
        self.calls.append(("call_procedure", name, None))
        return await super().call_procedure(name, args)


def comparison_row(index: int, **overrides: Any) -> dict[str, Any]:
    """Comparison row spread over January 2025."""
    row = {
        "id": index,
        "created_at": (WINDOW_START + timedelta(hours=index % (24 * 30))).isoformat(),
        "human_reply_date": None,
        "request_subtype": "billing",
        "request_sub_subtype": None,
        "prompt_version": "v1",
        "email": "agent@example.com",
        "changed": False,
        "change_classification": None,
        "reviewer_name": None,
        "thread_id": f"t-{index}",
        "status": None,
    }
    row.update(overrides)
    return row


def thread_row(thread_id: str, **overrides: Any) -> dict[str, Any]:
    """Support thread row created on 10 January 2025."""
    row = {
        "thread_id": thread_id,
        "created_at": "2025-01-10T12:00:00+00:00",
        "status": "pending_response",
        "request_type": "question",
        "request_subtype": "billing",
        "prompt_version": "v1",
        "ai_draft_reply": "Draft",
        "changed": False,
        "requires_reply": False,
        "requires_identification": False,
        "requires_editing": False,
        "requires_subscription_info": False,
        "requires_tracking_info": False,
    }
    row.update(overrides)
    return row


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def window() -> Filter:
    """Filter covering January 2025 with no other constraints."""
    return Filter.create(start=WINDOW_START, end=WINDOW_END)


@pytest.fixture
def make_port() -> Callable[..., RecordingPort]:
    return RecordingPort


@pytest.fixture
def make_comparison_row() -> Callable[..., dict[str, Any]]:
    return comparison_row


@pytest.fixture
def make_thread_row() -> Callable[..., dict[str, Any]]:
    return thread_row
