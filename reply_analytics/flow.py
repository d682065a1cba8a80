"""AI draft flow graph: created -> used/edited -> resolved/pending."""

from collections import Counter
from typing import Iterable

from .constants import (
    FLOW_NODE_LABELS,
    RESOLVED_STATUSES,
    FlowAttribution,
    FlowNodeId,
    RequirementFlag,
)
from .models import FlowEdge, FlowGraph, FlowNode, SupportThreadRecord


def is_edited(thread: SupportThreadRecord) -> bool:
    """Whether a drafted thread needed human editing."""
    return thread.flag(RequirementFlag.REQUIRES_EDITING) or bool(thread.changed)


def is_resolved(thread: SupportThreadRecord) -> bool:
    return thread.status in RESOLVED_STATUSES


def build_flow(
    threads: Iterable[SupportThreadRecord],
    *,
    attribution: FlowAttribution = FlowAttribution.PER_THREAD,
) -> FlowGraph:
    """Build the six-node flow graph of AI drafts.

    Threads without an AI draft go to ``rejected``, which has no outgoing
    edges. Drafted threads flow from ``created`` to ``used`` or ``edited`` and
    on to ``resolved`` or ``pending`` by status.

    With ``PER_THREAD`` attribution every outcome edge counts the threads that
    actually took that path. ``EVEN_SPLIT`` ignores the link between a thread's
    edit state and its outcome and gives each of ``used`` and ``edited`` half
    of the resolved and pending totals (floor division), capped so a node
    never sends out more than it received. It is an approximation for data
    that lacks the per-thread link.

    Args:
        threads: Support threads to trace.
        attribution: How outcomes are attributed to used/edited drafts.

    Returns:
        FlowGraph: All six nodes and the non-zero edges.
    """
    nodes: Counter[str] = Counter()
    paths: Counter[tuple[str, str]] = Counter()

    for thread in threads:
        if not thread.has_ai_draft:
            nodes[FlowNodeId.REJECTED] += 1
            continue

        nodes[FlowNodeId.CREATED] += 1
        handling = FlowNodeId.EDITED if is_edited(thread) else FlowNodeId.USED
        outcome = FlowNodeId.RESOLVED if is_resolved(thread) else FlowNodeId.PENDING
        nodes[handling] += 1
        nodes[outcome] += 1
        paths[(handling, outcome)] += 1

    weights: dict[tuple[str, str], int] = {
        (FlowNodeId.CREATED, FlowNodeId.USED): nodes[FlowNodeId.USED],
        (FlowNodeId.CREATED, FlowNodeId.EDITED): nodes[FlowNodeId.EDITED],
    }
    if attribution is FlowAttribution.EVEN_SPLIT:
        weights.update(_even_split(nodes))
    else:
        for handling in (FlowNodeId.USED, FlowNodeId.EDITED):
            for outcome in (FlowNodeId.RESOLVED, FlowNodeId.PENDING):
                weights[(handling, outcome)] = paths[(handling, outcome)]

    return FlowGraph(
        nodes=[
            FlowNode(id=node_id, label=FLOW_NODE_LABELS[node_id], count=nodes[node_id])
            for node_id in FlowNodeId
        ],
        edges=[
            FlowEdge(source=source, target=target, value=value)
            for (source, target), value in weights.items()
            if value > 0
        ],
        attribution=attribution,
    )


def _even_split(nodes: Counter[str]) -> dict[tuple[str, str], int]:
    half_resolved = nodes[FlowNodeId.RESOLVED] // 2
    half_pending = nodes[FlowNodeId.PENDING] // 2

    weights: dict[tuple[str, str], int] = {}
    for handling in (FlowNodeId.USED, FlowNodeId.EDITED):
        available = nodes[handling]
        resolved = min(half_resolved, available)
        pending = min(half_pending, available - resolved)
        weights[(handling, FlowNodeId.RESOLVED)] = resolved
        weights[(handling, FlowNodeId.PENDING)] = pending
    return weights
