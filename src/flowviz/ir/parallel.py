"""Concurrency group detection for event streams without scope markers.

Engines that run steps concurrently without emitting ``scope_start`` /
``scope_end`` produce a flat sibling list whose timestamps overlap. This pass
wraps each maximal run of overlapping step nodes into a synthetic
``ParallelNode`` so renderers show the fork/join.

Rules:
    - Only ``StepNode`` siblings with a ``start_ts`` can be grouped.
    - Any other node (decision, stream, explicit container, unknown) is a hard
      boundary: a group never spans it, whatever the timestamps say.
    - A step without ``end_ts`` is still running and treated as open-ended.
    - With ``inclusive=True`` (default) intervals that merely touch
      (``a.end_ts == b.start_ts``) count as overlapping.

The pass is pure: inputs are never mutated, unchanged nodes are shared.
"""

from __future__ import annotations

import dataclasses
import itertools
import math
from collections.abc import Iterator
from dataclasses import dataclass

from flowviz.ir.models import (
    DecisionNode,
    FlowNode,
    NodeState,
    ParallelNode,
    ScopeMode,
    StepNode,
    WorkflowIR,
)

DETECTED_GROUP_NAME = "Parallel (detected)"


@dataclass(frozen=True)
class ParallelDetectorOptions:
    """Tuning for the overlap test.

    Attributes:
        min_overlap_ms: Overlap required before two steps count as concurrent.
        inclusive: Treat boundary-equal timestamps as overlapping.
    """

    min_overlap_ms: float = 0.0
    inclusive: bool = True


def _interval(node: StepNode) -> tuple[float, float]:
    end = node.end_ts if node.end_ts is not None else math.inf
    return node.start_ts, end  # type: ignore[return-value]


def _overlaps(a: tuple[float, float], b: tuple[float, float], options: ParallelDetectorOptions) -> bool:
    overlap = min(a[1], b[1]) - max(a[0], b[0])
    if options.inclusive:
        return overlap >= options.min_overlap_ms
    return overlap > options.min_overlap_ms


def _group_state(members: list[StepNode]) -> NodeState:
    states = {m.state for m in members}
    if NodeState.ERROR in states:
        return NodeState.ERROR
    if NodeState.RUNNING in states or NodeState.PENDING in states:
        return NodeState.RUNNING
    if NodeState.ABORTED in states:
        return NodeState.ABORTED
    return NodeState.SUCCESS


def _make_group(members: list[StepNode], counter: Iterator[int]) -> ParallelNode:
    start = min(m.start_ts for m in members)  # type: ignore[type-var]
    ends = [m.end_ts for m in members]
    end = None if any(e is None for e in ends) else max(ends)  # type: ignore[type-var]
    return ParallelNode(
        id=f"detected_parallel_{next(counter)}",
        name=DETECTED_GROUP_NAME,
        state=_group_state(members),
        start_ts=start,
        end_ts=end,
        duration_ms=None if end is None else end - start,
        children=list(members),
        mode=ScopeMode.ALL,
        detected=True,
    )


def detect_parallel_groups(
    siblings: list[FlowNode],
    options: ParallelDetectorOptions | None = None,
    *,
    counter: Iterator[int] | None = None,
) -> list[FlowNode]:
    """Return ``siblings`` with overlapping step runs wrapped in parallel nodes.

    Parameters
    ----------
    siblings
        Ordered children of one scope (not an explicit parallel/race).
    options
        Overlap tuning; defaults to inclusive with zero minimum overlap.
    counter
        Id source shared across one detection pass; a fresh one starts at 1.
    """
    options = options or ParallelDetectorOptions()
    counter = counter if counter is not None else itertools.count(1)

    result: list[FlowNode] = []
    group: list[StepNode] = []
    span: tuple[float, float] | None = None

    def flush() -> None:
        nonlocal group, span
        if len(group) > 1:
            result.append(_make_group(group, counter))
        else:
            result.extend(group)
        group, span = [], None

    for node in siblings:
        if not isinstance(node, StepNode) or node.start_ts is None:
            flush()
            result.append(node)
            continue
        interval = _interval(node)
        if span is not None and _overlaps(span, interval, options):
            group.append(node)
            span = (min(span[0], interval[0]), max(span[1], interval[1]))
            continue
        flush()
        group, span = [node], interval

    flush()
    return result


def _detect_in(nodes: list[FlowNode], options: ParallelDetectorOptions, counter: Iterator[int]) -> list[FlowNode]:
    out: list[FlowNode] = []
    for node in nodes:
        if isinstance(node, DecisionNode) and node.branches:
            node = dataclasses.replace(
                node,
                branches=[
                    dataclasses.replace(b, children=_detect_in(b.children, options, counter))
                    for b in node.branches
                ],
            )
        out.append(node)
    return detect_parallel_groups(out, options, counter=counter)


def apply_parallel_detection(ir: WorkflowIR, options: ParallelDetectorOptions | None = None) -> WorkflowIR:
    """Return a view of ``ir`` with detection applied at the root and in
    decision branches. Explicit parallel/race containers are left as-is."""
    options = options or ParallelDetectorOptions()
    counter = itertools.count(1)
    root = dataclasses.replace(ir.root, children=_detect_in(ir.root.children, options, counter))
    return WorkflowIR(root=root, metadata=ir.metadata, hooks=ir.hooks)


__all__ = [
    "ParallelDetectorOptions",
    "DETECTED_GROUP_NAME",
    "detect_parallel_groups",
    "apply_parallel_detection",
]
