"""
Performance aggregation and heatmap bucketing.

Collects per-step metrics across one or more completed IRs and turns them
into normalized heat values that renderers overlay on diagrams.

Aggregation key:
    ``node.key`` if set, else ``node.name``, else ``node.id``. Renderers use
    the same precedence (``render.common.heat_lookup_key``) so overlays line
    up with the nodes they describe.

Metrics:
    - ``duration``   average observed duration, min-max normalized across keys
                     (a single key, or all-equal durations, maps to 0.5)
    - ``retryRate``  retries / invocations, clamped to [0, 1]
    - ``errorRate``  errors / invocations, clamped to [0, 1]

Heat levels:
    ::

        0 ── cool ── neutral ── warm ── hot ── critical ── 1
        cold   cool    neutral   warm   hot    critical

    The lower bounds are configuration (``HeatThresholds``, defaulting to
    ``VisualizerSettings``), optionally per metric.

Example::

    analyzer = PerformanceAnalyzer()
    for ir in completed_runs:
        analyzer.add_ir(ir)
    heat = analyzer.get_heatmap(HeatMetric.DURATION)
    render_mermaid(ir, RenderOptions(show_heatmap=True, heatmap_data=heat))
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from flowviz.core.errors import InvalidConfigError
from flowviz.core.logging import get_logger
from flowviz.core.settings import get_settings
from flowviz.events import WorkflowEvent
from flowviz.ir.builder import IRBuilder
from flowviz.ir.models import NodeState, StepNode, WorkflowIR, is_terminal, iter_nodes

logger = get_logger(__name__)


class HeatLevel(str, Enum):
    COLD = "cold"
    COOL = "cool"
    NEUTRAL = "neutral"
    WARM = "warm"
    HOT = "hot"
    CRITICAL = "critical"


class HeatMetric(str, Enum):
    DURATION = "duration"
    RETRY_RATE = "retryRate"
    ERROR_RATE = "errorRate"


@dataclass(frozen=True)
class HeatThresholds:
    """Lower bounds (normalized 0..1) of each level above ``cold``."""

    cool: float = 0.2
    neutral: float = 0.4
    warm: float = 0.6
    hot: float = 0.8
    critical: float = 0.95

    def __post_init__(self) -> None:
        bounds = [self.cool, self.neutral, self.warm, self.hot, self.critical]
        for name, value in zip(("cool", "neutral", "warm", "hot", "critical"), bounds):
            if not 0 <= value <= 1:
                raise InvalidConfigError(f"heat_thresholds.{name}", value, "heat thresholds must be within [0, 1]")
        if any(b <= a for a, b in zip(bounds, bounds[1:])):
            raise InvalidConfigError("heat_thresholds", bounds, "heat thresholds must be strictly increasing")

    def classify(self, value: float) -> HeatLevel:
        if value >= self.critical:
            return HeatLevel.CRITICAL
        if value >= self.hot:
            return HeatLevel.HOT
        if value >= self.warm:
            return HeatLevel.WARM
        if value >= self.neutral:
            return HeatLevel.NEUTRAL
        if value >= self.cool:
            return HeatLevel.COOL
        return HeatLevel.COLD


@dataclass
class NodePerformance:
    """Aggregated metrics for one aggregation key."""

    key: str
    node_id: str
    name: str | None = None
    invocations: int = 0
    retries: int = 0
    errors: int = 0
    timeouts: int = 0
    durations: list[float] = field(default_factory=list)

    @property
    def avg_duration_ms(self) -> float | None:
        return sum(self.durations) / len(self.durations) if self.durations else None

    @property
    def min_duration_ms(self) -> float | None:
        return min(self.durations) if self.durations else None

    @property
    def max_duration_ms(self) -> float | None:
        return max(self.durations) if self.durations else None

    @property
    def p50_duration_ms(self) -> float | None:
        return _percentile(self.durations, 50)

    @property
    def p95_duration_ms(self) -> float | None:
        return _percentile(self.durations, 95)

    @property
    def retry_rate(self) -> float:
        return self.retries / self.invocations if self.invocations else 0.0

    @property
    def error_rate(self) -> float:
        return self.errors / self.invocations if self.invocations else 0.0

    @property
    def timeout_rate(self) -> float:
        return self.timeouts / self.invocations if self.invocations else 0.0

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "node_id": self.node_id,
            "name": self.name,
            "invocations": self.invocations,
            "avg_duration_ms": self.avg_duration_ms,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "p50_duration_ms": self.p50_duration_ms,
            "p95_duration_ms": self.p95_duration_ms,
            "retry_rate": self.retry_rate,
            "error_rate": self.error_rate,
            "timeout_rate": self.timeout_rate,
        }


@dataclass(frozen=True)
class HeatmapStats:
    min: float
    max: float
    mean: float
    count: int


@dataclass(frozen=True)
class HeatmapData:
    """Normalized heat per aggregation key, for renderer overlays."""

    heat: Mapping[str, float]
    metric: HeatMetric
    stats: HeatmapStats

    def to_dict(self) -> dict:
        return {
            "heat": dict(self.heat),
            "metric": self.metric.value,
            "stats": {
                "min": self.stats.min,
                "max": self.stats.max,
                "mean": self.stats.mean,
                "count": self.stats.count,
            },
        }


def _percentile(values: list[float], pct: float) -> float | None:
    if not values:
        return None
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


def aggregation_key(node: StepNode) -> str:
    return node.key or node.name or node.id


def _collect(irs: Iterable[WorkflowIR], into: dict[str, NodePerformance]) -> None:
    for ir in irs:
        for node in iter_nodes(ir.root.children):
            if not isinstance(node, StepNode) or not is_terminal(node.state):
                continue
            key = aggregation_key(node)
            perf = into.get(key)
            if perf is None:
                perf = into[key] = NodePerformance(key=key, node_id=node.id, name=node.name)
            perf.invocations += 1
            perf.retries += node.retry_count
            if node.state == NodeState.ERROR:
                perf.errors += 1
            if node.timed_out:
                perf.timeouts += 1
            if node.duration_ms is not None:
                perf.durations.append(node.duration_ms)


class PerformanceAnalyzer:
    """Accumulates runs and produces heatmaps.

    Parameters
    ----------
    thresholds
        Default bucketing for every metric; from settings when omitted.
    thresholds_by_metric
        Per-metric overrides.
    """

    def __init__(
        self,
        thresholds: HeatThresholds | None = None,
        thresholds_by_metric: Mapping[HeatMetric, HeatThresholds] | None = None,
    ) -> None:
        if thresholds is None:
            thresholds = get_settings().heat_thresholds()
        self._thresholds = thresholds
        self._by_metric = dict(thresholds_by_metric or {})
        self._perf: dict[str, NodePerformance] = {}
        self._run_count = 0

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def add_ir(self, ir: WorkflowIR) -> None:
        _collect([ir], self._perf)
        self._run_count += 1
        logger.debug("performance_run_added", workflow_id=ir.root.workflow_id, runs=self._run_count)

    def add_run(self, events: Iterable[WorkflowEvent]) -> WorkflowIR:
        """Build an IR from ``events`` and add it. Returns the IR."""
        builder = IRBuilder()
        for event in events:
            builder.handle_event(event)
        ir = builder.get_ir()
        self.add_ir(ir)
        return ir

    def analyze(self, irs: Iterable[WorkflowIR]) -> dict[str, NodePerformance]:
        """Per-key metrics for exactly ``irs`` (accumulated runs untouched)."""
        result: dict[str, NodePerformance] = {}
        _collect(irs, result)
        return result

    def clear(self) -> None:
        self._perf.clear()
        self._run_count = 0

    @property
    def run_count(self) -> int:
        return self._run_count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_node_performance(self, key: str) -> NodePerformance | None:
        return self._perf.get(key)

    def get_all_performance(self) -> dict[str, NodePerformance]:
        return dict(self._perf)

    def get_slowest_nodes(self, limit: int = 5) -> list[NodePerformance]:
        timed = [p for p in self._perf.values() if p.durations]
        return sorted(timed, key=lambda p: p.avg_duration_ms or 0.0, reverse=True)[:limit]

    def get_error_prone_nodes(self, limit: int = 5) -> list[NodePerformance]:
        failing = [p for p in self._perf.values() if p.errors]
        return sorted(failing, key=lambda p: p.error_rate, reverse=True)[:limit]

    def thresholds_for(self, metric: HeatMetric) -> HeatThresholds:
        return self._by_metric.get(metric, self._thresholds)

    def classify(self, value: float, metric: HeatMetric = HeatMetric.DURATION) -> HeatLevel:
        """Bucket a normalized value (clamped to [0, 1])."""
        value = min(1.0, max(0.0, value))
        return self.thresholds_for(HeatMetric(metric)).classify(value)

    def get_heatmap(
        self,
        metric: HeatMetric = HeatMetric.DURATION,
        performance: Mapping[str, NodePerformance] | None = None,
    ) -> HeatmapData:
        """Normalized heat per key for ``metric``.

        Uses the accumulated runs unless ``performance`` (e.g. the result of
        ``analyze``) is passed.
        """
        metric = HeatMetric(metric)
        perf = self._perf if performance is None else performance
        raw: dict[str, float] = {}
        for key, p in perf.items():
            match metric:
                case HeatMetric.DURATION:
                    if p.avg_duration_ms is not None:
                        raw[key] = p.avg_duration_ms
                case HeatMetric.RETRY_RATE:
                    raw[key] = p.retry_rate
                case HeatMetric.ERROR_RATE:
                    raw[key] = p.error_rate

        if not raw:
            return HeatmapData(heat={}, metric=metric, stats=HeatmapStats(0.0, 0.0, 0.0, 0))

        values = list(raw.values())
        low, high = min(values), max(values)
        stats = HeatmapStats(min=low, max=high, mean=sum(values) / len(values), count=len(values))

        if metric == HeatMetric.DURATION:
            span = high - low
            heat = {k: 0.5 if span == 0 else (v - low) / span for k, v in raw.items()}
        else:
            heat = {k: min(1.0, max(0.0, v)) for k, v in raw.items()}
        return HeatmapData(heat=heat, metric=metric, stats=stats)


__all__ = [
    "HeatLevel",
    "HeatMetric",
    "HeatThresholds",
    "NodePerformance",
    "HeatmapStats",
    "HeatmapData",
    "PerformanceAnalyzer",
    "aggregation_key",
]
