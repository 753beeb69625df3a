"""Render options shared by every renderer."""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from flowviz.core.settings import VisualizerSettings, get_settings
from flowviz.performance import HeatmapData, HeatMetric, HeatThresholds

if TYPE_CHECKING:
    from flowviz.timetravel import Snapshot

Direction = Literal["TB", "BT", "LR", "RL"]
Theme = Literal["auto", "light", "dark"]

DIRECTIONS: tuple[str, ...] = ("TB", "BT", "LR", "RL")
DIRECTION_ALIASES = {"TD": "TB"}


@dataclass
class RenderOptions:
    """Options recognized by the renderers.

    Overlays (retry/error/timeout edges, expanded retry logic, inline
    declared errors, heatmap) never change the output when disabled.

    Attributes:
        show_timings: Append durations to node labels.
        show_keys: Append the cache key to labels that also have a name.
        direction: Layout direction (TB, BT, LR, RL; TD accepted for TB).
        show_retry_edges: Self-loop summarizing the retry count.
        show_error_edges: Error exit node for failed steps.
        show_timeout_edges: Timeout exit node for timed-out steps.
        expand_retry: Retry-logic diamond with success / exhausted outcomes.
        show_inline_errors: Terminal node per declared error of a step.
        show_heatmap: Use heat classes where heat data exists.
        heatmap_metric: Metric the HTML metric selector starts on.
        heatmap_data: Heat values from ``PerformanceAnalyzer.get_heatmap``.
        heat_thresholds: Bucketing for heat values; settings when omitted.
        show_hooks: Render lifecycle hook nodes and annotations.
        theme: HTML theme.
        interactive: HTML pan/zoom and inspector.
        time_travel: HTML timeline scrubber.
        heatmap: HTML heatmap toggle control.
        title: Document/diagram title.
        terminal_width: Width of the text renderer header.
        colors: ANSI colors in the text renderer.
        snapshots: Snapshots embedded for HTML time travel.
    """

    show_timings: bool = True
    show_keys: bool = False
    direction: Direction = "TB"
    show_retry_edges: bool = True
    show_error_edges: bool = True
    show_timeout_edges: bool = True
    expand_retry: bool = False
    show_inline_errors: bool = False
    show_heatmap: bool = False
    heatmap_metric: HeatMetric = HeatMetric.DURATION
    heatmap_data: HeatmapData | None = None
    heat_thresholds: HeatThresholds | None = None
    show_hooks: bool = True
    theme: Theme = "auto"
    interactive: bool = True
    time_travel: bool = True
    heatmap: bool = True
    title: str | None = None
    terminal_width: int = 60
    colors: bool = False
    snapshots: Sequence[Snapshot] | None = None

    @classmethod
    def from_settings(cls, settings: VisualizerSettings | None = None, **overrides: Any) -> RenderOptions:
        """Options seeded from settings, with explicit overrides winning."""
        settings = settings or get_settings()
        base = cls(
            show_timings=settings.show_timings,
            show_keys=settings.show_keys,
            direction=settings.default_direction,
            theme=settings.default_theme,
            terminal_width=settings.terminal_width,
            heat_thresholds=settings.heat_thresholds(),
        )
        return dataclasses.replace(base, **overrides)

    def replace(self, **changes: Any) -> RenderOptions:
        return dataclasses.replace(self, **changes)

    @property
    def layout_direction(self) -> str:
        direction = DIRECTION_ALIASES.get(str(self.direction).upper(), str(self.direction).upper())
        return direction if direction in DIRECTIONS else "TB"

    @property
    def thresholds(self) -> HeatThresholds:
        return self.heat_thresholds or get_settings().heat_thresholds()


__all__ = ["RenderOptions", "Direction", "Theme", "DIRECTIONS"]
