"""
flowviz - event-sourced workflow execution visualizer.

WHY
───
A running workflow engine emits a stream of lifecycle events (step started,
retried, cached, scope opened, branch taken, ...). flowviz folds that stream
into a hierarchical execution tree and renders it, live or after the fact,
so you can see what actually happened, including in broken or partial runs.

ARCHITECTURE
────────────
::

    WorkflowEvent stream
      │
      ▼
    IRBuilder ──────────────► WorkflowIR (live tree)
      │                          │
      │                          ├── apply_parallel_detection  (on read)
      │                          │
      ▼                          ▼
    TimeTravelController     render_mermaid / render_html
      snapshots, play/seek   render_text   / render_json
                                 ▲
    PerformanceAnalyzer ─────────┘ heatmap overlay (HeatmapData)

    WorkflowVisualizer     ─ facade: events in, any format out
    EventCollector         ─ buffer now, visualize later
    track_if / track_switch ─ emit decision events from workflow code

MODULE MAP (recommended reading order)
──────────────────────────────────────
1. core/                 ─ errors, structured logging, settings, timing
2. events.py             ─ event dataclasses + mapping codec
3. ir/models.py          ─ node dataclasses, WorkflowIR, clone_ir
4. ir/builder.py         ─ event → IR fold
5. ir/parallel.py        ─ overlap-based concurrency grouping
6. ir/decisions.py       ─ decision tracking helpers
7. timetravel.py         ─ snapshots and playback
8. performance.py        ─ cross-run metrics and heat levels
9. render/               ─ Mermaid, HTML, text and JSON renderers
10. visualizer.py        ─ facade and helpers

Example::

    from flowviz import create_visualizer

    viz = create_visualizer(workflow_name="checkout")
    for event in engine_events:
        viz.handle_event(event)
    print(viz.render_as("mermaid"))
"""

from flowviz.core.errors import (
    ErrorCategory,
    EventError,
    FlowvizError,
    InvalidConfigError,
    RenderError,
    UnknownEventError,
    UnknownFormatError,
)
from flowviz.core.logging import configure_logging, get_logger
from flowviz.core.settings import VisualizerSettings, clear_settings_cache, get_settings
from flowviz.events import (
    DecisionBranchEvent,
    DecisionEndEvent,
    DecisionStartEvent,
    EventType,
    HookEvent,
    ScopeEndEvent,
    ScopeStartEvent,
    StepEvent,
    StreamEvent,
    WorkflowEvent,
    WorkflowLifecycleEvent,
    event_from_dict,
    event_to_dict,
)
from flowviz.ir import (
    DecisionBranch,
    DecisionNode,
    IRBuilder,
    NodeState,
    ParallelDetectorOptions,
    ParallelNode,
    RaceNode,
    StepNode,
    StreamNode,
    WorkflowIR,
    WorkflowNode,
    apply_parallel_detection,
    clone_ir,
    detect_parallel_groups,
    ir_from_dict,
    track_decision,
    track_if,
    track_switch,
)
from flowviz.performance import HeatLevel, HeatmapData, HeatMetric, HeatThresholds, PerformanceAnalyzer
from flowviz.render import (
    RenderOptions,
    get_renderer,
    render_html,
    render_json,
    render_mermaid,
    render_text,
)
from flowviz.timetravel import Snapshot, ThreadPlaybackTimer, TimeTravelController, TimeTravelState
from flowviz.visualizer import (
    EventCollector,
    WorkflowVisualizer,
    combine_event_handlers,
    create_visualizer,
    visualize_events,
)

__version__ = "0.1.0"

__all__ = [
    # errors / infra
    "ErrorCategory",
    "EventError",
    "FlowvizError",
    "InvalidConfigError",
    "RenderError",
    "UnknownEventError",
    "UnknownFormatError",
    "configure_logging",
    "get_logger",
    "VisualizerSettings",
    "clear_settings_cache",
    "get_settings",
    # events
    "DecisionBranchEvent",
    "DecisionEndEvent",
    "DecisionStartEvent",
    "EventType",
    "HookEvent",
    "ScopeEndEvent",
    "ScopeStartEvent",
    "StepEvent",
    "StreamEvent",
    "WorkflowEvent",
    "WorkflowLifecycleEvent",
    "event_from_dict",
    "event_to_dict",
    # IR
    "DecisionBranch",
    "DecisionNode",
    "IRBuilder",
    "NodeState",
    "ParallelDetectorOptions",
    "ParallelNode",
    "RaceNode",
    "StepNode",
    "StreamNode",
    "WorkflowIR",
    "WorkflowNode",
    "apply_parallel_detection",
    "clone_ir",
    "detect_parallel_groups",
    "ir_from_dict",
    "track_decision",
    "track_if",
    "track_switch",
    # analysis / playback
    "HeatLevel",
    "HeatMetric",
    "HeatThresholds",
    "HeatmapData",
    "PerformanceAnalyzer",
    "Snapshot",
    "ThreadPlaybackTimer",
    "TimeTravelController",
    "TimeTravelState",
    # rendering
    "RenderOptions",
    "get_renderer",
    "render_html",
    "render_json",
    "render_mermaid",
    "render_text",
    # facade
    "EventCollector",
    "WorkflowVisualizer",
    "combine_event_handlers",
    "create_visualizer",
    "visualize_events",
]
