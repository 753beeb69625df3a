"""Workflow visualizer facade - events in, diagrams out.

``WorkflowVisualizer`` is the entry point most callers need: feed it events
(dataclasses or the engine's JSON mappings) as they happen and render the
current state in any registered format.

Architecture::

    engine events ─► WorkflowVisualizer.handle_event
                        │
                        ├── event_from_dict (mappings)
                        ├── IRBuilder.handle_event
                        └── on_update listeners ◄── get_ir()
                                                   │
                                                   ▼
                     get_ir() = apply_parallel_detection(builder.get_ir())
                                                   │
                     render_as("mermaid" | "html" | "text" | "json")

    EventCollector      buffers events, visualizes them on demand
    visualize_events    one-shot: events → rendered string
    combine_event_handlers  fan one event out to several handlers

Example::

    viz = create_visualizer(workflow_name="checkout")
    for event in events:
        viz.handle_event(event)
    print(viz.render())                 # terminal text
    print(viz.render_as("mermaid"))     # Mermaid flowchart
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from flowviz.core.logging import get_logger
from flowviz.core.settings import VisualizerSettings, get_settings
from flowviz.events import DECISION_EVENT_TYPES, SCOPE_EVENT_TYPES, WorkflowEvent, event_from_dict
from flowviz.ir.builder import IRBuilder
from flowviz.ir.models import WorkflowIR
from flowviz.ir.parallel import ParallelDetectorOptions, apply_parallel_detection
from flowviz.render import get_renderer
from flowviz.render.options import RenderOptions

logger = get_logger(__name__)

EventInput = WorkflowEvent | Mapping[str, Any]
UpdateListener = Callable[[WorkflowIR], None]


def _coerce_event(event: EventInput) -> WorkflowEvent | None:
    if isinstance(event, Mapping):
        return event_from_dict(event)
    return event


class WorkflowVisualizer:
    """Builds the IR from live events and renders it.

    Parameters
    ----------
    workflow_name
        Display name for the workflow root.
    detect_parallel
        Group overlapping sibling steps into synthetic parallel nodes on read.
    show_timings, show_keys
        Render defaults; from settings when omitted.
    parallel_options
        Overlap rules for detection.
    settings
        Settings instance; the process-wide settings by default.
    """

    def __init__(
        self,
        workflow_name: str | None = None,
        *,
        detect_parallel: bool = True,
        show_timings: bool | None = None,
        show_keys: bool | None = None,
        parallel_options: ParallelDetectorOptions | None = None,
        settings: VisualizerSettings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._builder = IRBuilder(workflow_name)
        self._detect_parallel = detect_parallel
        self._parallel_options = parallel_options
        self._show_timings = self._settings.show_timings if show_timings is None else show_timings
        self._show_keys = self._settings.show_keys if show_keys is None else show_keys
        self._listeners: list[UpdateListener] = []

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def handle_event(self, event: EventInput) -> None:
        """Apply one event (dataclass or mapping) and notify listeners."""
        decoded = _coerce_event(event)
        if decoded is None:
            logger.debug("visualizer_event_dropped", event_type=_raw_type(event))
            return
        self._builder.handle_event(decoded)
        self._notify()

    def handle_scope_event(self, event: EventInput) -> None:
        """Apply a ``scope_start`` / ``scope_end`` event; other types are ignored."""
        self._handle_family(event, SCOPE_EVENT_TYPES, "scope")

    def handle_decision_event(self, event: EventInput) -> None:
        """Apply a ``decision_*`` event; other types are ignored."""
        self._handle_family(event, DECISION_EVENT_TYPES, "decision")

    def _handle_family(self, event: EventInput, types: frozenset, family: str) -> None:
        decoded = _coerce_event(event)
        if decoded is None or decoded.type not in types:
            logger.debug("visualizer_event_wrong_family", family=family, event_type=_raw_type(event))
            return
        self._builder.handle_event(decoded)
        self._notify()

    # ------------------------------------------------------------------
    # IR and rendering
    # ------------------------------------------------------------------

    def get_ir(self) -> WorkflowIR:
        """Current IR, with concurrency detection applied when enabled."""
        ir = self._builder.get_ir()
        if self._detect_parallel:
            return apply_parallel_detection(ir, self._parallel_options)
        return ir

    def default_options(self, **overrides: Any) -> RenderOptions:
        return RenderOptions.from_settings(
            self._settings,
            show_timings=self._show_timings,
            show_keys=self._show_keys,
            **overrides,
        )

    def render(self) -> str:
        """Terminal text rendering of the current IR."""
        return self.render_as("text")

    def render_as(self, fmt: str, options: RenderOptions | None = None) -> str:
        """Render in ``fmt`` (text/ascii, mermaid, html, json).

        Raises:
            UnknownFormatError: If ``fmt`` is not a registered format.
        """
        renderer = get_renderer(fmt)
        return renderer(self.get_ir(), options or self.default_options())

    # ------------------------------------------------------------------
    # Listeners / lifecycle
    # ------------------------------------------------------------------

    def on_update(self, callback: UpdateListener) -> Callable[[], None]:
        """Call ``callback(ir)`` after every applied event. Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        ir = self.get_ir()
        for listener in list(self._listeners):
            try:
                listener(ir)
            except Exception as e:
                logger.exception("visualizer_listener_failed", error=str(e))

    def reset(self) -> None:
        self._builder.reset()
        self._notify()

    @property
    def builder(self) -> IRBuilder:
        return self._builder

    @property
    def workflow_id(self) -> str | None:
        return self._builder.workflow_id


def _raw_type(event: Any) -> Any:
    if isinstance(event, Mapping):
        return event.get("type")
    return getattr(event, "type", type(event).__name__)


def create_visualizer(workflow_name: str | None = None, **kwargs: Any) -> WorkflowVisualizer:
    """Factory mirroring ``WorkflowVisualizer(...)``."""
    return WorkflowVisualizer(workflow_name, **kwargs)


# ---------------------------------------------------------------------------
# Collecting and one-shot helpers
# ---------------------------------------------------------------------------

class EventCollector:
    """Buffers events for later visualization.

    Useful as an engine ``on_event`` callback when the diagram is only
    wanted after the run (e.g. in a test failure report).
    """

    def __init__(self, workflow_name: str | None = None, *, detect_parallel: bool = True, **kwargs: Any) -> None:
        self._workflow_name = workflow_name
        self._detect_parallel = detect_parallel
        self._kwargs = kwargs
        self._events: list[WorkflowEvent] = []

    def handle_event(self, event: EventInput) -> None:
        decoded = _coerce_event(event)
        if decoded is None:
            logger.debug("collector_event_dropped", event_type=_raw_type(event))
            return
        self._events.append(decoded)

    def __call__(self, event: EventInput) -> None:
        self.handle_event(event)

    def __len__(self) -> int:
        return len(self._events)

    def get_events(self) -> list[WorkflowEvent]:
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    def _visualizer(self) -> WorkflowVisualizer:
        viz = WorkflowVisualizer(self._workflow_name, detect_parallel=self._detect_parallel, **self._kwargs)
        for event in self._events:
            viz.handle_event(event)
        return viz

    def get_ir(self) -> WorkflowIR:
        return self._visualizer().get_ir()

    def visualize(self) -> str:
        return self._visualizer().render()

    def visualize_as(self, fmt: str, options: RenderOptions | None = None) -> str:
        return self._visualizer().render_as(fmt, options)


def visualize_events(
    events: Iterable[EventInput],
    fmt: str = "text",
    options: RenderOptions | None = None,
    *,
    workflow_name: str | None = None,
    detect_parallel: bool = True,
) -> str:
    """Build an IR from ``events`` and render it in one call."""
    viz = WorkflowVisualizer(workflow_name, detect_parallel=detect_parallel)
    for event in events:
        viz.handle_event(event)
    return viz.render_as(fmt, options)


def combine_event_handlers(*handlers: Callable[[Any], Any]) -> Callable[[Any], None]:
    """One handler that forwards each event to every ``handler`` in order.

    A failing handler is logged and does not stop the others.
    """

    def combined(event: Any) -> None:
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.exception("event_handler_failed", handler=getattr(handler, "__name__", repr(handler)), error=str(e))

    return combined


__all__ = [
    "WorkflowVisualizer",
    "create_visualizer",
    "EventCollector",
    "visualize_events",
    "combine_event_handlers",
]
