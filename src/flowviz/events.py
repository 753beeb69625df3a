"""
Workflow lifecycle events - the vocabulary consumed by the IR builder.

Every event is a frozen dataclass tagged with an ``EventType``. Events are
grouped into families that share a payload shape, so consumers match on the
family class first and the tag second:

Architecture:
    ::

        WorkflowEvent (union)
        ├── WorkflowLifecycleEvent   workflow_start / success / error / cancelled
        ├── StepEvent                step_start / success / error / aborted /
        │                            retry / retries_exhausted / cache_hit /
        │                            cache_miss / skipped / timeout
        ├── ScopeStartEvent          scope_start  (parallel | race boundary)
        ├── ScopeEndEvent            scope_end
        ├── DecisionStartEvent       decision_start
        ├── DecisionBranchEvent      decision_branch
        ├── DecisionEndEvent         decision_end
        ├── StreamEvent              stream_created / write / read / close /
        │                            error / backpressure
        └── HookEvent                hook_should_run / before_start / after_step
                                     (+ *_error variants)

    Every event carries ``workflow_id`` and a monotonic ``ts`` (epoch ms).

Engines usually ship events as JSON with camelCase keys. ``event_from_dict``
decodes those (or snake_case) mappings; ``event_to_dict`` is the inverse.

Example::

    from flowviz.events import EventType, StepEvent, event_from_dict

    evt = event_from_dict({
        "type": "step_success", "workflowId": "wf-1", "stepId": "s1",
        "stepKey": "fetch-user", "ts": 1045, "durationMs": 45,
    })
    assert isinstance(evt, StepEvent)
    assert evt.duration_ms == 45
"""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from flowviz.core.errors import EventError, UnknownEventError
from flowviz.core.logging import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    """Wire tags for every event the builder understands."""

    # Workflow lifecycle
    WORKFLOW_START = "workflow_start"
    WORKFLOW_SUCCESS = "workflow_success"
    WORKFLOW_ERROR = "workflow_error"
    WORKFLOW_CANCELLED = "workflow_cancelled"

    # Steps
    STEP_START = "step_start"
    STEP_SUCCESS = "step_success"
    STEP_ERROR = "step_error"
    STEP_ABORTED = "step_aborted"
    STEP_RETRY = "step_retry"
    STEP_RETRIES_EXHAUSTED = "step_retries_exhausted"
    STEP_CACHE_HIT = "step_cache_hit"
    STEP_CACHE_MISS = "step_cache_miss"
    STEP_SKIPPED = "step_skipped"
    STEP_TIMEOUT = "step_timeout"

    # Explicit concurrency scopes
    SCOPE_START = "scope_start"
    SCOPE_END = "scope_end"

    # Conditional branching
    DECISION_START = "decision_start"
    DECISION_BRANCH = "decision_branch"
    DECISION_END = "decision_end"

    # Streams
    STREAM_CREATED = "stream_created"
    STREAM_WRITE = "stream_write"
    STREAM_READ = "stream_read"
    STREAM_CLOSE = "stream_close"
    STREAM_ERROR = "stream_error"
    STREAM_BACKPRESSURE = "stream_backpressure"

    # Lifecycle hooks
    HOOK_SHOULD_RUN = "hook_should_run"
    HOOK_SHOULD_RUN_ERROR = "hook_should_run_error"
    HOOK_BEFORE_START = "hook_before_start"
    HOOK_BEFORE_START_ERROR = "hook_before_start_error"
    HOOK_AFTER_STEP = "hook_after_step"
    HOOK_AFTER_STEP_ERROR = "hook_after_step_error"


# ---------------------------------------------------------------------------
# Event families
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WorkflowLifecycleEvent:
    """Start or terminal event for a whole workflow run."""

    type: EventType
    workflow_id: str
    ts: float
    duration_ms: float | None = None
    error: Any = None
    reason: str | None = None
    last_step_key: str | None = None
    name: str | None = None
    context: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class StepEvent:
    """Anything that happens to a single step.

    ``step_key`` is the cache key (stable across runs); ``step_id`` is the
    per-invocation identifier. The builder indexes by key, falling back to id.
    """

    type: EventType
    workflow_id: str
    ts: float
    step_id: str
    step_key: str | None = None
    name: str | None = None
    description: str | None = None
    duration_ms: float | None = None
    error: Any = None
    input: Any = None
    output: Any = None
    declared_errors: tuple[str, ...] = ()
    attempt: int | None = None
    max_attempts: int | None = None
    delay_ms: float | None = None
    timeout_ms: float | None = None
    reason: str | None = None
    decision_id: str | None = None
    context: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class ScopeStartEvent:
    """Opens an explicit parallel or race boundary."""

    workflow_id: str
    ts: float
    scope_id: str
    scope_type: str = "all"
    name: str | None = None
    context: Mapping[str, Any] | None = None
    type: EventType = field(default=EventType.SCOPE_START, init=False)


@dataclass(frozen=True)
class ScopeEndEvent:
    """Closes an explicit scope; races may name the winning child."""

    workflow_id: str
    ts: float
    scope_id: str
    duration_ms: float | None = None
    winner_id: str | None = None
    context: Mapping[str, Any] | None = None
    type: EventType = field(default=EventType.SCOPE_END, init=False)


@dataclass(frozen=True)
class DecisionStartEvent:
    workflow_id: str
    ts: float
    decision_id: str
    name: str | None = None
    condition: str | None = None
    decision_value: Any = None
    context: Mapping[str, Any] | None = None
    type: EventType = field(default=EventType.DECISION_START, init=False)


@dataclass(frozen=True)
class DecisionBranchEvent:
    workflow_id: str
    ts: float
    decision_id: str
    branch_label: str
    condition: str | None = None
    taken: bool = False
    context: Mapping[str, Any] | None = None
    type: EventType = field(default=EventType.DECISION_BRANCH, init=False)


@dataclass(frozen=True)
class DecisionEndEvent:
    workflow_id: str
    ts: float
    decision_id: str
    duration_ms: float | None = None
    branch_taken: str | None = None
    context: Mapping[str, Any] | None = None
    type: EventType = field(default=EventType.DECISION_END, init=False)


@dataclass(frozen=True)
class StreamEvent:
    """Progress of a named stream (writes, reads, backpressure)."""

    type: EventType
    workflow_id: str
    ts: float
    namespace: str
    position: int | None = None
    error: Any = None
    buffered_count: int | None = None
    paused: bool | None = None
    context: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class HookEvent:
    """Lifecycle hook execution (pre-run gate, before-start, after-step)."""

    type: EventType
    workflow_id: str
    ts: float
    duration_ms: float | None = None
    result: bool | None = None
    skipped: bool | None = None
    step_key: str | None = None
    error: Any = None
    context: Mapping[str, Any] | None = None


WorkflowEvent = (
    WorkflowLifecycleEvent
    | StepEvent
    | ScopeStartEvent
    | ScopeEndEvent
    | DecisionStartEvent
    | DecisionBranchEvent
    | DecisionEndEvent
    | StreamEvent
    | HookEvent
)

SCOPE_EVENT_TYPES = frozenset({EventType.SCOPE_START, EventType.SCOPE_END})
DECISION_EVENT_TYPES = frozenset(
    {EventType.DECISION_START, EventType.DECISION_BRANCH, EventType.DECISION_END}
)

_FAMILY_BY_PREFIX: dict[str, type] = {
    "workflow": WorkflowLifecycleEvent,
    "step": StepEvent,
    "stream": StreamEvent,
    "hook": HookEvent,
}
_FAMILY_BY_TYPE: dict[EventType, type] = {
    t: _FAMILY_BY_PREFIX[t.value.split("_", 1)[0]]
    for t in EventType
    if t not in SCOPE_EVENT_TYPES and t not in DECISION_EVENT_TYPES
}
_FAMILY_BY_TYPE.update({
    EventType.SCOPE_START: ScopeStartEvent,
    EventType.SCOPE_END: ScopeEndEvent,
    EventType.DECISION_START: DecisionStartEvent,
    EventType.DECISION_BRANCH: DecisionBranchEvent,
    EventType.DECISION_END: DecisionEndEvent,
})


# ---------------------------------------------------------------------------
# Dict codec
# ---------------------------------------------------------------------------

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")

# Wire names that differ from the dataclass field once snake-cased
_FIELD_ALIASES = {
    "last_error": "error",
    "attempts": "attempt",
    "final_position": "position",
}


def snake_case(name: str) -> str:
    """``stepKey`` -> ``step_key``; snake_case input passes through."""
    return _CAMEL_RE.sub("_", name).lower()


def camel_case(name: str) -> str:
    """``step_key`` -> ``stepKey``."""
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def snake_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with top-level keys snake-cased."""
    return {snake_case(k): v for k, v in data.items()}


def event_from_dict(data: Mapping[str, Any], *, strict: bool = False) -> WorkflowEvent | None:
    """Decode an event mapping (camelCase or snake_case keys).

    Unknown tags and mappings missing required fields return ``None`` unless
    ``strict`` is set, in which case ``UnknownEventError`` / ``EventError``
    is raised.
    """
    raw_type = data.get("type")
    try:
        event_type = EventType(raw_type)
    except ValueError:
        if strict:
            raise UnknownEventError(raw_type) from None
        logger.debug("event_decode_skipped", event_type=raw_type, reason="unknown_type")
        return None

    cls = _FAMILY_BY_TYPE[event_type]
    values = snake_keys(data)
    for wire, attr in _FIELD_ALIASES.items():
        if wire in values and attr not in values:
            values[attr] = values.pop(wire)
    if event_type is EventType.STREAM_BACKPRESSURE and "state" in values:
        values["paused"] = values.pop("state") == "paused"
    if "declared_errors" in values and values["declared_errors"] is not None:
        values["declared_errors"] = tuple(values["declared_errors"])
    if event_type is EventType.STEP_CACHE_HIT and "step_id" not in values:
        values["step_id"] = values.get("step_key")

    names = {f.name for f in dataclasses.fields(cls) if f.init}
    kwargs = {k: v for k, v in values.items() if k in names and k != "type"}
    if "type" in names:
        kwargs["type"] = event_type

    try:
        return cls(**kwargs)
    except TypeError as exc:
        if strict:
            raise EventError(f"Malformed {event_type.value} event: {exc}", cause=exc) from exc
        logger.debug("event_decode_skipped", event_type=event_type.value, reason=str(exc))
        return None


def event_to_dict(event: WorkflowEvent, *, camel: bool = True) -> dict[str, Any]:
    """Encode an event as a plain mapping, omitting unset optional fields."""
    result: dict[str, Any] = {}
    for f in dataclasses.fields(event):
        value = getattr(event, f.name)
        if value is None or (f.name == "declared_errors" and not value):
            continue
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, tuple):
            value = list(value)
        result[camel_case(f.name) if camel else f.name] = value
    return result


__all__ = [
    "EventType",
    "WorkflowLifecycleEvent",
    "StepEvent",
    "ScopeStartEvent",
    "ScopeEndEvent",
    "DecisionStartEvent",
    "DecisionBranchEvent",
    "DecisionEndEvent",
    "StreamEvent",
    "HookEvent",
    "WorkflowEvent",
    "SCOPE_EVENT_TYPES",
    "DECISION_EVENT_TYPES",
    "event_from_dict",
    "event_to_dict",
    "snake_case",
    "camel_case",
    "snake_keys",
]
