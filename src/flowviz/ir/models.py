"""
Execution tree (IR) data model.

The IR is the hierarchical description of one workflow run: a ``WorkflowNode``
root whose ``children`` is the ordered top-level sequence, with container
nodes (``ParallelNode``, ``RaceNode``, ``DecisionNode``) nesting further
sequences.

Architecture::

    WorkflowIR
    ├── root: WorkflowNode
    │   └── children: list[FlowNode]
    │       ├── StepNode
    │       ├── ParallelNode ── children
    │       ├── RaceNode ────── children, winner_id
    │       ├── DecisionNode ── branches[] ── children
    │       ├── StreamNode
    │       └── UnknownNode    (placeholder for unrecognized input)
    ├── metadata: IRMetadata (created_at, last_updated_at)
    └── hooks: WorkflowHooks | None

Nodes are mutable dataclasses; the builder mutates them in place until a
terminal workflow event arrives. ``clone_ir`` produces the copy used for
time-travel snapshots: every node and list is copied, and captured payloads
(input/output/error values) are deep-copied so later mutation by the producer
never reaches a recorded snapshot.

``ir_from_dict`` accepts the mapping form produced by ``WorkflowIR.to_dict``
or by an external static analyzer (camelCase keys accepted).
"""

from __future__ import annotations

import copy
import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Mapping

from flowviz.events import snake_keys


class NodeState(str, Enum):
    """Execution state of a node. Terminal states never change again."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    ABORTED = "aborted"
    CACHED = "cached"
    SKIPPED = "skipped"


TERMINAL_STATES = frozenset({
    NodeState.SUCCESS,
    NodeState.ERROR,
    NodeState.ABORTED,
    NodeState.CACHED,
    NodeState.SKIPPED,
})


def is_terminal(state: NodeState) -> bool:
    return state in TERMINAL_STATES


class NodeType(str, Enum):
    WORKFLOW = "workflow"
    STEP = "step"
    PARALLEL = "parallel"
    RACE = "race"
    DECISION = "decision"
    STREAM = "stream"
    UNKNOWN = "unknown"


class ScopeMode(str, Enum):
    """How a parallel scope settles."""

    ALL = "all"
    ALL_SETTLED = "allSettled"
    RACE = "race"


class StreamState(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    ERROR = "error"


def _plain(value: Any) -> Any:
    """Mapping form of tree structure; captured payloads pass through as-is."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (BaseNode, DecisionBranch)):
        return value.to_dict()
    if isinstance(value, list) and value and all(isinstance(v, (BaseNode, DecisionBranch)) for v in value):
        return [v.to_dict() for v in value]
    return value


def _copy_payload(value: Any) -> Any:
    """Deep copy of a captured payload; uncopyable values are kept by reference."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    try:
        return copy.deepcopy(value)
    except (TypeError, ValueError, copy.Error, RecursionError):
        return value


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

@dataclass
class BaseNode:
    """Fields common to every node variant."""

    node_type: ClassVar[NodeType] = NodeType.UNKNOWN

    id: str
    state: NodeState = NodeState.PENDING
    name: str | None = None
    key: str | None = None
    start_ts: float | None = None
    end_ts: float | None = None
    duration_ms: float | None = None

    @property
    def type(self) -> NodeType:
        return self.node_type

    @property
    def label(self) -> str:
        """Display label: name, else key, else id."""
        return self.name or self.key or self.id

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.node_type.value}
        for f in dataclasses.fields(self):
            result[f.name] = _plain(getattr(self, f.name))
        return result

    def clone(self) -> BaseNode:
        return dataclasses.replace(self)


@dataclass
class StepNode(BaseNode):
    node_type: ClassVar[NodeType] = NodeType.STEP

    description: str | None = None
    retry_count: int = 0
    max_attempts: int | None = None
    input: Any = None
    output: Any = None
    error: Any = None
    timed_out: bool = False
    timeout_ms: float | None = None
    declared_errors: list[str] = field(default_factory=list)
    skip_reason: str | None = None

    def clone(self) -> StepNode:
        return dataclasses.replace(
            self,
            input=_copy_payload(self.input),
            output=_copy_payload(self.output),
            error=_copy_payload(self.error),
            declared_errors=list(self.declared_errors),
        )


@dataclass
class ParallelNode(BaseNode):
    node_type: ClassVar[NodeType] = NodeType.PARALLEL

    children: list[FlowNode] = field(default_factory=list)
    mode: ScopeMode = ScopeMode.ALL
    detected: bool = False

    def clone(self) -> ParallelNode:
        return dataclasses.replace(self, children=[c.clone() for c in self.children])


@dataclass
class RaceNode(BaseNode):
    node_type: ClassVar[NodeType] = NodeType.RACE

    children: list[FlowNode] = field(default_factory=list)
    winner_id: str | None = None

    @property
    def mode(self) -> ScopeMode:
        return ScopeMode.RACE

    def clone(self) -> RaceNode:
        return dataclasses.replace(self, children=[c.clone() for c in self.children])


@dataclass
class DecisionBranch:
    """One arm of a decision. ``taken`` is False until selected."""

    label: str
    condition: str | None = None
    taken: bool = False
    children: list[FlowNode] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "condition": self.condition,
            "taken": self.taken,
            "children": [c.to_dict() for c in self.children],
        }

    def clone(self) -> DecisionBranch:
        return dataclasses.replace(self, children=[c.clone() for c in self.children])


@dataclass
class DecisionNode(BaseNode):
    node_type: ClassVar[NodeType] = NodeType.DECISION

    condition: str | None = None
    decision_value: Any = None
    branch_taken: str | None = None
    branches: list[DecisionBranch] = field(default_factory=list)

    @property
    def taken_branch(self) -> DecisionBranch | None:
        return next((b for b in self.branches if b.taken), None)

    def clone(self) -> DecisionNode:
        return dataclasses.replace(
            self,
            decision_value=_copy_payload(self.decision_value),
            branches=[b.clone() for b in self.branches],
        )


@dataclass
class StreamNode(BaseNode):
    node_type: ClassVar[NodeType] = NodeType.STREAM

    namespace: str = ""
    write_count: int = 0
    read_count: int = 0
    final_position: int | None = None
    stream_state: StreamState = StreamState.ACTIVE
    backpressure: bool = False
    buffered_count: int | None = None
    error: Any = None

    def clone(self) -> StreamNode:
        return dataclasses.replace(self, error=_copy_payload(self.error))


@dataclass
class UnknownNode(BaseNode):
    """Placeholder for node data of an unrecognized type."""

    node_type: ClassVar[NodeType] = NodeType.UNKNOWN

    raw_type: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def clone(self) -> UnknownNode:
        return dataclasses.replace(self, data=_copy_payload(self.data))


@dataclass
class WorkflowNode(BaseNode):
    node_type: ClassVar[NodeType] = NodeType.WORKFLOW

    workflow_id: str = ""
    error: Any = None
    children: list[FlowNode] = field(default_factory=list)

    def clone(self) -> WorkflowNode:
        return dataclasses.replace(
            self,
            error=_copy_payload(self.error),
            children=[c.clone() for c in self.children],
        )


FlowNode = StepNode | ParallelNode | RaceNode | DecisionNode | StreamNode | UnknownNode
ContainerNode = ParallelNode | RaceNode


# ---------------------------------------------------------------------------
# Hooks and the IR envelope
# ---------------------------------------------------------------------------

@dataclass
class HookExecution:
    """One lifecycle hook invocation."""

    hook: str  # shouldRun | onBeforeStart | onAfterStep
    state: NodeState
    ts: float
    duration_ms: float | None = None
    result: bool | None = None
    skipped: bool | None = None
    step_key: str | None = None
    error: Any = None
    context: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _plain(getattr(self, f.name)) for f in dataclasses.fields(self)}

    def clone(self) -> HookExecution:
        return dataclasses.replace(
            self, error=_copy_payload(self.error), context=_copy_payload(self.context)
        )


@dataclass
class WorkflowHooks:
    should_run: HookExecution | None = None
    on_before_start: HookExecution | None = None
    on_after_step: dict[str, HookExecution] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return self.should_run is None and self.on_before_start is None and not self.on_after_step

    def to_dict(self) -> dict[str, Any]:
        return {
            "should_run": self.should_run.to_dict() if self.should_run else None,
            "on_before_start": self.on_before_start.to_dict() if self.on_before_start else None,
            "on_after_step": {k: v.to_dict() for k, v in self.on_after_step.items()},
        }

    def clone(self) -> WorkflowHooks:
        return WorkflowHooks(
            should_run=self.should_run.clone() if self.should_run else None,
            on_before_start=self.on_before_start.clone() if self.on_before_start else None,
            on_after_step={k: v.clone() for k, v in self.on_after_step.items()},
        )


@dataclass
class IRMetadata:
    created_at: float
    last_updated_at: float


@dataclass
class WorkflowIR:
    root: WorkflowNode
    metadata: IRMetadata
    hooks: WorkflowHooks | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": self.root.to_dict(),
            "metadata": {
                "created_at": self.metadata.created_at,
                "last_updated_at": self.metadata.last_updated_at,
            },
            "hooks": self.hooks.to_dict() if self.hooks else None,
        }


def clone_ir(ir: WorkflowIR) -> WorkflowIR:
    """Snapshot copy: new nodes and lists, deep-copied payload values."""
    return WorkflowIR(
        root=ir.root.clone(),
        metadata=dataclasses.replace(ir.metadata),
        hooks=ir.hooks.clone() if ir.hooks else None,
    )


def iter_nodes(nodes: list[FlowNode]):
    """Depth-first walk over nodes, their container children and branches."""
    for node in nodes:
        yield node
        match node:
            case ParallelNode(children=children) | RaceNode(children=children):
                yield from iter_nodes(children)
            case DecisionNode(branches=branches):
                for branch in branches:
                    yield from iter_nodes(branch.children)


# ---------------------------------------------------------------------------
# Mapping decoder (static analyzer input path)
# ---------------------------------------------------------------------------

_NODE_CLASSES: dict[str, type[BaseNode]] = {
    NodeType.STEP.value: StepNode,
    NodeType.PARALLEL.value: ParallelNode,
    NodeType.RACE.value: RaceNode,
    NodeType.DECISION.value: DecisionNode,
    NodeType.STREAM.value: StreamNode,
    NodeType.WORKFLOW.value: WorkflowNode,
}

_ENUM_FIELDS = {"state": NodeState, "mode": ScopeMode, "stream_state": StreamState}


def _coerce_state(value: Any) -> NodeState:
    try:
        return NodeState(value)
    except ValueError:
        return NodeState.PENDING


def _entries(value: Any) -> list[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _branch_from_dict(data: Any) -> DecisionBranch:
    if not isinstance(data, Mapping):
        return DecisionBranch(label="(unknown)", children=[UnknownNode(id="unknown", raw_type=type(data).__name__)])
    return DecisionBranch(
        label=str(data.get("label", "")),
        condition=data.get("condition"),
        taken=bool(data.get("taken", False)),
        children=[node_from_dict(c) for c in _entries(data.get("children"))],
    )


def node_from_dict(data: Any) -> FlowNode | WorkflowNode:
    """Build a node from a mapping.

    Unknown types and entries that are not mappings at all become
    ``UnknownNode`` placeholders instead of aborting the decode.
    """
    if not isinstance(data, Mapping):
        return UnknownNode(id="unknown", raw_type=type(data).__name__)
    values = snake_keys(data)
    raw_type = values.pop("type", None)
    cls = _NODE_CLASSES.get(raw_type) if isinstance(raw_type, str) else None
    if cls is None:
        node_id = str(values.get("id", "unknown"))
        return UnknownNode(
            id=node_id,
            state=_coerce_state(values.get("state", "pending")),
            name=values.get("name"),
            raw_type=str(raw_type),
            data=dict(values),
        )

    names = {f.name for f in dataclasses.fields(cls)}
    kwargs: dict[str, Any] = {}
    for name, value in values.items():
        if name not in names:
            continue
        if name in ("children",):
            value = [node_from_dict(c) for c in _entries(value)]
        elif name == "branches":
            value = [_branch_from_dict(b) for b in _entries(value)]
        elif name == "state":
            value = _coerce_state(value)
        elif name in _ENUM_FIELDS:
            try:
                value = _ENUM_FIELDS[name](value)
            except ValueError:
                continue
        elif name == "declared_errors":
            value = list(value or [])
        kwargs[name] = value
    kwargs.setdefault("id", str(values.get("workflow_id") or raw_type))
    return cls(**kwargs)


def ir_from_dict(data: Mapping[str, Any]) -> WorkflowIR:
    """Build a ``WorkflowIR`` from its mapping form."""
    root = node_from_dict(data["root"])
    if not isinstance(root, WorkflowNode):
        root = WorkflowNode(id=root.id, children=[root])
    meta = snake_keys(data.get("metadata") or {})
    metadata = IRMetadata(
        created_at=meta.get("created_at", 0),
        last_updated_at=meta.get("last_updated_at", 0),
    )
    hooks = None
    raw_hooks = data.get("hooks")
    if raw_hooks:
        raw_hooks = snake_keys(raw_hooks)

        def _hook(raw: Mapping[str, Any] | None, name: str) -> HookExecution | None:
            if not raw:
                return None
            values = snake_keys(raw)
            return HookExecution(
                hook=values.get("hook", values.get("type", name)),
                state=_coerce_state(values.get("state", "success")),
                ts=values.get("ts", 0),
                duration_ms=values.get("duration_ms"),
                result=values.get("result"),
                skipped=values.get("skipped"),
                step_key=values.get("step_key"),
                error=values.get("error"),
                context=values.get("context"),
            )

        hooks = WorkflowHooks(
            should_run=_hook(raw_hooks.get("should_run"), "shouldRun"),
            on_before_start=_hook(raw_hooks.get("on_before_start"), "onBeforeStart"),
            on_after_step={
                k: h
                for k, v in (raw_hooks.get("on_after_step") or {}).items()
                if (h := _hook(v, "onAfterStep")) is not None
            },
        )
    return WorkflowIR(root=root, metadata=metadata, hooks=hooks)


__all__ = [
    "NodeState",
    "TERMINAL_STATES",
    "is_terminal",
    "NodeType",
    "ScopeMode",
    "StreamState",
    "BaseNode",
    "StepNode",
    "ParallelNode",
    "RaceNode",
    "DecisionBranch",
    "DecisionNode",
    "StreamNode",
    "UnknownNode",
    "WorkflowNode",
    "FlowNode",
    "ContainerNode",
    "HookExecution",
    "WorkflowHooks",
    "IRMetadata",
    "WorkflowIR",
    "clone_ir",
    "iter_nodes",
    "node_from_dict",
    "ir_from_dict",
]
