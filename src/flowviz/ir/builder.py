"""
IR builder - folds an ordered event stream into a ``WorkflowIR``.

Events are applied strictly in the order received. The builder keeps a stack
of open scopes (the workflow root, plus one per ``scope_start`` and
``decision_start``); new nodes are appended to the innermost scope's
collection target.

Architecture::

    handle_event(event)
        │
        ├── WorkflowLifecycleEvent → root state / new run
        ├── StepEvent ─────────────→ index lookup (key, then id) → create/update
        ├── ScopeStartEvent ───────→ push ParallelNode | RaceNode
        ├── ScopeEndEvent ─────────→ finalize + pop (down to matching id)
        ├── Decision*Event ────────→ push DecisionNode / open branch / pop
        ├── StreamEvent ───────────→ StreamNode counters
        └── HookEvent ─────────────→ WorkflowIR.hooks

    Scope stack (innermost last):

        [root] → [parallel "fetch-all"] → [decision "route"]
                                             └── target = taken branch,
                                                 else "(pending)" placeholder

Guarantees:
    - Node states only move pending → running → one terminal state.
    - Steps observed while a decision has no taken branch are kept on a
      placeholder branch, and move to the first branch marked taken.
    - Malformed, unknown, or out-of-order events are logged at debug level
      and otherwise ignored; ``handle_event`` never raises.

Example::

    builder = IRBuilder()
    for event in events:
        builder.handle_event(event)
    ir = builder.get_ir()
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from flowviz.core.logging import get_logger
from flowviz.core.timing import now_ms
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
)
from flowviz.ir.models import (
    BaseNode,
    DecisionBranch,
    DecisionNode,
    FlowNode,
    HookExecution,
    IRMetadata,
    NodeState,
    ParallelNode,
    RaceNode,
    ScopeMode,
    StepNode,
    StreamNode,
    StreamState,
    WorkflowHooks,
    WorkflowIR,
    WorkflowNode,
    is_terminal,
)

logger = get_logger(__name__)

PENDING_BRANCH_LABEL = "(pending)"
DEFAULT_ROOT_ID = "workflow"


@dataclass
class _OpenScope:
    node: WorkflowNode | ParallelNode | RaceNode | DecisionNode
    active_branch: DecisionBranch | None = None


def _transition(node: BaseNode, state: NodeState) -> bool:
    """Apply a state change if it moves forward. Returns False if refused."""
    if is_terminal(node.state):
        return False
    if state == NodeState.PENDING or state == node.state:
        return False
    node.state = state
    return True


def _finish(node: BaseNode, ts: float, duration_ms: float | None) -> None:
    node.end_ts = ts
    if duration_ms is not None:
        node.duration_ms = duration_ms
    elif node.start_ts is not None:
        node.duration_ms = max(0.0, ts - node.start_ts)


class IRBuilder:
    """Builds and owns the live IR for one workflow at a time.

    Parameters
    ----------
    workflow_name
        Display name for the root node when events do not carry one.
    clock
        Epoch-millisecond clock used for ``metadata.created_at``.
    """

    def __init__(
        self,
        workflow_name: str | None = None,
        *,
        clock: Callable[[], float] = now_ms,
    ) -> None:
        self._workflow_name = workflow_name
        self._clock = clock
        self._event_count = 0
        self._pending_hooks: WorkflowHooks | None = None
        self._init_run(DEFAULT_ROOT_ID)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def handle_event(self, event: WorkflowEvent) -> None:
        """Apply one event to the tree. Never raises."""
        self._event_count += 1
        try:
            self._dispatch(event)
        except (AttributeError, TypeError, ValueError, KeyError) as exc:
            logger.warning(
                "event_apply_failed",
                event_type=str(getattr(event, "type", None)),
                error=str(exc),
            )

    def get_ir(self) -> WorkflowIR:
        """Return the live IR (mutated in place until the run is terminal)."""
        return self._ir

    def reset(self) -> None:
        """Discard all state, including hooks buffered for the next run."""
        self._event_count = 0
        self._pending_hooks = None
        self._init_run(DEFAULT_ROOT_ID)

    @property
    def workflow_id(self) -> str | None:
        return self._workflow_id

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self._root.state)

    @property
    def event_count(self) -> int:
        return self._event_count

    # ------------------------------------------------------------------
    # Run bookkeeping
    # ------------------------------------------------------------------

    def _init_run(self, root_id: str, hooks: WorkflowHooks | None = None) -> None:
        created = self._clock()
        self._workflow_id: str | None = None
        self._root = WorkflowNode(id=root_id, name=self._workflow_name)
        self._ir = WorkflowIR(
            root=self._root,
            metadata=IRMetadata(created_at=created, last_updated_at=created),
            hooks=hooks,
        )
        self._stack: list[_OpenScope] = [_OpenScope(self._root)]
        self._steps: dict[str, StepNode] = {}
        self._step_ids: set[str] = set()
        self._containers: dict[str, ParallelNode | RaceNode | DecisionNode] = {}
        self._streams: dict[str, StreamNode] = {}
        self._stream_counter = 0

    def _accepts(self, event: WorkflowEvent) -> bool:
        """Workflow-id filter and post-terminal gate."""
        if self.is_terminal:
            return event.type in (
                EventType.WORKFLOW_START,
                EventType.HOOK_SHOULD_RUN,
                EventType.HOOK_SHOULD_RUN_ERROR,
                EventType.HOOK_BEFORE_START,
                EventType.HOOK_BEFORE_START_ERROR,
            )
        if self._workflow_id is None:
            self._workflow_id = event.workflow_id
            return True
        return event.workflow_id == self._workflow_id

    def _dispatch(self, event: WorkflowEvent) -> None:
        if not self._accepts(event):
            logger.debug(
                "event_ignored",
                event_type=str(getattr(event, "type", None)),
                workflow_id=getattr(event, "workflow_id", None),
                reason="terminal" if self.is_terminal else "foreign_workflow",
            )
            return

        match event:
            case WorkflowLifecycleEvent():
                self._on_workflow(event)
            case StepEvent():
                self._on_step(event)
            case ScopeStartEvent():
                self._on_scope_start(event)
            case ScopeEndEvent():
                self._on_scope_end(event)
            case DecisionStartEvent():
                self._on_decision_start(event)
            case DecisionBranchEvent():
                self._on_decision_branch(event)
            case DecisionEndEvent():
                self._on_decision_end(event)
            case StreamEvent():
                self._on_stream(event)
            case HookEvent():
                self._on_hook(event)
            case _:
                logger.debug("event_ignored", event=repr(event), reason="unknown_event")
                return

        self._ir.metadata.last_updated_at = event.ts

    def _target(self) -> list[FlowNode]:
        """Children list new nodes are appended to."""
        scope = self._stack[-1]
        node = scope.node
        if isinstance(node, DecisionNode):
            if scope.active_branch is not None:
                return scope.active_branch.children
            return self._placeholder(node).children
        return node.children

    @staticmethod
    def _placeholder(decision: DecisionNode) -> DecisionBranch:
        for branch in decision.branches:
            if branch.label == PENDING_BRANCH_LABEL:
                return branch
        logger.debug("decision_placeholder_branch", decision_id=decision.id)
        branch = DecisionBranch(label=PENDING_BRANCH_LABEL)
        decision.branches.append(branch)
        return branch

    def _pop_to(self, node_id: str) -> _OpenScope | None:
        """Pop the stack down to (and including) the scope with ``node_id``."""
        for depth in range(len(self._stack) - 1, 0, -1):
            if self._stack[depth].node.id == node_id:
                if depth != len(self._stack) - 1:
                    logger.debug(
                        "scope_end_out_of_order",
                        node_id=node_id,
                        still_open=[s.node.id for s in self._stack[depth + 1:]],
                    )
                scope = self._stack[depth]
                del self._stack[depth:]
                return scope
        return None

    # ------------------------------------------------------------------
    # Workflow lifecycle
    # ------------------------------------------------------------------

    def _on_workflow(self, event: WorkflowLifecycleEvent) -> None:
        root = self._root
        match event.type:
            case EventType.WORKFLOW_START:
                if root.state != NodeState.PENDING:
                    hooks = None
                    if self.is_terminal and self._pending_hooks and not self._pending_hooks.is_empty():
                        hooks = self._pending_hooks
                    self._pending_hooks = None
                    self._init_run(event.workflow_id, hooks=hooks)
                    root = self._root
                root.id = event.workflow_id
                root.workflow_id = event.workflow_id
                root.name = event.name or self._workflow_name
                root.start_ts = event.ts
                self._workflow_id = event.workflow_id
                _transition(root, NodeState.RUNNING)
            case EventType.WORKFLOW_SUCCESS:
                if _transition(root, NodeState.SUCCESS):
                    _finish(root, event.ts, event.duration_ms)
            case EventType.WORKFLOW_ERROR:
                if _transition(root, NodeState.ERROR):
                    root.error = event.error
                    _finish(root, event.ts, event.duration_ms)
            case EventType.WORKFLOW_CANCELLED:
                if _transition(root, NodeState.ABORTED):
                    root.error = event.reason
                    _finish(root, event.ts, event.duration_ms)
        if self.is_terminal:
            del self._stack[1:]

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _find_step(self, event: StepEvent) -> StepNode | None:
        if event.step_key is not None and event.step_key in self._steps:
            return self._steps[event.step_key]
        return self._steps.get(event.step_id)

    def _create_step(self, event: StepEvent) -> StepNode:
        node_id = event.step_id
        suffix = 2
        while node_id in self._step_ids:
            node_id = f"{event.step_id}_{suffix}"
            suffix += 1
        node = StepNode(
            id=node_id,
            name=event.name,
            key=event.step_key,
            description=event.description,
            declared_errors=list(event.declared_errors),
        )
        self._step_ids.add(node_id)
        if event.step_key is not None:
            self._steps[event.step_key] = node
        self._steps[event.step_id] = node
        self._target().append(node)
        return node

    def _on_step(self, event: StepEvent) -> None:
        node = self._find_step(event)

        if event.type == EventType.STEP_START:
            if node is None or is_terminal(node.state):
                node = self._create_step(event)
            _transition(node, NodeState.RUNNING)
            node.start_ts = event.ts if node.start_ts is None else node.start_ts
            node.name = event.name or node.name
            node.description = event.description or node.description
            if event.input is not None:
                node.input = event.input
            if event.declared_errors:
                node.declared_errors = list(event.declared_errors)
            return

        if event.type == EventType.STEP_CACHE_MISS:
            return

        if node is None:
            node = self._create_step(event)
        elif is_terminal(node.state):
            logger.debug(
                "event_ignored",
                event_type=event.type.value,
                node_id=node.id,
                reason="node_terminal",
            )
            return

        match event.type:
            case EventType.STEP_SUCCESS:
                _transition(node, NodeState.SUCCESS)
                if event.output is not None:
                    node.output = event.output
                _finish(node, event.ts, event.duration_ms)
            case EventType.STEP_ERROR:
                _transition(node, NodeState.ERROR)
                node.error = event.error
                _finish(node, event.ts, event.duration_ms)
            case EventType.STEP_ABORTED:
                _transition(node, NodeState.ABORTED)
                _finish(node, event.ts, event.duration_ms)
            case EventType.STEP_RETRY:
                node.retry_count += 1
                if event.max_attempts is not None:
                    node.max_attempts = event.max_attempts
                node.error = event.error
            case EventType.STEP_RETRIES_EXHAUSTED:
                _transition(node, NodeState.ERROR)
                node.error = event.error
                if event.attempt is not None:
                    node.retry_count = max(node.retry_count, event.attempt - 1)
                _finish(node, event.ts, event.duration_ms)
            case EventType.STEP_CACHE_HIT:
                _transition(node, NodeState.CACHED)
                if node.start_ts is None:
                    node.start_ts = event.ts
                _finish(node, event.ts, event.duration_ms if event.duration_ms is not None else 0.0)
            case EventType.STEP_SKIPPED:
                _transition(node, NodeState.SKIPPED)
                node.skip_reason = event.reason
                node.end_ts = event.ts
            case EventType.STEP_TIMEOUT:
                node.timed_out = True
                node.timeout_ms = event.timeout_ms

    # ------------------------------------------------------------------
    # Explicit scopes
    # ------------------------------------------------------------------

    def _on_scope_start(self, event: ScopeStartEvent) -> None:
        if event.scope_id in self._containers:
            logger.debug("event_ignored", event_type="scope_start", reason="duplicate", scope_id=event.scope_id)
            return
        if event.scope_type == ScopeMode.RACE.value:
            node: ParallelNode | RaceNode = RaceNode(id=event.scope_id, name=event.name)
        else:
            try:
                mode = ScopeMode(event.scope_type)
            except ValueError:
                mode = ScopeMode.ALL
            node = ParallelNode(id=event.scope_id, name=event.name, mode=mode)
        node.start_ts = event.ts
        _transition(node, NodeState.RUNNING)
        self._target().append(node)
        self._containers[node.id] = node
        self._stack.append(_OpenScope(node))

    def _on_scope_end(self, event: ScopeEndEvent) -> None:
        node = self._containers.get(event.scope_id)
        if not isinstance(node, (ParallelNode, RaceNode)):
            logger.debug("event_ignored", event_type="scope_end", reason="unknown_scope", scope_id=event.scope_id)
            return
        self._pop_to(event.scope_id)
        if node.end_ts is None:
            _finish(node, event.ts, event.duration_ms)

        if isinstance(node, RaceNode) and event.winner_id is not None and node.winner_id is None:
            winner = next(
                (c for c in node.children if event.winner_id in (c.id, c.key)),
                None,
            )
            node.winner_id = winner.id if winner is not None else event.winner_id

        _transition(node, self._settled_state(node))

    @staticmethod
    def _settled_state(node: ParallelNode | RaceNode) -> NodeState:
        states = [c.state for c in node.children]
        if isinstance(node, RaceNode):
            if node.winner_id is not None or not states:
                return NodeState.SUCCESS
            if any(s in (NodeState.SUCCESS, NodeState.CACHED) for s in states):
                return NodeState.SUCCESS
            return NodeState.ERROR
        if node.mode == ScopeMode.ALL and NodeState.ERROR in states:
            return NodeState.ERROR
        return NodeState.SUCCESS

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def _on_decision_start(self, event: DecisionStartEvent) -> None:
        if event.decision_id in self._containers:
            logger.debug("event_ignored", event_type="decision_start", reason="duplicate", decision_id=event.decision_id)
            return
        node = DecisionNode(
            id=event.decision_id,
            name=event.name,
            condition=event.condition,
            decision_value=event.decision_value,
            start_ts=event.ts,
        )
        _transition(node, NodeState.RUNNING)
        self._target().append(node)
        self._containers[node.id] = node
        self._stack.append(_OpenScope(node))

    def _decision_scope(self, decision_id: str) -> _OpenScope | None:
        for scope in reversed(self._stack):
            if scope.node.id == decision_id and isinstance(scope.node, DecisionNode):
                return scope
        return None

    def _on_decision_branch(self, event: DecisionBranchEvent) -> None:
        scope = self._decision_scope(event.decision_id)
        decision = scope.node if scope else self._containers.get(event.decision_id)
        if not isinstance(decision, DecisionNode):
            logger.debug("event_ignored", event_type="decision_branch", reason="unknown_decision", decision_id=event.decision_id)
            return

        branch = next((b for b in decision.branches if b.label == event.branch_label), None)
        if branch is None:
            branch = DecisionBranch(label=event.branch_label, condition=event.condition)
            decision.branches.append(branch)
        elif event.condition is not None:
            branch.condition = event.condition

        if event.taken:
            self._take_branch(decision, branch, scope)

    def _take_branch(
        self,
        decision: DecisionNode,
        branch: DecisionBranch,
        scope: _OpenScope | None,
    ) -> None:
        if decision.taken_branch is not None:
            logger.debug("decision_branch_already_taken", decision_id=decision.id, branch=branch.label)
            return
        branch.taken = True
        if decision.branch_taken is None:
            decision.branch_taken = branch.label
        placeholder = next(
            (b for b in decision.branches if b.label == PENDING_BRANCH_LABEL and b is not branch),
            None,
        )
        if placeholder is not None:
            branch.children[:0] = placeholder.children
            decision.branches.remove(placeholder)
        if scope is not None:
            scope.active_branch = branch

    def _on_decision_end(self, event: DecisionEndEvent) -> None:
        scope = self._decision_scope(event.decision_id)
        if scope is not None:
            self._pop_to(event.decision_id)
        decision = scope.node if scope else self._containers.get(event.decision_id)
        if not isinstance(decision, DecisionNode):
            logger.debug("event_ignored", event_type="decision_end", reason="unknown_decision", decision_id=event.decision_id)
            return

        if event.branch_taken is not None and decision.taken_branch is None:
            branch = next((b for b in decision.branches if b.label == event.branch_taken), None)
            if branch is None:
                branch = next((b for b in decision.branches if b.label == PENDING_BRANCH_LABEL), None)
                if branch is not None:
                    branch.label = event.branch_taken
                else:
                    branch = DecisionBranch(label=event.branch_taken)
                    decision.branches.append(branch)
            self._take_branch(decision, branch, None)

        if decision.end_ts is None:
            _finish(decision, event.ts, event.duration_ms)
        _transition(decision, NodeState.SUCCESS)

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    def _on_stream(self, event: StreamEvent) -> None:
        node = self._streams.get(event.namespace)
        if node is None or (event.type == EventType.STREAM_CREATED and is_terminal(node.state)):
            self._stream_counter += 1
            node = StreamNode(
                id=f"stream_{event.namespace}_{self._stream_counter}",
                name=event.namespace,
                namespace=event.namespace,
                start_ts=event.ts,
            )
            _transition(node, NodeState.RUNNING)
            self._streams[event.namespace] = node
            self._target().append(node)

        match event.type:
            case EventType.STREAM_WRITE:
                node.write_count += 1
            case EventType.STREAM_READ:
                node.read_count += 1
            case EventType.STREAM_CLOSE:
                if _transition(node, NodeState.SUCCESS):
                    node.stream_state = StreamState.CLOSED
                    node.final_position = event.position
                    _finish(node, event.ts, None)
            case EventType.STREAM_ERROR:
                if _transition(node, NodeState.ERROR):
                    node.stream_state = StreamState.ERROR
                    node.error = event.error
                    _finish(node, event.ts, None)
            case EventType.STREAM_BACKPRESSURE:
                if event.paused:
                    node.backpressure = True
                if event.buffered_count is not None:
                    node.buffered_count = event.buffered_count

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _on_hook(self, event: HookEvent) -> None:
        failed = event.type in (
            EventType.HOOK_SHOULD_RUN_ERROR,
            EventType.HOOK_BEFORE_START_ERROR,
            EventType.HOOK_AFTER_STEP_ERROR,
        )
        hook_name = {
            EventType.HOOK_SHOULD_RUN: "shouldRun",
            EventType.HOOK_SHOULD_RUN_ERROR: "shouldRun",
            EventType.HOOK_BEFORE_START: "onBeforeStart",
            EventType.HOOK_BEFORE_START_ERROR: "onBeforeStart",
        }.get(event.type, "onAfterStep")
        execution = HookExecution(
            hook=hook_name,
            state=NodeState.ERROR if failed else NodeState.SUCCESS,
            ts=event.ts,
            duration_ms=event.duration_ms,
            result=event.result,
            skipped=event.skipped,
            step_key=event.step_key,
            error=event.error,
            context=dict(event.context) if event.context else None,
        )

        if self.is_terminal:
            # Pre-start hooks of the next run
            if self._pending_hooks is None:
                self._pending_hooks = WorkflowHooks()
            hooks = self._pending_hooks
        else:
            if self._ir.hooks is None:
                self._ir.hooks = WorkflowHooks()
            hooks = self._ir.hooks

        match hook_name:
            case "shouldRun":
                hooks.should_run = execution
            case "onBeforeStart":
                hooks.on_before_start = execution
            case _:
                hooks.on_after_step[event.step_key or "unknown"] = execution


__all__ = ["IRBuilder", "PENDING_BRANCH_LABEL"]
