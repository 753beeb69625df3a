"""Mermaid renderer - render a ``WorkflowIR`` as a Mermaid flowchart.

Produces plain Mermaid ``flowchart`` text for docs, PR comments, and any
viewer that embeds mermaid.js. Each render call walks the IR once, emitting
node declarations and edges into a line buffer, then appends the
``classDef`` block.

Architecture::

    render_mermaid(ir, options)
        │
        ▼
    _MermaidRenderer (one per call: lines + NodeIdAllocator)
        ├── hooks ───────► hook_shouldRun ─► hook_beforeStart ─► start
        ├── sequence ────► prev --> entry ... exit --> next
        │     ├── StepNode      → [label] / {{error}} / [(cached)]
        │     ├── ParallelNode  → subgraph: fork ─► children ─► join
        │     ├── RaceNode      → subgraph: start ─► children ═► first
        │     ├── DecisionNode  → {condition} ─► branch ─► children
        │     ├── StreamNode    → {{stream:ns}}
        │     └── UnknownNode   → labeled placeholder
        ├── finish (only for success / error / aborted workflows)
        └── classDef block

    Node shapes:
    - step          → ["label"]
    - failed step   → {{"label"}}   (hexagon)
    - cached step   → [("label")]   (cylinder)
    - decision      → {"cond"}      (diamond)
    - hook          → [["hook"]]    (subroutine)

Example::

    from flowviz.render import render_mermaid, RenderOptions

    print(render_mermaid(ir, RenderOptions(show_timings=True)))
    # flowchart TB
    #     start(("▶ Start"))
    #     step_fetch_user["✓ fetch-user 45ms"]:::success
    #     start --> step_fetch_user
    #     finish(("✓ Done")):::success
    #     step_fetch_user --> finish

Overlays (retry self-loops, error and timeout exits, expanded retry logic,
inline declared errors, heat classes) are each controlled by a
``RenderOptions`` flag and add nothing to the output when disabled.
"""

from __future__ import annotations

import json

from flowviz.core.logging import get_logger
from flowviz.core.timing import format_duration
from flowviz.ir.models import (
    DecisionBranch,
    DecisionNode,
    FlowNode,
    HookExecution,
    NodeState,
    ParallelNode,
    RaceNode,
    ScopeMode,
    StepNode,
    StreamNode,
    StreamState,
    UnknownNode,
    WorkflowHooks,
    WorkflowIR,
    is_terminal,
)
from flowviz.render.common import (
    NodeIdAllocator,
    after_step_hook,
    escape_mermaid,
    escape_mermaid_edge_label,
    escape_mermaid_subgraph,
    format_error,
    format_timing,
    format_value,
    heat_level,
    node_label,
    state_icon,
)
from flowviz.render.options import RenderOptions

logger = get_logger(__name__)

START_ID = "start"
FINISH_ID = "finish"
NOT_TRACKED_NOTE = "operations not individually tracked"


# ---------------------------------------------------------------------------
# Style definitions
# ---------------------------------------------------------------------------

STATE_STYLES: dict[str, str] = {
    "pending": "fill:#f3f4f6,stroke:#9ca3af,stroke-width:2px,color:#374151",
    "running": "fill:#fef3c7,stroke:#f59e0b,stroke-width:3px,color:#92400e",
    "success": "fill:#d1fae5,stroke:#10b981,stroke-width:3px,color:#065f46",
    "error": "fill:#fee2e2,stroke:#ef4444,stroke-width:3px,color:#991b1b",
    "aborted": "fill:#f3f4f6,stroke:#6b7280,stroke-width:2px,color:#4b5563,stroke-dasharray: 5 5",
    "cached": "fill:#dbeafe,stroke:#3b82f6,stroke-width:3px,color:#1e40af",
    "skipped": "fill:#f9fafb,stroke:#d1d5db,stroke-width:2px,color:#6b7280,stroke-dasharray: 5 5",
    "stream": "fill:#ede9fe,stroke:#8b5cf6,stroke-width:3px,color:#5b21b6",
    "streamActive": "fill:#ddd6fe,stroke:#7c3aed,stroke-width:3px,color:#4c1d95",
    "streamError": "fill:#fce7f3,stroke:#db2777,stroke-width:3px,color:#9d174d",
}

HEAT_STYLES: dict[str, str] = {
    "heat_cold": "fill:#dbeafe,stroke:#3b82f6,stroke-width:2px,color:#1e40af",
    "heat_cool": "fill:#ccfbf1,stroke:#14b8a6,stroke-width:2px,color:#0f766e",
    "heat_neutral": "fill:#f3f4f6,stroke:#6b7280,stroke-width:2px,color:#374151",
    "heat_warm": "fill:#fef3c7,stroke:#f59e0b,stroke-width:2px,color:#92400e",
    "heat_hot": "fill:#fed7aa,stroke:#f97316,stroke-width:3px,color:#c2410c",
    "heat_critical": "fill:#fecaca,stroke:#ef4444,stroke-width:3px,color:#b91c1c",
}

HOOK_STYLES: dict[str, str] = {
    "hook_success": "fill:#e0f2fe,stroke:#0284c7,stroke-width:2px,color:#0c4a6e",
    "hook_error": "fill:#fef2f2,stroke:#dc2626,stroke-width:2px,color:#7f1d1d",
}

ERROR_EXIT_STYLE = "fill:#fef2f2,stroke:#b91c1c,stroke-width:2px,color:#7f1d1d,stroke-dasharray: 3 3"
RETRY_LOGIC_STYLE = "fill:#fffbeb,stroke:#d97706,stroke-width:2px,color:#78350f"

_END_NODES: dict[NodeState, tuple[str, str]] = {
    NodeState.SUCCESS: ("✓ Done", "success"),
    NodeState.ERROR: ("✗ Failed", "error"),
    NodeState.ABORTED: ("⊘ Cancelled", "aborted"),
}


def _class_defs(styles: dict[str, str]) -> list[str]:
    return [f"    classDef {name} {style}" for name, style in styles.items()]


def _with_timing(text: str, timing: str) -> str:
    return f"{text} {timing}" if timing else text


# ---------------------------------------------------------------------------
# Renderer
# ---------------------------------------------------------------------------

class _MermaidRenderer:
    """State for a single render call."""

    def __init__(self, ir: WorkflowIR, options: RenderOptions) -> None:
        self.ir = ir
        self.options = options
        self.hooks: WorkflowHooks | None = ir.hooks if options.show_hooks else None
        self.ids = NodeIdAllocator(reserved=(START_ID, FINISH_ID))
        self.lines: list[str] = []
        self.uses_retry_logic = False
        self.uses_error_exit = False

    def render(self) -> str:
        opts = self.options
        lines = self.lines

        if opts.title:
            lines.append("---")
            # Double-quoted YAML scalar; JSON string escaping is a subset of it
            lines.append(f"title: {json.dumps(opts.title)}")
            lines.append("---")
        lines.append(f"flowchart {opts.layout_direction}")

        last_hook = self._render_hooks()
        lines.append(f'    {START_ID}(("▶ Start"))')
        if last_hook:
            lines.append(f"    {last_hook} --> {START_ID}")

        prev = self._render_sequence(self.ir.root.children, START_ID)

        end = _END_NODES.get(self.ir.root.state)
        if end is not None:
            label, cls = end
            lines.append(f'    {FINISH_ID}(("{label}")):::{cls}')
            lines.append(f"    {prev} --> {FINISH_ID}")

        lines.append("")
        lines.extend(_class_defs(STATE_STYLES))
        if opts.show_heatmap:
            lines.extend(_class_defs(HEAT_STYLES))
        if self.hooks is not None:
            lines.extend(_class_defs(HOOK_STYLES))
        if self.uses_error_exit:
            lines.append(f"    classDef errorExit {ERROR_EXIT_STYLE}")
        if self.uses_retry_logic:
            lines.append(f"    classDef retryLogic {RETRY_LOGIC_STYLE}")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Sequences and dispatch
    # ------------------------------------------------------------------

    def _render_sequence(self, nodes: list[FlowNode], prev: str) -> str:
        """Chain ``nodes`` after ``prev``; returns the id of the last exit."""
        for node in nodes:
            entry, exit_ = self._render_node(node)
            self.lines.append(f"    {prev} --> {entry}")
            prev = exit_
        return prev

    def _render_node(self, node: FlowNode) -> tuple[str, str]:
        match node:
            case StepNode():
                return self._render_step(node)
            case ParallelNode():
                return self._render_parallel(node)
            case RaceNode():
                return self._render_race(node)
            case DecisionNode():
                return self._render_decision(node)
            case StreamNode():
                return self._render_stream(node)
            case UnknownNode():
                return self._render_unknown(node.raw_type or "unknown")
            case _:
                return self._render_unknown(type(node).__name__)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _hook_node(self, node_id: str, title: str, hook: HookExecution) -> None:
        ok = hook.state == NodeState.SUCCESS
        icon = "⚙" if ok else "⚠"
        parts = [f"{icon} {title}"]
        if hook.skipped:
            parts.append("skipped workflow")
        elif hook.result is True:
            parts.append("proceed")
        label = "<br/>".join(parts)
        timing = format_duration(hook.duration_ms) if self.options.show_timings and hook.duration_ms is not None else ""
        cls = "hook_success" if ok else "hook_error"
        self.lines.append(f'    {node_id}[["{_with_timing(label, timing)}"]]:::{cls}')

    def _render_hooks(self) -> str | None:
        hooks = self.hooks
        if hooks is None:
            return None
        last: str | None = None
        if hooks.should_run is not None:
            last = self.ids.unique("hook_shouldRun")
            self._hook_node(last, "shouldRun", hooks.should_run)
        if hooks.on_before_start is not None:
            hook_id = self.ids.unique("hook_beforeStart")
            self._hook_node(hook_id, "onBeforeStart", hooks.on_before_start)
            if last:
                self.lines.append(f"    {last} --> {hook_id}")
            last = hook_id
        return last

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _step_label(self, node: StepNode) -> str:
        opts = self.options
        icon = state_icon(node.state)
        head = escape_mermaid(node_label(node, opts))
        head = f"{icon} {head}" if icon else head
        parts = [_with_timing(head, format_timing(node, opts))]
        if node.input is not None:
            parts.append(f"in: {escape_mermaid(format_value(node.input))}")
        if node.output is not None and node.state == NodeState.SUCCESS:
            parts.append(f"out: {escape_mermaid(format_value(node.output))}")
        hook = after_step_hook(node, self.hooks)
        if hook is not None:
            icon = "⚙" if hook.state == NodeState.SUCCESS else "⚠"
            timing = format_duration(hook.duration_ms) if opts.show_timings and hook.duration_ms is not None else ""
            parts.append(_with_timing(f"{icon} hook", timing))
        return "<br/>".join(parts)

    def _step_class(self, node: StepNode) -> str:
        level = heat_level(node, self.options)
        if level is not None:
            return f"heat_{level.value}"
        return node.state.value

    def _render_step(self, node: StepNode) -> tuple[str, str]:
        opts = self.options
        base = node.key or node.name
        node_id = self.ids.unique(f"step_{base}") if base else self.ids.next("step")
        label = self._step_label(node)

        match node.state:
            case NodeState.ERROR:
                shape = f'{{{{"{label}"}}}}'
            case NodeState.CACHED:
                shape = f'[("{label}")]'
            case _:
                shape = f'["{label}"]'
        self.lines.append(f"    {node_id}{shape}:::{self._step_class(node)}")

        exit_id = node_id
        if node.retry_count > 0:
            if opts.expand_retry:
                exit_id = self._render_retry_logic(node, node_id)
            elif opts.show_retry_edges:
                noun = "retry" if node.retry_count == 1 else "retries"
                self.lines.append(f'    {node_id} -.->|"↻ {node.retry_count} {noun}"| {node_id}')

        if opts.show_error_edges and node.state == NodeState.ERROR and node.error is not None:
            err_id = self.ids.unique(f"ERR_{node_id}")
            message = format_error(node.error)[:30] or "error"
            self.lines.append(f'    {err_id}{{{{"{escape_mermaid(message)}"}}}}')
            self.lines.append(f"    {node_id} -->|error| {err_id}")
            self.lines.append(f"    style {err_id} fill:#fee2e2,stroke:#dc2626")

        if opts.show_timeout_edges and node.timed_out:
            to_id = self.ids.unique(f"TO_{node_id}")
            limit = f" {format_duration(node.timeout_ms)}" if node.timeout_ms is not None else ""
            self.lines.append(f'    {to_id}{{{{"⏱ Timeout{limit}"}}}}')
            self.lines.append(f"    {node_id} -.->|timeout| {to_id}")
            self.lines.append(f"    style {to_id} fill:#fef3c7,stroke:#f59e0b")

        if opts.show_inline_errors and node.declared_errors:
            self.uses_error_exit = True
            for name in node.declared_errors:
                err_id = self.ids.unique(f"err_{node_id}_{name}")
                self.lines.append(f'    {err_id}["⚠ {escape_mermaid(name)}"]:::errorExit')
                self.lines.append(f'    {node_id} -.->|"{escape_mermaid_edge_label(name)}"| {err_id}')

        return node_id, exit_id

    def _render_retry_logic(self, node: StepNode, node_id: str) -> str:
        """Diamond with success / exhausted outcomes; returns the success outcome id."""
        self.uses_retry_logic = True
        self.uses_error_exit = True
        attempts = node.retry_count + 1
        retry_id = self.ids.next("retry")
        ok_id = self.ids.unique(f"{retry_id}_ok")
        fail_id = self.ids.unique(f"{retry_id}_exhausted")
        ok_class = "success" if node.state in (NodeState.SUCCESS, NodeState.CACHED) else "pending"
        self.lines.append(f'    {retry_id}{{"Retry Logic ({attempts} attempts)"}}:::retryLogic')
        self.lines.append(f"    {node_id} --> {retry_id}")
        self.lines.append(f'    {ok_id}["✓ Success"]:::{ok_class}')
        self.lines.append(f'    {fail_id}["✗ Retries Exhausted"]:::errorExit')
        self.lines.append(f"    {retry_id} -->|success| {ok_id}")
        self.lines.append(f"    {retry_id} -.->|exhausted| {fail_id}")
        return ok_id

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def _render_untracked(self, node_id: str, title: str, node: ParallelNode | RaceNode) -> tuple[str, str]:
        timing = format_timing(node, self.options)
        label = f"{_with_timing(escape_mermaid(title), timing)}<br/>{NOT_TRACKED_NOTE}"
        self.lines.append(f'    {node_id}["{label}"]:::{node.state.value}')
        return node_id, node_id

    def _render_parallel(self, node: ParallelNode) -> tuple[str, str]:
        group_id = self.ids.next("parallel")
        name = node.name or "Parallel"
        if node.mode == ScopeMode.ALL_SETTLED:
            name = f"{name} - allSettled"
        if not node.children:
            return self._render_untracked(group_id, f"⚡ {name}", node)

        fork_id = self.ids.unique(f"{group_id}_fork")
        join_id = self.ids.unique(f"{group_id}_join")
        lines = self.lines
        lines.append(f'    subgraph {group_id}["{escape_mermaid_subgraph(name)}"]')
        lines.append("    direction TB")
        lines.append(f'    {fork_id}{{"⚡ Fork"}}')
        exits = []
        for child in node.children:
            entry, exit_ = self._render_node(child)
            lines.append(f"    {fork_id} --> {entry}")
            exits.append(exit_)
        lines.append(f'    {join_id}{{"✓ Join"}}')
        for exit_ in exits:
            lines.append(f"    {exit_} --> {join_id}")
        lines.append("    end")
        lines.append(f"    class {group_id} {node.state.value}")
        return fork_id, join_id

    def _render_race(self, node: RaceNode) -> tuple[str, str]:
        group_id = self.ids.next("race")
        name = node.name or "Race"
        if not node.children:
            return self._render_untracked(group_id, f"🏁 {name}", node)

        start_id = self.ids.unique(f"{group_id}_start")
        end_id = self.ids.unique(f"{group_id}_end")
        lines = self.lines
        lines.append(f'    subgraph {group_id}["🏁 {escape_mermaid_subgraph(name)}"]')
        lines.append("    direction TB")
        lines.append(f'    {start_id}(("🏁 Start"))')
        outcomes: list[tuple[str, bool]] = []
        for child in node.children:
            entry, exit_ = self._render_node(child)
            lines.append(f"    {start_id} --> {entry}")
            is_winner = node.winner_id is not None and node.winner_id in (child.id, child.key)
            outcomes.append((exit_, is_winner))
        lines.append(f'    {end_id}(("✓ First"))')
        for exit_, is_winner in outcomes:
            if is_winner:
                lines.append(f'    {exit_} ==>|"🏆 Winner"| {end_id}')
            elif node.winner_id is not None:
                lines.append(f"    {exit_} -. cancelled .-> {end_id}")
            else:
                lines.append(f"    {exit_} --> {end_id}")
        lines.append("    end")
        lines.append(f"    class {group_id} {node.state.value}")
        return start_id, end_id

    def _render_decision(self, node: DecisionNode) -> tuple[str, str]:
        decision_id = self.ids.unique(f"decision_{node.key or node.id}")
        condition = node.condition or node.name or "condition"
        label = escape_mermaid(condition)
        if node.decision_value is not None:
            label = f"{label} = {escape_mermaid(format_value(node.decision_value, limit=30))}"
        self.lines.append(f'    {decision_id}{{"{label}"}}')

        selected = node.taken_branch
        settled = selected is not None or is_terminal(node.state)
        taken_exit: str | None = None
        for branch in node.branches:
            exit_ = self._render_branch(decision_id, branch, settled)
            if branch is selected:
                taken_exit = exit_
        return decision_id, taken_exit or decision_id

    def _render_branch(self, decision_id: str, branch: DecisionBranch, settled: bool) -> str:
        branch_id = self.ids.unique(f"{decision_id}_{branch.label}")
        text = escape_mermaid(branch.label)
        if branch.taken:
            self.lines.append(f'    {branch_id}["{text} ✓"]:::success')
        elif settled:
            self.lines.append(f'    {branch_id}["{text} skipped"]:::skipped')
        else:
            self.lines.append(f'    {branch_id}["{text}"]:::pending')
        edge = escape_mermaid_edge_label(branch.condition or branch.label)
        self.lines.append(f'    {decision_id} -->|"{edge}"| {branch_id}')
        return self._render_sequence(branch.children, branch_id)

    # ------------------------------------------------------------------
    # Leaves
    # ------------------------------------------------------------------

    def _render_stream(self, node: StreamNode) -> tuple[str, str]:
        node_id = self.ids.unique(f"stream_{node.namespace or node.id}")
        icon = {StreamState.ACTIVE: "⟳", StreamState.CLOSED: "✓", StreamState.ERROR: "✗"}[node.stream_state]
        head = _with_timing(f"{icon} stream:{escape_mermaid(node.namespace)}", format_timing(node, self.options))
        parts = [head, f"W:{node.write_count} R:{node.read_count}"]
        if node.backpressure:
            parts.append("⚠ backpressure")
        match node.stream_state:
            case StreamState.ERROR:
                cls = "streamError"
            case StreamState.ACTIVE:
                cls = "streamActive"
            case _:
                cls = "stream"
        label = "<br/>".join(parts)
        self.lines.append(f'    {node_id}{{{{"{label}"}}}}:::{cls}')
        return node_id, node_id

    def _render_unknown(self, type_name: str) -> tuple[str, str]:
        logger.debug("mermaid_unknown_node", node_type=type_name)
        node_id = self.ids.next("unknown")
        self.lines.append(f'    {node_id}["⚠ Unknown node: {escape_mermaid(type_name)}"]:::pending')
        return node_id, node_id


def render_mermaid(ir: WorkflowIR, options: RenderOptions | None = None) -> str:
    """Render ``ir`` as a Mermaid flowchart.

    Parameters
    ----------
    ir
        The workflow IR. Never mutated.
    options
        Render options; seeded from settings when omitted.

    Returns
    -------
    str
        Complete Mermaid flowchart definition.
    """
    return _MermaidRenderer(ir, options or RenderOptions.from_settings()).render()


__all__ = ["render_mermaid", "STATE_STYLES", "HEAT_STYLES", "HOOK_STYLES"]
