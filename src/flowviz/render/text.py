"""Text renderer - compact terminal view of a ``WorkflowIR``.

One line per node, indented by nesting depth, framed by a header that is
exactly ``terminal_width`` columns wide and a footer carrying the workflow
status::

    ┌─ checkout ─────────────────────────────────────────────┐
    │ ⚙ shouldRun proceed
    │ ✓ fetch-user 45ms
    │ ⚡ Parallel (detected)
    │   ✓ load-cart 120ms
    │   ✓ load-prices 80ms
    │ ◆ total > 100 = true
    │   ✓ if
    │     ✓ apply-discount 3ms
    │   ⊘ else (skipped)
    └─ ✓ Completed 251ms ────────────────────────────────────┘

ANSI colors are opt-in (``RenderOptions.colors``). With a heatmap overlay
enabled, steps that have heat data are colored by heat level instead of
state.
"""

from __future__ import annotations

import unicodedata

from flowviz.core.timing import format_duration
from flowviz.ir.models import (
    DecisionNode,
    FlowNode,
    HookExecution,
    NodeState,
    ParallelNode,
    RaceNode,
    ScopeMode,
    StepNode,
    StreamNode,
    UnknownNode,
    WorkflowHooks,
    WorkflowIR,
    is_terminal,
)
from flowviz.performance import HeatLevel
from flowviz.render.common import (
    after_step_hook,
    format_error,
    format_timing,
    format_value,
    heat_level,
    node_label,
    state_icon,
)
from flowviz.render.options import RenderOptions

RESET = "\x1b[0m"

STATE_COLORS: dict[NodeState, str] = {
    NodeState.PENDING: "\x1b[2m",
    NodeState.RUNNING: "\x1b[33m",
    NodeState.SUCCESS: "\x1b[32m",
    NodeState.ERROR: "\x1b[31m",
    NodeState.ABORTED: "\x1b[90m",
    NodeState.CACHED: "\x1b[34m",
    NodeState.SKIPPED: "\x1b[2m",
}

HEAT_COLORS: dict[HeatLevel, str] = {
    HeatLevel.COLD: "\x1b[34m",
    HeatLevel.COOL: "\x1b[36m",
    HeatLevel.NEUTRAL: "\x1b[37m",
    HeatLevel.WARM: "\x1b[33m",
    HeatLevel.HOT: "\x1b[91m",
    HeatLevel.CRITICAL: "\x1b[41m",
}

STATUS_LABELS: dict[NodeState, str] = {
    NodeState.PENDING: "Pending",
    NodeState.RUNNING: "Running",
    NodeState.SUCCESS: "Completed",
    NodeState.ERROR: "Failed",
    NodeState.ABORTED: "Cancelled",
    NodeState.CACHED: "Completed",
    NodeState.SKIPPED: "Skipped",
}

INDENT = "  "


def display_width(text: str) -> int:
    """Terminal columns taken by ``text``: wide and fullwidth characters count
    as two, combining marks as zero."""
    width = 0
    for ch in text:
        if unicodedata.combining(ch):
            continue
        width += 2 if unicodedata.east_asian_width(ch) in ("W", "F") else 1
    return width


def _clip(text: str, limit: int) -> str:
    """Longest prefix of ``text`` that fits in ``limit`` columns."""
    used = 0
    for i, ch in enumerate(text):
        used += display_width(ch)
        if used > limit:
            return text[:i]
    return text


def _rule(left: str, text: str, right: str, width: int) -> str:
    """``left─ text ───right`` padded or truncated to exactly ``width`` columns."""
    inner = max(0, width - display_width(left) - display_width(right))
    segment = f"─ {text} " if text else ""
    if display_width(segment) > inner:
        segment = _clip(segment, inner - 1) + "…" if inner else ""
    return left + segment + "─" * (inner - display_width(segment)) + right


class _TextRenderer:
    def __init__(self, ir: WorkflowIR, options: RenderOptions) -> None:
        self.ir = ir
        self.options = options
        self.hooks: WorkflowHooks | None = ir.hooks if options.show_hooks else None
        self.lines: list[str] = []

    def render(self) -> str:
        opts = self.options
        root = self.ir.root
        width = max(2, opts.terminal_width)
        title = opts.title or root.name or root.workflow_id or "workflow"
        self.lines.append(_rule("┌", title, "┐", width))

        self._render_hooks()
        if root.children:
            for child in root.children:
                self._render_node(child, 0)
        else:
            self._emit(0, "(no steps)")

        status = f"{state_icon(root.state)} {STATUS_LABELS[root.state]}".strip()
        timing = format_timing(root, opts)
        if timing:
            status = f"{status} {timing}"
        if root.state == NodeState.ERROR and root.error is not None:
            status = f"{status}: {format_error(root.error)}"
        self.lines.append(_rule("└", status, "┘", width))
        return "\n".join(self.lines)

    # ------------------------------------------------------------------

    def _emit(self, depth: int, text: str, color: str | None = None) -> None:
        if color and self.options.colors:
            text = f"{color}{text}{RESET}"
        self.lines.append(f"│ {INDENT * depth}{text}")

    def _head(self, icon: str, text: str, timing: str = "") -> str:
        head = f"{icon} {text}" if icon else text
        return f"{head} {timing}" if timing else head

    def _hook_text(self, title: str, hook: HookExecution) -> str:
        icon = "⚙" if hook.state == NodeState.SUCCESS else "⚠"
        detail = ""
        if hook.skipped:
            detail = " skipped workflow"
        elif hook.result is True:
            detail = " proceed"
        timing = ""
        if self.options.show_timings and hook.duration_ms is not None:
            timing = f" {format_duration(hook.duration_ms)}"
        return f"{icon} {title}{detail}{timing}"

    def _render_hooks(self) -> None:
        hooks = self.hooks
        if hooks is None:
            return
        for title, hook in (("shouldRun", hooks.should_run), ("onBeforeStart", hooks.on_before_start)):
            if hook is not None:
                self._emit(0, self._hook_text(title, hook))

    def _render_node(self, node: FlowNode, depth: int) -> None:
        match node:
            case StepNode():
                self._render_step(node, depth)
            case ParallelNode():
                name = node.name or "Parallel"
                if node.mode == ScopeMode.ALL_SETTLED:
                    name = f"{name} (allSettled)"
                self._render_group("⚡", name, node, depth)
            case RaceNode():
                self._render_group("🏁", node.name or "Race", node, depth)
            case DecisionNode():
                self._render_decision(node, depth)
            case StreamNode():
                text = f"⟳ stream:{node.namespace} W:{node.write_count} R:{node.read_count}"
                if node.backpressure:
                    text += " ⚠ backpressure"
                if node.error is not None:
                    text += f" ✗ {format_error(node.error)}"
                self._emit(depth, text, STATE_COLORS.get(node.state))
            case UnknownNode():
                self._emit(depth, f"⚠ Unknown node: {node.raw_type or 'unknown'}")
            case _:
                self._emit(depth, f"⚠ Unknown node: {type(node).__name__}")

    def _render_step(self, node: StepNode, depth: int) -> None:
        opts = self.options
        text = self._head(state_icon(node.state), node_label(node, opts), format_timing(node, opts))
        if node.retry_count:
            noun = "retry" if node.retry_count == 1 else "retries"
            text += f" ↻ {node.retry_count} {noun}"
        if node.timed_out:
            text += " ⏱ timeout"
        if node.state == NodeState.SKIPPED and node.skip_reason:
            text += f" ({node.skip_reason})"

        level = heat_level(node, opts)
        color = HEAT_COLORS[level] if level is not None else STATE_COLORS.get(node.state)
        self._emit(depth, text, color)

        if node.input is not None:
            self._emit(depth + 1, f"in: {format_value(node.input, limit=40)}")
        if node.output is not None and node.state == NodeState.SUCCESS:
            self._emit(depth + 1, f"out: {format_value(node.output, limit=40)}")
        if node.state == NodeState.ERROR and node.error is not None:
            self._emit(depth + 1, f"error: {format_error(node.error)}", STATE_COLORS[NodeState.ERROR])
        hook = after_step_hook(node, self.hooks)
        if hook is not None:
            self._emit(depth + 1, self._hook_text("hook", hook))

    def _render_group(self, icon: str, name: str, node: ParallelNode | RaceNode, depth: int) -> None:
        opts = self.options
        text = self._head(icon, name, format_timing(node, opts))
        if not node.children:
            text += " (operations not individually tracked)"
        self._emit(depth, text, STATE_COLORS.get(node.state))
        winner = node.winner_id if isinstance(node, RaceNode) else None
        for child in node.children:
            if winner is not None and winner in (child.id, child.key):
                self._emit(depth + 1, "🏆 winner")
            self._render_node(child, depth + 1)

    def _render_decision(self, node: DecisionNode, depth: int) -> None:
        text = node.condition or node.name or "decision"
        if node.decision_value is not None:
            text = f"{text} = {format_value(node.decision_value, limit=30)}"
        self._emit(depth, self._head("◆", text, format_timing(node, self.options)), STATE_COLORS.get(node.state))
        settled = node.taken_branch is not None or is_terminal(node.state)
        for branch in node.branches:
            if branch.taken:
                line = f"✓ {branch.label}"
            elif settled:
                line = f"⊘ {branch.label} (skipped)"
            else:
                line = f"· {branch.label}"
            if branch.condition and branch.condition != branch.label:
                line += f" [{branch.condition}]"
            self._emit(depth + 1, line)
            for child in branch.children:
                self._render_node(child, depth + 2)


def render_text(ir: WorkflowIR, options: RenderOptions | None = None) -> str:
    """Render ``ir`` as terminal text."""
    return _TextRenderer(ir, options or RenderOptions.from_settings()).render()


__all__ = ["render_text", "display_width", "STATE_COLORS", "HEAT_COLORS", "STATUS_LABELS"]
