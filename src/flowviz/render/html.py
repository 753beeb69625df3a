"""HTML renderer - self-contained interactive page with an SVG diagram.

The page embeds everything it needs: themed CSS, a laid-out SVG diagram,
the IR (and optionally time-travel snapshots and heatmap data) as inline
JSON payloads, and a client script for pan/zoom, node inspection, the
timeline scrubber and the heatmap toggle.

Architecture::

    render_html(ir, options)
        │
        ├── layout_ir(ir, options) ──► LayoutResult
        │       sequence along the main axis (TB/BT: y, LR/RL: x)
        │       parallel / race  → children side by side in a container
        │       decision         → one column per branch in a container
        │       BT / RL          → positions mirrored after layout
        │
        ├── _svg_node / _svg_container  (escape_xml on every text/attribute)
        ├── _svg_edges                  (path + arrowhead polygon)
        └── page: header · controls · diagram · inspector · timeline
                  + safe_json_dumps payloads + client script

Layout constants (px)::

    node      160 × 50
    spacing   40 horizontal, 30 vertical
    padding   20 inside containers (+20 for the container label)

Example::

    html = render_html(ir, RenderOptions(theme="dark", snapshots=controller.get_snapshots()))
    Path("run.html").write_text(html, encoding="utf-8")
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flowviz.core.timing import format_duration
from flowviz.ir.models import (
    DecisionNode,
    FlowNode,
    NodeState,
    ParallelNode,
    RaceNode,
    StepNode,
    StreamNode,
    StreamState,
    UnknownNode,
    WorkflowIR,
)
from flowviz.render.common import escape_xml, heat_level, node_label, safe_json_dumps
from flowviz.render.html_assets import generate_client_script, generate_styles
from flowviz.render.options import RenderOptions

NODE_WIDTH = 160
NODE_HEIGHT = 50
NODE_SPACING_H = 40
NODE_SPACING_V = 30
CONTAINER_PADDING = 20
CONTAINER_LABEL_HEIGHT = 20

MIN_SVG_WIDTH = 400
MIN_SVG_HEIGHT = 300

PLAYBACK_SPEEDS = (0.5, 1, 2, 4, 10)

_CONTAINER_LABELS = {"parallel": "PARALLEL", "race": "RACE", "decision": "DECISION"}


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

@dataclass
class LayoutNode:
    """Positioned box for one IR node (absolute coordinates)."""

    id: str
    name: str
    type: str
    state: NodeState
    x: float
    y: float
    width: float
    height: float
    duration_ms: float | None = None
    heat: str | None = None
    container_type: str | None = None
    children: list[LayoutNode] = field(default_factory=list)
    branches: list[list[LayoutNode]] = field(default_factory=list)

    @property
    def container_label(self) -> str | None:
        return _CONTAINER_LABELS.get(self.container_type or "")


@dataclass
class LayoutResult:
    nodes: list[LayoutNode]
    width: float
    height: float


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


class _Layout:
    def __init__(self, options: RenderOptions) -> None:
        self.options = options

    def leaf(self, node: FlowNode, x: float, y: float) -> LayoutNode:
        match node:
            case StepNode():
                name = node_label(node, self.options, fallback="step")
                level = heat_level(node, self.options)
                return LayoutNode(
                    id=node.id, name=name, type="step", state=node.state,
                    x=x, y=y, width=NODE_WIDTH, height=NODE_HEIGHT,
                    duration_ms=node.duration_ms, heat=level.value if level else None,
                )
            case StreamNode():
                icon = {StreamState.ACTIVE: "⟳", StreamState.CLOSED: "✓", StreamState.ERROR: "✗"}[node.stream_state]
                return LayoutNode(
                    id=node.id, name=f"stream:{node.namespace} {icon}", type="stream", state=node.state,
                    x=x, y=y, width=NODE_WIDTH, height=NODE_HEIGHT, duration_ms=node.duration_ms,
                )
            case UnknownNode():
                name = f"⚠ Unknown node: {node.raw_type or 'unknown'}"
            case _:
                name = f"⚠ Unknown node: {type(node).__name__}"
        return LayoutNode(
            id=getattr(node, "id", "unknown"), name=name, type="unknown", state=NodeState.PENDING,
            x=x, y=y, width=NODE_WIDTH, height=NODE_HEIGHT,
        )

    def node(self, node: FlowNode, x: float, y: float) -> LayoutNode:
        match node:
            case ParallelNode() | RaceNode():
                kind = "parallel" if isinstance(node, ParallelNode) else "race"
                return self.group(node, kind, [[c] for c in node.children], x, y)
            case DecisionNode():
                columns = [b.children for b in node.branches if b.children]
                return self.group(node, "decision", columns, x, y)
            case _:
                return self.leaf(node, x, y)

    def group(
        self,
        node: ParallelNode | RaceNode | DecisionNode,
        kind: str,
        columns: list[list[FlowNode]],
        x: float,
        y: float,
    ) -> LayoutNode:
        """Container whose ``columns`` sit side by side, each stacked vertically."""
        inner_x = x + CONTAINER_PADDING
        inner_y = y + CONTAINER_PADDING + CONTAINER_LABEL_HEIGHT
        children: list[LayoutNode] = []
        branches: list[list[LayoutNode]] = []
        tallest = 0.0
        for column in columns:
            col_y = inner_y
            col_width = 0.0
            laid: list[LayoutNode] = []
            for child in column:
                placed = self.node(child, inner_x, col_y)
                laid.append(placed)
                col_y += placed.height + NODE_SPACING_V
                col_width = max(col_width, placed.width)
            children.extend(laid)
            branches.append(laid)
            tallest = max(tallest, col_y - NODE_SPACING_V - inner_y)
            inner_x += col_width + NODE_SPACING_H

        width = max(inner_x - x - NODE_SPACING_H + CONTAINER_PADDING, NODE_WIDTH + CONTAINER_PADDING * 2)
        height = max(tallest, NODE_HEIGHT) + CONTAINER_PADDING * 2 + CONTAINER_LABEL_HEIGHT
        return LayoutNode(
            id=node.id, name=node.name or kind, type=kind, state=node.state,
            x=x, y=y, width=width, height=height, duration_ms=node.duration_ms,
            container_type=kind, children=children,
            branches=branches if kind == "decision" else [],
        )


def _mirror(node: LayoutNode, total_width: float, total_height: float, vertical: bool) -> None:
    if vertical:
        node.y = total_height - node.y - node.height
    else:
        node.x = total_width - node.x - node.width
    for child in node.children:
        _mirror(child, total_width, total_height, vertical)


def layout_ir(ir: WorkflowIR, options: RenderOptions | None = None) -> LayoutResult:
    """Compute absolute positions for the top-level sequence of ``ir``."""
    options = options or RenderOptions.from_settings()
    direction = options.layout_direction
    vertical = direction in ("TB", "BT")
    layout = _Layout(options)

    nodes: list[LayoutNode] = []
    x = y = float(CONTAINER_PADDING)
    max_width = max_height = 0.0
    for child in ir.root.children:
        placed = layout.node(child, x, y)
        nodes.append(placed)
        if vertical:
            y += placed.height + NODE_SPACING_V
            max_width = max(max_width, x + placed.width)
            max_height = y
        else:
            x += placed.width + NODE_SPACING_H
            max_height = max(max_height, y + placed.height)
            max_width = x

    total_width = max_width + CONTAINER_PADDING
    total_height = max_height + CONTAINER_PADDING
    if direction in ("BT", "RL"):
        for node in nodes:
            _mirror(node, total_width, total_height, vertical)
    return LayoutResult(nodes=nodes, width=total_width, height=total_height)


# ---------------------------------------------------------------------------
# SVG
# ---------------------------------------------------------------------------

def _svg_node(node: LayoutNode, options: RenderOptions) -> str:
    if node.container_type:
        return _svg_container(node, options)
    timing = format_duration(node.duration_ms) if options.show_timings and node.duration_ms is not None else ""
    classes = f"wv-node wv-node--{node.state.value}"
    if node.type == "stream":
        classes += " wv-stream"
    if node.heat and options.show_heatmap:
        classes += f" wv-heat--{node.heat}"
    limit = 40 if options.show_keys else 20
    cx = node.width / 2
    label_y = node.height / 2 - (4 if timing else 0)
    parts = [
        f'<g class="{classes}" data-node-id="{escape_xml(node.id)}" transform="translate({node.x:g}, {node.y:g})">',
        f'  <rect width="{node.width:g}" height="{node.height:g}" rx="8" ry="8" />',
        f'  <text x="{cx:g}" y="{label_y:g}">{escape_xml(_truncate(node.name, limit))}</text>',
    ]
    if timing:
        parts.append(f'  <text class="wv-node-timing" x="{cx:g}" y="{node.height / 2 + 12:g}">{escape_xml(timing)}</text>')
    parts.append("</g>")
    return "\n".join(parts)


def _svg_container(node: LayoutNode, options: RenderOptions) -> str:
    children = "\n".join(_svg_node(c, options) for c in node.children)
    return "\n".join([
        f'<g class="wv-container wv-container--{node.container_type}" '
        f'data-node-id="{escape_xml(node.id)}" transform="translate({node.x:g}, {node.y:g})">',
        f'  <rect width="{node.width:g}" height="{node.height:g}" rx="12" ry="12" />',
        f'  <text class="wv-container-label" x="{CONTAINER_PADDING}" y="16">'
        f"{escape_xml(node.container_label or '')} · {escape_xml(_truncate(node.name, 24))}</text>",
        f'  <g transform="translate({-node.x:g}, {-node.y:g})">',
        children,
        "  </g>",
        "</g>",
    ])


def _edge(source: LayoutNode, target: LayoutNode) -> str:
    if abs(source.y - target.y) < source.height:
        # side by side: right edge of the leftmost box to the other's near side
        if source.x <= target.x:
            x1, x2, tip = source.x + source.width, target.x, -8
        else:
            x1, x2, tip = source.x, target.x + target.width, 8
        y1 = source.y + source.height / 2
        y2 = target.y + target.height / 2
        return (
            f'<path class="wv-edge" d="M {x1:g} {y1:g} L {x2 + tip:g} {y2:g}" />\n'
            f'<polygon class="wv-edge-arrow" points="{x2 + tip:g},{y2 - 4:g} {x2 + tip:g},{y2 + 4:g} {x2:g},{y2:g}" />'
        )
    if source.y <= target.y:
        y1, y2, tip = source.y + source.height, target.y, -8
    else:
        y1, y2, tip = source.y, target.y + target.height, 8
    x1 = source.x + source.width / 2
    x2 = target.x + target.width / 2
    return (
        f'<path class="wv-edge" d="M {x1:g} {y1:g} L {x2:g} {y2 + tip:g}" />\n'
        f'<polygon class="wv-edge-arrow" points="{x2 - 4:g},{y2 + tip:g} {x2 + 4:g},{y2 + tip:g} {x2:g},{y2:g}" />'
    )


def _svg_edges(nodes: list[LayoutNode]) -> str:
    """Sequential edges; decisions link to each branch head, containers recurse."""
    edges: list[str] = []

    def collect(sequence: list[LayoutNode]) -> None:
        for source, target in zip(sequence, sequence[1:]):
            edges.append(_edge(source, target))
        for node in sequence:
            if node.container_type == "decision":
                for branch in node.branches:
                    if branch:
                        edges.append(_edge(node, branch[0]))
                    collect(branch)
            elif node.container_type:
                for child in node.children:
                    collect([child])

    collect(nodes)
    return "\n".join(edges)


# ---------------------------------------------------------------------------
# Page
# ---------------------------------------------------------------------------

def _controls(options: RenderOptions) -> str:
    parts: list[str] = []
    if options.heatmap:
        selected = options.heatmap_metric.value
        choices = (("duration", "Duration"), ("retryRate", "Retry Rate"), ("errorRate", "Error Rate"))
        option_tags = "".join(
            f'<option value="{value}"{" selected" if value == selected else ""}>{label}</option>'
            for value, label in choices
        )
        parts.append('<button id="heatmap-toggle" class="wv-btn">Heatmap</button>')
        parts.append(f'<select id="heatmap-metric" class="wv-btn">{option_tags}</select>')
        parts.append('<span id="heatmap-note" class="wv-note"></span>')
    if options.interactive:
        parts.append('<button id="zoom-out" class="wv-btn wv-btn--icon" title="Zoom out (-)">−</button>')
        parts.append('<button id="zoom-reset" class="wv-btn wv-btn--icon" title="Reset zoom (0)">⟲</button>')
        parts.append('<button id="zoom-in" class="wv-btn wv-btn--icon" title="Zoom in (+)">+</button>')
    return "\n        ".join(parts)


def _inspector() -> str:
    return """<aside id="inspector" class="wv-inspector">
        <div class="wv-inspector-header"><h2>Inspector</h2></div>
        <div id="inspector-content" class="wv-inspector-content">
          <p class="wv-empty">Select a node to inspect</p>
        </div>
      </aside>"""


def _timeline() -> str:
    speeds = "".join(
        f'<option value="{s:g}"{" selected" if s == 1 else ""}>{s:g}x</option>' for s in PLAYBACK_SPEEDS
    )
    return f"""<div id="timeline" class="wv-timeline">
      <div class="wv-timeline-track">
        <input type="range" id="tt-slider" min="0" max="0" value="0" style="width:100%">
      </div>
      <div class="wv-timeline-controls">
        <button id="tt-prev" class="wv-btn wv-btn--icon" title="Step backward">⏮</button>
        <button id="tt-play" class="wv-btn wv-btn--icon" title="Play">▶</button>
        <button id="tt-pause" class="wv-btn wv-btn--icon" style="display:none" title="Pause">⏸</button>
        <button id="tt-next" class="wv-btn wv-btn--icon" title="Step forward">⏭</button>
        <select id="tt-speed" class="wv-btn">{speeds}</select>
        <span id="tt-time" class="wv-timeline-time">0 / 0</span>
      </div>
    </div>"""


def _payloads(ir: WorkflowIR, options: RenderOptions) -> str:
    lines = [f"window.__WORKFLOW_IR__ = {safe_json_dumps(ir.to_dict())};"]
    if options.time_travel and options.snapshots:
        snapshots = [
            {"index": s.index, "ts": s.ts, "event_type": getattr(s.event, "type", None), "ir": s.ir.to_dict()}
            for s in options.snapshots
        ]
        lines.append(f"window.__WORKFLOW_SNAPSHOTS__ = {safe_json_dumps(snapshots)};")
    if options.heatmap_data is not None:
        t = options.thresholds
        perf = options.heatmap_data.to_dict()
        perf["thresholds"] = {
            "cool": t.cool, "neutral": t.neutral, "warm": t.warm, "hot": t.hot, "critical": t.critical,
        }
        lines.append(f"window.__PERFORMANCE_DATA__ = {safe_json_dumps(perf)};")
    return "\n    ".join(lines)


def render_html(ir: WorkflowIR, options: RenderOptions | None = None) -> str:
    """Render ``ir`` as a self-contained HTML document."""
    options = options or RenderOptions.from_settings()
    layout = layout_ir(ir, options)
    svg_width = max(layout.width, MIN_SVG_WIDTH)
    svg_height = max(layout.height, MIN_SVG_HEIGHT)
    title = options.title or ir.root.name or "Workflow"
    theme = options.theme if options.theme in ("auto", "light", "dark") else "auto"

    edges = _svg_edges(layout.nodes)
    nodes = "\n".join(_svg_node(n, options) for n in layout.nodes)
    script = generate_client_script(
        interactive=options.interactive,
        time_travel=options.time_travel,
        heatmap=options.heatmap,
    )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{escape_xml(title)} - Workflow Visualizer</title>
  <style>{generate_styles(theme)}</style>
</head>
<body class="wv-theme--{theme}">
  <div class="workflow-visualizer">
    <header class="wv-header">
      <h1>{escape_xml(title)}</h1>
      <div class="wv-controls">
        {_controls(options)}
      </div>
    </header>
    <div class="wv-main">
      <div id="diagram" class="wv-diagram">
        <svg viewBox="0 0 {svg_width:g} {svg_height:g}" preserveAspectRatio="xMidYMid meet">
          <g class="wv-root">
{edges}
{nodes}
          </g>
        </svg>
      </div>
      {_inspector() if options.interactive else ""}
    </div>
    {_timeline() if options.time_travel else ""}
  </div>
  <script>
    {_payloads(ir, options)}
  </script>
  <script>{script}</script>
</body>
</html>"""


__all__ = [
    "render_html",
    "layout_ir",
    "LayoutNode",
    "LayoutResult",
    "NODE_WIDTH",
    "NODE_HEIGHT",
    "NODE_SPACING_H",
    "NODE_SPACING_V",
    "CONTAINER_PADDING",
    "PLAYBACK_SPEEDS",
]
