"""
Shared renderer utilities: output ids, escaping, value formatting, heat lookup.

Every renderer builds its own ``NodeIdAllocator`` at the start of a render
call, so output is deterministic per call and concurrent renders never
share counters.
"""

from __future__ import annotations

import html
import json
import re
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import fields, is_dataclass
from enum import Enum
from typing import Any

from flowviz.core.timing import format_duration
from flowviz.ir.models import BaseNode, HookExecution, NodeState, WorkflowHooks
from flowviz.performance import HeatLevel
from flowviz.render.options import RenderOptions

UNSERIALIZABLE = "[unserializable]"
CIRCULAR = "[Circular]"

STATE_ICONS: dict[NodeState, str] = {
    NodeState.PENDING: "",
    NodeState.RUNNING: "⏳",
    NodeState.SUCCESS: "✓",
    NodeState.ERROR: "✗",
    NodeState.ABORTED: "⏹",
    NodeState.CACHED: "💾",
    NodeState.SKIPPED: "⊘",
}

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_]")


# ---------------------------------------------------------------------------
# Output identifiers
# ---------------------------------------------------------------------------

def sanitize_id(text: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_]`` with ``_``."""
    return _UNSAFE_ID_CHARS.sub("_", text)


class NodeIdAllocator:
    """Per-render allocator of unique output ids.

    ``unique("step_fetch")`` returns ``step_fetch``, then ``step_fetch_2``,
    ``step_fetch_3`` on collision. ``next("parallel")`` returns
    ``parallel_1``, ``parallel_2``, ...
    """

    def __init__(self, reserved: tuple[str, ...] = ()) -> None:
        self._used: set[str] = set(reserved)
        self._counters: dict[str, int] = defaultdict(int)

    def unique(self, base: str) -> str:
        base = sanitize_id(base) or "node"
        candidate = base
        suffix = 2
        while candidate in self._used:
            candidate = f"{base}_{suffix}"
            suffix += 1
        self._used.add(candidate)
        return candidate

    def next(self, prefix: str) -> str:
        prefix = sanitize_id(prefix) or "node"
        while True:
            self._counters[prefix] += 1
            candidate = f"{prefix}_{self._counters[prefix]}"
            if candidate not in self._used:
                self._used.add(candidate)
                return candidate


# ---------------------------------------------------------------------------
# Escaping
# ---------------------------------------------------------------------------

def escape_mermaid(text: Any) -> str:
    """Escape text for a quoted Mermaid label.

    ``#`` is escaped first so the entity codes introduced afterwards survive.
    Line breaks collapse to spaces; callers join lines with ``<br/>``.
    """
    s = str(text)
    s = s.replace("#", "#35;")
    s = s.replace('"', "#quot;").replace("<", "#lt;").replace(">", "#gt;")
    s = s.replace("\r", " ").replace("\n", " ")
    return s.strip()


def escape_mermaid_edge_label(text: Any) -> str:
    return escape_mermaid(text).replace("|", "/")


def escape_mermaid_subgraph(text: Any) -> str:
    return re.sub(r"[{}\[\]()]", "", escape_mermaid(text))


def escape_xml(text: Any) -> str:
    """Escape the five XML entities for text nodes and attribute values."""
    return html.escape(str(text), quote=True)


# ---------------------------------------------------------------------------
# Value formatting
# ---------------------------------------------------------------------------

def to_jsonable(value: Any, _ancestors: tuple[int, ...] = ()) -> Any:
    """Plain JSON-compatible copy of ``value``.

    Circular references become ``"[Circular]"``; exceptions become
    ``{"name", "message"}``; anything else unknown is ``str()``-ed.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if id(value) in _ancestors:
        return CIRCULAR
    ancestors = _ancestors + (id(value),)
    if isinstance(value, BaseException):
        return {"name": type(value).__name__, "message": str(value)}
    if is_dataclass(value) and not isinstance(value, type):
        if hasattr(value, "to_dict"):
            return to_jsonable(value.to_dict(), ancestors)
        return {f.name: to_jsonable(getattr(value, f.name), ancestors) for f in fields(value)}
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v, ancestors) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v, ancestors) for v in value]
    return str(value)


def format_value(value: Any, limit: int = 20) -> str:
    """Short display form of a captured input/output/error value."""
    if isinstance(value, str):
        text = value
    elif isinstance(value, BaseException):
        text = f"{type(value).__name__}: {value}"
    else:
        try:
            text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError, RecursionError):
            return UNSERIALIZABLE
    if limit and len(text) > limit:
        text = text[: limit - 1] + "…"
    return text


def format_error(error: Any) -> str:
    """Display form of an error value ("" when there is nothing to show)."""
    if error is None:
        return ""
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    if isinstance(error, Mapping):
        message = error.get("message") or error.get("name")
        if message:
            return str(message)
    return format_value(error, limit=0) if not isinstance(error, str) else error


def error_name(error: Any) -> str:
    """Short error name used for edge labels."""
    if isinstance(error, BaseException):
        return type(error).__name__
    if isinstance(error, Mapping) and error.get("name"):
        return str(error["name"])
    text = format_error(error)
    return text.split(":", 1)[0] if text else "error"


_SCRIPT_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}
_SCRIPT_ESCAPE_RE = re.compile("[<>&\u2028\u2029]")


def safe_json_dumps(value: Any) -> str:
    """JSON safe to embed inside an inline ``<script>`` element."""
    text = json.dumps(to_jsonable(value), ensure_ascii=False, separators=(",", ":"))
    return _SCRIPT_ESCAPE_RE.sub(lambda m: _SCRIPT_ESCAPES[m.group(0)], text)


def format_timing(node: BaseNode, options: RenderOptions) -> str:
    if not options.show_timings or node.duration_ms is None:
        return ""
    return format_duration(node.duration_ms)


def node_label(node: BaseNode, options: RenderOptions, fallback: str = "Step") -> str:
    """``name`` (or key, or fallback); ``name [key]`` with ``show_keys``."""
    base = node.name or node.key or fallback
    if options.show_keys and node.key and node.name and node.key != node.name:
        return f"{base} [{node.key}]"
    return base


def state_icon(state: NodeState) -> str:
    return STATE_ICONS.get(state, "")


# ---------------------------------------------------------------------------
# Heat overlay
# ---------------------------------------------------------------------------

def heat_lookup_key(node: BaseNode) -> list[str]:
    """Lookup order for heat data: key, then name, then id."""
    return [k for k in (node.key, node.name, node.id) if k]


def lookup_heat(node: BaseNode, options: RenderOptions) -> float | None:
    data = options.heatmap_data
    if not options.show_heatmap or data is None:
        return None
    for key in heat_lookup_key(node):
        if key in data.heat:
            return data.heat[key]
    return None


def heat_level(node: BaseNode, options: RenderOptions) -> HeatLevel | None:
    value = lookup_heat(node, options)
    if value is None:
        return None
    return options.thresholds.classify(min(1.0, max(0.0, value)))


def after_step_hook(node: BaseNode, hooks: WorkflowHooks | None) -> HookExecution | None:
    if hooks is None:
        return None
    return hooks.on_after_step.get(node.key or node.id) or hooks.on_after_step.get(node.id)


__all__ = [
    "UNSERIALIZABLE",
    "CIRCULAR",
    "STATE_ICONS",
    "sanitize_id",
    "NodeIdAllocator",
    "escape_mermaid",
    "escape_mermaid_edge_label",
    "escape_mermaid_subgraph",
    "escape_xml",
    "to_jsonable",
    "format_value",
    "format_error",
    "error_name",
    "safe_json_dumps",
    "format_timing",
    "node_label",
    "state_icon",
    "heat_lookup_key",
    "lookup_heat",
    "heat_level",
    "after_step_hook",
]
