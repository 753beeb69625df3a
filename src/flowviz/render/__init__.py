"""
Renderers - turn a ``WorkflowIR`` into Mermaid, HTML, terminal text or JSON.

Every renderer is a pure function ``render(ir, options) -> str``: it never
mutates the IR, and it builds its own id allocator per call so repeated or
concurrent renders of the same IR produce identical output.

Formats:
    - ``mermaid``        Mermaid flowchart text
    - ``html``           self-contained interactive page (SVG + client script)
    - ``text``/``ascii`` compact terminal view
    - ``json``           the IR's mapping form

Example::

    from flowviz.render import get_renderer, RenderOptions

    render = get_renderer("mermaid")
    print(render(ir, RenderOptions(direction="LR")))
"""

from __future__ import annotations

from collections.abc import Callable

from flowviz.core.errors import UnknownFormatError
from flowviz.ir.models import WorkflowIR
from flowviz.render.common import NodeIdAllocator, escape_mermaid, escape_xml, format_value, safe_json_dumps
from flowviz.render.html import LayoutNode, LayoutResult, layout_ir, render_html
from flowviz.render.json import render_json
from flowviz.render.mermaid import render_mermaid
from flowviz.render.options import DIRECTIONS, RenderOptions
from flowviz.render.text import render_text

Renderer = Callable[[WorkflowIR, RenderOptions | None], str]

RENDERERS: dict[str, Renderer] = {
    "text": render_text,
    "ascii": render_text,
    "mermaid": render_mermaid,
    "html": render_html,
    "json": render_json,
}


def get_renderer(fmt: str) -> Renderer:
    """Look up a renderer by format name (case-insensitive).

    Raises:
        UnknownFormatError: If no renderer is registered for ``fmt``.
    """
    renderer = RENDERERS.get(str(fmt).lower())
    if renderer is None:
        raise UnknownFormatError(str(fmt), sorted(RENDERERS))
    return renderer


__all__ = [
    "RenderOptions",
    "DIRECTIONS",
    "Renderer",
    "RENDERERS",
    "get_renderer",
    "render_text",
    "render_mermaid",
    "render_html",
    "render_json",
    "layout_ir",
    "LayoutNode",
    "LayoutResult",
    "NodeIdAllocator",
    "escape_mermaid",
    "escape_xml",
    "format_value",
    "safe_json_dumps",
]
