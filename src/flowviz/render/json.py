"""JSON renderer - the IR's mapping form as a JSON document.

Values captured from step inputs, outputs, and errors may not be JSON
serializable; they pass through ``to_jsonable`` (exceptions become
``{"name", "message"}``, cycles become ``"[Circular]"``, anything else is
stringified) so the render never fails.
"""

from __future__ import annotations

import json

from flowviz.ir.models import WorkflowIR
from flowviz.render.common import to_jsonable
from flowviz.render.options import RenderOptions


def render_json(ir: WorkflowIR, options: RenderOptions | None = None, *, indent: int | None = 2) -> str:
    """Render ``ir`` as JSON.

    When ``options.show_heatmap`` is set and heat data is present, it is
    included under ``"heatmap"``.
    """
    payload = ir.to_dict()
    if options is not None and options.show_heatmap and options.heatmap_data is not None:
        payload["heatmap"] = options.heatmap_data.to_dict()
    return json.dumps(to_jsonable(payload), indent=indent, ensure_ascii=False)


__all__ = ["render_json"]
