"""Tests for the JSON renderer.

Covers:
- Output is valid JSON mirroring ``WorkflowIR.to_dict``
- Unserializable captured values (cycles, exceptions, objects)
- Optional heatmap section
- Decoding malformed analyzer input into labeled placeholders
"""

from __future__ import annotations

import json

from flowviz.ir import (
    DecisionNode,
    IRMetadata,
    NodeState,
    StepNode,
    UnknownNode,
    WorkflowIR,
    WorkflowNode,
    ir_from_dict,
)
from flowviz.performance import HeatmapData, HeatmapStats, HeatMetric
from flowviz.render import RenderOptions, render_json


def _ir(*children) -> WorkflowIR:
    return WorkflowIR(
        root=WorkflowNode(id="wf", name="checkout", state=NodeState.SUCCESS, children=list(children)),
        metadata=IRMetadata(1, 2),
    )


class TestRenderJson:
    def test_valid_json(self):
        ir = _ir(StepNode(id="a", key="a", state=NodeState.SUCCESS, duration_ms=5))
        data = json.loads(render_json(ir))
        assert data["root"]["name"] == "checkout"
        assert data["root"]["state"] == "success"
        assert data["root"]["children"][0]["type"] == "step"
        assert data["metadata"] == {"created_at": 1, "last_updated_at": 2}

    def test_round_trips_through_ir_from_dict(self):
        ir = _ir(StepNode(id="a", key="a", state=NodeState.ERROR, error="boom"))
        restored = ir_from_dict(json.loads(render_json(ir)))
        assert restored.root.children[0].state == NodeState.ERROR
        assert restored.root.children[0].error == "boom"

    def test_circular_input(self):
        cyclic: list = []
        cyclic.append(cyclic)
        data = json.loads(render_json(_ir(StepNode(id="a", input=cyclic))))
        assert data["root"]["children"][0]["input"] == ["[Circular]"]

    def test_exception_and_object_values(self):
        step = StepNode(id="a", error=KeyError("id"), output=object())
        child = json.loads(render_json(_ir(step)))["root"]["children"][0]
        assert child["error"] == {"name": "KeyError", "message": "'id'"}
        assert child["output"].startswith("<object object")

    def test_compact_indent(self):
        assert "\n" not in render_json(_ir(), indent=None)

    def test_heatmap_only_when_enabled(self):
        heat = HeatmapData(heat={"a": 1.0}, metric=HeatMetric.ERROR_RATE, stats=HeatmapStats(0, 1, 1, 1))
        assert "heatmap" not in json.loads(render_json(_ir(), RenderOptions(heatmap_data=heat)))
        data = json.loads(render_json(_ir(), RenderOptions(show_heatmap=True, heatmap_data=heat)))
        assert data["heatmap"]["metric"] == "errorRate"
        assert data["heatmap"]["heat"] == {"a": 1.0}


class TestMalformedInput:
    def test_non_mapping_children_become_placeholders(self):
        data = {
            "root": {
                "type": "workflow",
                "id": "wf",
                "children": [
                    None,
                    "step-a",
                    {
                        "type": "decision",
                        "id": "d1",
                        "branches": [
                            {"label": "premium", "taken": True, "children": [None, {"type": "step", "id": "s1"}]},
                            42,
                        ],
                    },
                ],
            },
        }
        ir = ir_from_dict(data)
        none_child, str_child, decision = ir.root.children
        assert isinstance(none_child, UnknownNode) and none_child.raw_type == "NoneType"
        assert isinstance(str_child, UnknownNode) and str_child.raw_type == "str"
        assert isinstance(decision, DecisionNode)
        premium, bogus = decision.branches
        assert isinstance(premium.children[0], UnknownNode)
        assert isinstance(premium.children[1], StepNode)
        assert bogus.label == "(unknown)"
        assert bogus.children[0].raw_type == "int"

    def test_non_list_children_ignored(self):
        ir = ir_from_dict({"root": {"type": "workflow", "id": "wf", "children": "oops"}})
        assert ir.root.children == []

    def test_non_mapping_root_wrapped(self):
        ir = ir_from_dict({"root": ["not", "a", "node"]})
        assert isinstance(ir.root, WorkflowNode)
        assert ir.root.children[0].raw_type == "list"

    def test_unhashable_type_tag(self):
        ir = ir_from_dict({"root": {"type": "workflow", "id": "wf", "children": [{"type": ["step"], "id": "x"}]}})
        assert isinstance(ir.root.children[0], UnknownNode)
        assert ir.root.children[0].id == "x"
