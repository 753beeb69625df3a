"""Execution tree (IR): model, builder, concurrency detection, decision helpers."""

from flowviz.ir.builder import PENDING_BRANCH_LABEL, IRBuilder
from flowviz.ir.decisions import (
    DecisionTracker,
    IfTracker,
    SwitchTracker,
    track_decision,
    track_if,
    track_switch,
)
from flowviz.ir.models import (
    TERMINAL_STATES,
    BaseNode,
    DecisionBranch,
    DecisionNode,
    FlowNode,
    HookExecution,
    IRMetadata,
    NodeState,
    NodeType,
    ParallelNode,
    RaceNode,
    ScopeMode,
    StepNode,
    StreamNode,
    StreamState,
    UnknownNode,
    WorkflowHooks,
    WorkflowIR,
    WorkflowNode,
    clone_ir,
    ir_from_dict,
    is_terminal,
    iter_nodes,
    node_from_dict,
)
from flowviz.ir.parallel import (
    ParallelDetectorOptions,
    apply_parallel_detection,
    detect_parallel_groups,
)

__all__ = [
    "IRBuilder",
    "PENDING_BRANCH_LABEL",
    "DecisionTracker",
    "IfTracker",
    "SwitchTracker",
    "track_decision",
    "track_if",
    "track_switch",
    "TERMINAL_STATES",
    "BaseNode",
    "DecisionBranch",
    "DecisionNode",
    "FlowNode",
    "HookExecution",
    "IRMetadata",
    "NodeState",
    "NodeType",
    "ParallelNode",
    "RaceNode",
    "ScopeMode",
    "StepNode",
    "StreamNode",
    "StreamState",
    "UnknownNode",
    "WorkflowHooks",
    "WorkflowIR",
    "WorkflowNode",
    "clone_ir",
    "ir_from_dict",
    "is_terminal",
    "iter_nodes",
    "node_from_dict",
    "ParallelDetectorOptions",
    "apply_parallel_detection",
    "detect_parallel_groups",
]
