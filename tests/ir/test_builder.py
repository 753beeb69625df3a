"""Tests for IRBuilder - folding event streams into the execution tree.

Covers:
- Workflow lifecycle (start, success, error, cancel, new run after terminal)
- Step lookup by key then id, retries, cache hits, skips, timeouts
- Monotonic node states (terminal states never change)
- Explicit parallel / allSettled / race scopes, out-of-order scope ends
- Decisions with and without branch events (placeholder branch)
- Streams and lifecycle hooks
- Foreign workflow ids and malformed input never raise
"""

from __future__ import annotations

import pytest

from conftest import (
    WF,
    decision_branch,
    decision_end,
    decision_start,
    hook_event,
    scope_end,
    scope_start,
    step_error,
    step_event,
    step_retry,
    step_start,
    step_success,
    stream_event,
    workflow_cancelled,
    workflow_error,
    workflow_start,
    workflow_success,
)
from flowviz.events import EventType, StepEvent
from flowviz.ir import (
    PENDING_BRANCH_LABEL,
    DecisionNode,
    IRBuilder,
    NodeState,
    ParallelNode,
    RaceNode,
    ScopeMode,
    StepNode,
    StreamNode,
    StreamState,
    iter_nodes,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _build(events, **kwargs) -> IRBuilder:
    builder = IRBuilder(clock=lambda: 0.0, **kwargs)
    for event in events:
        builder.handle_event(event)
    return builder


def _children(builder: IRBuilder):
    return builder.get_ir().root.children


# ---------------------------------------------------------------------------
# Workflow lifecycle
# ---------------------------------------------------------------------------

class TestWorkflowLifecycle:
    def test_empty_builder(self):
        builder = IRBuilder(clock=lambda: 5.0)
        ir = builder.get_ir()
        assert ir.root.state == NodeState.PENDING
        assert ir.root.children == []
        assert ir.metadata.created_at == 5.0
        assert builder.workflow_id is None
        assert builder.event_count == 0

    def test_fetch_user_end_to_end(self, fetch_user_events):
        builder = _build(fetch_user_events)
        root = builder.get_ir().root
        assert root.state == NodeState.SUCCESS
        assert root.id == "wf-1"
        assert root.name == "load-profile"
        assert len(root.children) == 1
        step = root.children[0]
        assert isinstance(step, StepNode)
        assert step.type.value == "step"
        assert step.state == NodeState.SUCCESS
        assert step.duration_ms == 45
        assert builder.is_terminal

    def test_workflow_name_fallback(self):
        builder = _build([workflow_start()], workflow_name="checkout")
        assert builder.get_ir().root.name == "checkout"

    def test_workflow_error_records_error(self):
        builder = _build([workflow_start(ts=0), workflow_error(ts=10, error="db down")])
        root = builder.get_ir().root
        assert root.state == NodeState.ERROR
        assert root.error == "db down"
        assert root.duration_ms == 10

    def test_workflow_cancelled(self):
        builder = _build([workflow_start(ts=0), workflow_cancelled(ts=3, reason="user")])
        root = builder.get_ir().root
        assert root.state == NodeState.ABORTED
        assert root.error == "user"

    def test_events_after_terminal_ignored(self):
        builder = _build([workflow_start(), workflow_success(), step_start("late")])
        assert _children(builder) == []
        assert builder.get_ir().root.state == NodeState.SUCCESS

    def test_new_run_after_terminal_resets_tree(self):
        builder = _build([
            workflow_start(ts=0, workflow_id="run-1"),
            step_start("a", ts=1, workflow_id="run-1"),
            workflow_success(ts=5, workflow_id="run-1"),
            workflow_start(ts=10, workflow_id="run-2"),
        ])
        ir = builder.get_ir()
        assert ir.root.id == "run-2"
        assert ir.root.state == NodeState.RUNNING
        assert ir.root.children == []
        assert builder.workflow_id == "run-2"

    def test_foreign_workflow_events_ignored(self):
        builder = _build([workflow_start(), step_start("other", workflow_id="wf-9")])
        assert _children(builder) == []

    def test_last_updated_tracks_event_ts(self):
        builder = _build([workflow_start(ts=100), step_start("a", ts=150)])
        assert builder.get_ir().metadata.last_updated_at == 150

    def test_reset(self, fetch_user_events):
        builder = _build(fetch_user_events)
        builder.reset()
        assert _children(builder) == []
        assert builder.event_count == 0
        assert builder.workflow_id is None


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

class TestSteps:
    def test_step_found_by_key_then_id(self):
        builder = _build([
            workflow_start(),
            step_start("fetch", step_id="inv-1"),
            step_success("fetch", step_id="inv-other"),
        ])
        (step,) = _children(builder)
        assert step.id == "inv-1"
        assert step.state == NodeState.SUCCESS

    def test_step_without_key_found_by_id(self):
        builder = _build([
            workflow_start(),
            StepEvent(type=EventType.STEP_START, workflow_id=WF, ts=1, step_id="s-1"),
            StepEvent(type=EventType.STEP_SUCCESS, workflow_id=WF, ts=9, step_id="s-1"),
        ])
        (step,) = _children(builder)
        assert step.key is None
        assert step.label == "s-1"
        assert step.state == NodeState.SUCCESS

    def test_duration_derived_from_timestamps(self):
        builder = _build([workflow_start(), step_start("a", ts=100), step_success("a", ts=130)])
        assert _children(builder)[0].duration_ms == 30

    def test_input_output_captured(self):
        builder = _build([
            workflow_start(),
            step_start("a", input={"id": 1}),
            step_success("a", output={"name": "Ada"}),
        ])
        step = _children(builder)[0]
        assert step.input == {"id": 1}
        assert step.output == {"name": "Ada"}

    def test_retries_increment_counter_on_one_node(self):
        builder = _build([
            workflow_start(),
            step_start("flaky"),
            step_retry("flaky", attempt=1, max_attempts=3, error="e1"),
            step_retry("flaky", attempt=2, max_attempts=3, error="e2"),
            step_success("flaky"),
        ])
        (step,) = _children(builder)
        assert step.retry_count == 2
        assert step.max_attempts == 3
        assert step.state == NodeState.SUCCESS

    def test_retries_exhausted(self):
        builder = _build([
            workflow_start(),
            step_start("flaky"),
            step_event(EventType.STEP_RETRIES_EXHAUSTED, "flaky", attempt=3, error="gave up"),
        ])
        step = _children(builder)[0]
        assert step.state == NodeState.ERROR
        assert step.retry_count == 2
        assert step.error == "gave up"

    def test_cache_hit_without_start(self):
        builder = _build([workflow_start(), step_event(EventType.STEP_CACHE_HIT, "cached", ts=50)])
        step = _children(builder)[0]
        assert step.state == NodeState.CACHED
        assert step.duration_ms == 0

    def test_cache_miss_is_noop(self):
        builder = _build([workflow_start(), step_event(EventType.STEP_CACHE_MISS, "k")])
        assert _children(builder) == []

    def test_skipped_records_reason(self):
        builder = _build([workflow_start(), step_event(EventType.STEP_SKIPPED, "opt", reason="flag off")])
        step = _children(builder)[0]
        assert step.state == NodeState.SKIPPED
        assert step.skip_reason == "flag off"

    def test_timeout_marks_step(self):
        builder = _build([
            workflow_start(),
            step_start("slow"),
            step_event(EventType.STEP_TIMEOUT, "slow", timeout_ms=5000),
            step_error("slow", error="Timeout"),
        ])
        step = _children(builder)[0]
        assert step.timed_out is True
        assert step.timeout_ms == 5000
        assert step.state == NodeState.ERROR

    def test_declared_errors_kept(self):
        builder = _build([workflow_start(), step_start("a", declared_errors=("NotFound",))])
        assert _children(builder)[0].declared_errors == ["NotFound"]

    def test_restart_after_terminal_creates_new_node(self):
        builder = _build([
            workflow_start(),
            step_start("loop", ts=1),
            step_success("loop", ts=2),
            step_start("loop", ts=3),
            step_success("loop", ts=4),
        ])
        children = _children(builder)
        assert [c.id for c in children] == ["loop", "loop_2"]
        assert all(c.state == NodeState.SUCCESS for c in children)


class TestMonotonicStates:
    @pytest.mark.parametrize(
        "late",
        [
            step_start("a", ts=50),
            step_error("a", ts=50),
            step_retry("a", ts=50),
            step_event(EventType.STEP_SKIPPED, "a", ts=50),
        ],
    )
    def test_terminal_step_never_changes(self, late):
        builder = _build([workflow_start(), step_start("a", ts=1), step_success("a", ts=10)])
        before = _children(builder)[0]
        builder.handle_event(late)
        after = [c for c in _children(builder) if c.id == "a"][0]
        assert after is before
        assert after.state == NodeState.SUCCESS
        assert after.retry_count == 0
        assert after.end_ts == 10

    def test_workflow_terminal_never_changes(self):
        builder = _build([workflow_start(), workflow_error(ts=5), workflow_success(ts=6)])
        assert builder.get_ir().root.state == NodeState.ERROR

    def test_states_only_move_forward_over_stream(self, decision_events):
        order = {NodeState.PENDING: 0, NodeState.RUNNING: 1}
        seen: dict[str, int] = {}
        builder = IRBuilder()
        for event in decision_events:
            builder.handle_event(event)
            for node in iter_nodes(builder.get_ir().root.children):
                rank = order.get(node.state, 2)
                assert rank >= seen.get(node.id, 0)
                seen[node.id] = rank


# ---------------------------------------------------------------------------
# Scopes
# ---------------------------------------------------------------------------

class TestScopes:
    def test_parallel_scope_collects_children(self):
        builder = _build([
            workflow_start(),
            scope_start("p1", name="fetch-all"),
            step_start("a"), step_start("b"),
            step_success("a"), step_success("b"),
            scope_end("p1"),
            step_start("after"),
        ])
        parallel, after = _children(builder)
        assert isinstance(parallel, ParallelNode)
        assert parallel.name == "fetch-all"
        assert [c.id for c in parallel.children] == ["a", "b"]
        assert parallel.state == NodeState.SUCCESS
        assert after.id == "after"

    def test_parallel_all_fails_on_child_error(self):
        builder = _build([
            workflow_start(), scope_start("p"), step_start("a"), step_error("a"), scope_end("p"),
        ])
        assert _children(builder)[0].state == NodeState.ERROR

    def test_all_settled_succeeds_despite_error(self):
        builder = _build([
            workflow_start(), scope_start("p", scope_type="allSettled"),
            step_start("a"), step_error("a"), scope_end("p"),
        ])
        node = _children(builder)[0]
        assert node.mode == ScopeMode.ALL_SETTLED
        assert node.state == NodeState.SUCCESS

    def test_race_winner_by_key(self):
        builder = _build([
            workflow_start(), scope_start("r", scope_type="race"),
            step_start("fast", step_id="inv-fast"), step_start("slow"),
            step_success("fast"), step_event(EventType.STEP_ABORTED, "slow"),
            scope_end("r", winner_id="fast"),
        ])
        race = _children(builder)[0]
        assert isinstance(race, RaceNode)
        assert race.winner_id == "inv-fast"
        assert race.state == NodeState.SUCCESS

    def test_unknown_scope_type_defaults_to_all(self):
        builder = _build([workflow_start(), scope_start("p", scope_type="weird")])
        assert _children(builder)[0].mode == ScopeMode.ALL

    def test_nested_scopes(self):
        builder = _build([
            workflow_start(),
            scope_start("outer"), scope_start("inner"), step_start("a"),
            scope_end("inner"), scope_end("outer"),
        ])
        outer = _children(builder)[0]
        inner = outer.children[0]
        assert isinstance(inner, ParallelNode)
        assert inner.children[0].id == "a"

    def test_out_of_order_scope_end_pops_to_matching(self):
        builder = _build([
            workflow_start(),
            scope_start("outer"), scope_start("inner"),
            scope_end("outer"),
            step_start("after"),
        ])
        assert [c.id for c in _children(builder)] == ["outer", "after"]

    def test_scope_end_does_not_close_decision(self):
        builder = _build([
            workflow_start(), decision_start("d"), decision_branch("d", "yes", taken=True),
            scope_end("d"), step_start("inside"),
        ])
        decision = _children(builder)[0]
        assert decision.branches[0].children[0].id == "inside"

    def test_unknown_scope_end_ignored(self):
        builder = _build([workflow_start(), scope_end("nope"), step_start("a")])
        assert [c.id for c in _children(builder)] == ["a"]


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------

class TestDecisions:
    def test_taken_branch_collects_steps(self, decision_events):
        builder = _build(decision_events)
        validate, decision, notify = _children(builder)
        assert isinstance(decision, DecisionNode)
        assert decision.condition == "tier"
        assert decision.decision_value == "premium"
        assert [b.label for b in decision.branches] == ["premium", "basic"]
        premium, basic = decision.branches
        assert premium.taken and not basic.taken
        assert [c.id for c in premium.children] == ["charge"]
        assert decision.branch_taken == "premium"
        assert decision.state == NodeState.SUCCESS
        assert notify.id == "notify"

    def test_steps_without_branch_events_are_kept(self):
        builder = _build([
            workflow_start(), decision_start("d"),
            step_start("a"), step_success("a"),
            decision_end("d"),
        ])
        decision = _children(builder)[0]
        assert len(decision.branches) == 1
        assert decision.branches[0].label == PENDING_BRANCH_LABEL
        assert [c.id for c in decision.branches[0].children] == ["a"]

    def test_branch_taken_on_end_relabels_placeholder(self):
        builder = _build([
            workflow_start(), decision_start("d"), step_start("a"),
            decision_end("d", branch_taken="then"),
        ])
        decision = _children(builder)[0]
        assert [b.label for b in decision.branches] == ["then"]
        assert decision.branches[0].taken
        assert decision.branches[0].children[0].id == "a"

    def test_placeholder_absorbed_by_first_taken_branch(self):
        builder = _build([
            workflow_start(), decision_start("d"),
            step_start("early"),
            decision_branch("d", "if", taken=True),
            step_start("late"),
        ])
        decision = _children(builder)[0]
        assert [b.label for b in decision.branches] == ["if"]
        assert [c.id for c in decision.branches[0].children] == ["early", "late"]

    def test_first_taken_branch_wins(self):
        builder = _build([
            workflow_start(), decision_start("d"),
            decision_branch("d", "a", taken=True),
            decision_branch("d", "b", taken=True),
            step_start("x"),
        ])
        decision = _children(builder)[0]
        assert decision.branch_taken == "a"
        assert decision.branches[0].children[0].id == "x"
        assert decision.branches[1].children == []
        assert not decision.branches[1].taken

    def test_branch_for_unknown_decision_ignored(self):
        builder = _build([workflow_start(), decision_branch("ghost", "x", taken=True)])
        assert _children(builder) == []


# ---------------------------------------------------------------------------
# Streams and hooks
# ---------------------------------------------------------------------------

class TestStreams:
    def test_stream_counters_and_close(self):
        builder = _build([
            workflow_start(),
            stream_event(EventType.STREAM_CREATED, ts=1),
            stream_event(EventType.STREAM_WRITE, ts=2),
            stream_event(EventType.STREAM_WRITE, ts=3),
            stream_event(EventType.STREAM_READ, ts=4),
            stream_event(EventType.STREAM_BACKPRESSURE, ts=5, paused=True, buffered_count=10),
            stream_event(EventType.STREAM_CLOSE, ts=9, position=2),
        ])
        (stream,) = _children(builder)
        assert isinstance(stream, StreamNode)
        assert stream.id == "stream_tokens_1"
        assert (stream.write_count, stream.read_count) == (2, 1)
        assert stream.backpressure is True
        assert stream.buffered_count == 10
        assert stream.stream_state == StreamState.CLOSED
        assert stream.final_position == 2
        assert stream.state == NodeState.SUCCESS
        assert stream.duration_ms == 8

    def test_stream_error(self):
        builder = _build([
            workflow_start(),
            stream_event(EventType.STREAM_WRITE),
            stream_event(EventType.STREAM_ERROR, error="broken pipe"),
        ])
        stream = _children(builder)[0]
        assert stream.stream_state == StreamState.ERROR
        assert stream.error == "broken pipe"


class TestHooks:
    def test_hooks_recorded(self):
        builder = _build([
            workflow_start(),
            hook_event(EventType.HOOK_SHOULD_RUN, result=True, duration_ms=2),
            hook_event(EventType.HOOK_BEFORE_START, duration_ms=1),
            step_start("a"),
            hook_event(EventType.HOOK_AFTER_STEP_ERROR, step_key="a", error="hook blew up"),
        ])
        hooks = builder.get_ir().hooks
        assert hooks.should_run.result is True
        assert hooks.should_run.hook == "shouldRun"
        assert hooks.on_before_start.state == NodeState.SUCCESS
        assert hooks.on_after_step["a"].state == NodeState.ERROR

    def test_pre_start_hooks_carry_into_next_run(self):
        builder = _build([
            workflow_start(workflow_id="run-1"),
            workflow_success(workflow_id="run-1"),
            hook_event(EventType.HOOK_SHOULD_RUN, workflow_id="run-2", result=True),
            workflow_start(workflow_id="run-2"),
        ])
        ir = builder.get_ir()
        assert ir.root.id == "run-2"
        assert ir.hooks is not None
        assert ir.hooks.should_run.result is True


class TestMalformedInput:
    def test_garbage_event_never_raises(self):
        builder = IRBuilder()
        builder.handle_event(object())  # type: ignore[arg-type]
        builder.handle_event(None)  # type: ignore[arg-type]
        assert builder.get_ir().root.children == []
        assert builder.event_count == 2

    def test_end_events_without_start(self):
        builder = _build([
            workflow_start(),
            decision_end("missing"),
            scope_end("missing"),
            step_success("orphan"),
        ])
        (orphan,) = _children(builder)
        assert orphan.state == NodeState.SUCCESS
