"""Tests for workflow events and the mapping codec.

Covers:
- camelCase and snake_case decoding into the right event family
- Wire aliases (lastError, attempts, finalPosition, backpressure state)
- Unknown tags and malformed mappings (lenient vs strict)
- Encoding back to camelCase / snake_case mappings
- Case helpers
"""

from __future__ import annotations

import pytest

from flowviz.core.errors import EventError, UnknownEventError
from flowviz.events import (
    DECISION_EVENT_TYPES,
    SCOPE_EVENT_TYPES,
    DecisionBranchEvent,
    EventType,
    HookEvent,
    ScopeStartEvent,
    StepEvent,
    StreamEvent,
    WorkflowLifecycleEvent,
    camel_case,
    event_from_dict,
    event_to_dict,
    snake_case,
)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

class TestEventFromDict:
    def test_step_success_camel_case(self):
        evt = event_from_dict({
            "type": "step_success",
            "workflowId": "wf-1",
            "stepId": "s1",
            "stepKey": "fetch-user",
            "ts": 1045,
            "durationMs": 45,
            "output": {"id": 7},
        })
        assert isinstance(evt, StepEvent)
        assert evt.type is EventType.STEP_SUCCESS
        assert evt.step_key == "fetch-user"
        assert evt.duration_ms == 45
        assert evt.output == {"id": 7}

    def test_snake_case_keys_pass_through(self):
        evt = event_from_dict({"type": "workflow_start", "workflow_id": "wf-2", "ts": 1})
        assert isinstance(evt, WorkflowLifecycleEvent)
        assert evt.workflow_id == "wf-2"

    def test_scope_event_has_fixed_type(self):
        evt = event_from_dict({
            "type": "scope_start", "workflowId": "wf", "ts": 2, "scopeId": "p1", "scopeType": "race",
        })
        assert isinstance(evt, ScopeStartEvent)
        assert evt.type is EventType.SCOPE_START
        assert evt.scope_type == "race"

    def test_decision_branch(self):
        evt = event_from_dict({
            "type": "decision_branch", "workflowId": "wf", "ts": 3,
            "decisionId": "d1", "branchLabel": "if", "taken": True,
        })
        assert isinstance(evt, DecisionBranchEvent)
        assert evt.taken is True
        assert evt.branch_label == "if"

    def test_retries_exhausted_aliases(self):
        evt = event_from_dict({
            "type": "step_retries_exhausted", "workflowId": "wf", "ts": 4,
            "stepId": "s1", "attempts": 3, "lastError": "timeout",
        })
        assert evt.attempt == 3
        assert evt.error == "timeout"

    def test_stream_close_final_position(self):
        evt = event_from_dict({
            "type": "stream_close", "workflowId": "wf", "ts": 5, "namespace": "tokens", "finalPosition": 12,
        })
        assert isinstance(evt, StreamEvent)
        assert evt.position == 12

    def test_backpressure_state_maps_to_paused(self):
        evt = event_from_dict({
            "type": "stream_backpressure", "workflowId": "wf", "ts": 6,
            "namespace": "tokens", "state": "paused", "bufferedCount": 100,
        })
        assert evt.paused is True
        assert evt.buffered_count == 100

    def test_cache_hit_without_step_id_uses_key(self):
        evt = event_from_dict({"type": "step_cache_hit", "workflowId": "wf", "ts": 7, "stepKey": "k"})
        assert evt.step_id == "k"

    def test_declared_errors_become_tuple(self):
        evt = event_from_dict({
            "type": "step_start", "workflowId": "wf", "ts": 8, "stepId": "s",
            "declaredErrors": ["NotFound", "Timeout"],
        })
        assert evt.declared_errors == ("NotFound", "Timeout")

    def test_hook_event(self):
        evt = event_from_dict({"type": "hook_should_run", "workflowId": "wf", "ts": 1, "result": True})
        assert isinstance(evt, HookEvent)
        assert evt.result is True

    def test_extra_keys_ignored(self):
        evt = event_from_dict({"type": "workflow_start", "workflowId": "wf", "ts": 1, "runtime": "node"})
        assert evt is not None


class TestMalformedEvents:
    def test_unknown_type_returns_none(self):
        assert event_from_dict({"type": "step_teleport", "workflowId": "wf", "ts": 1}) is None

    def test_missing_type_returns_none(self):
        assert event_from_dict({"workflowId": "wf", "ts": 1}) is None

    def test_unknown_type_strict_raises(self):
        with pytest.raises(UnknownEventError) as exc_info:
            event_from_dict({"type": "step_teleport"}, strict=True)
        assert exc_info.value.event_type == "step_teleport"

    def test_missing_required_field_returns_none(self):
        assert event_from_dict({"type": "step_start", "workflowId": "wf", "ts": 1}) is None

    def test_missing_required_field_strict_raises(self):
        with pytest.raises(EventError, match="Malformed step_start"):
            event_from_dict({"type": "step_start", "workflowId": "wf", "ts": 1}, strict=True)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

class TestEventToDict:
    def test_camel_case_and_unset_fields_dropped(self):
        evt = StepEvent(type=EventType.STEP_SUCCESS, workflow_id="wf", ts=10, step_id="s1", duration_ms=5)
        data = event_to_dict(evt)
        assert data == {"type": "step_success", "workflowId": "wf", "ts": 10, "stepId": "s1", "durationMs": 5}

    def test_snake_case(self):
        evt = ScopeStartEvent(workflow_id="wf", ts=1, scope_id="p")
        data = event_to_dict(evt, camel=False)
        assert data["scope_id"] == "p"
        assert data["type"] == "scope_start"

    def test_decodes_back(self):
        evt = StepEvent(
            type=EventType.STEP_START, workflow_id="wf", ts=1, step_id="s", declared_errors=("E",)
        )
        assert event_from_dict(event_to_dict(evt)) == evt


class TestHelpers:
    @pytest.mark.parametrize(
        "given,expected",
        [("stepKey", "step_key"), ("durationMs", "duration_ms"), ("step_key", "step_key"), ("ts", "ts")],
    )
    def test_snake_case(self, given, expected):
        assert snake_case(given) == expected

    def test_camel_case(self):
        assert camel_case("last_updated_at") == "lastUpdatedAt"

    def test_families(self):
        assert EventType.SCOPE_END in SCOPE_EVENT_TYPES
        assert EventType.DECISION_BRANCH in DECISION_EVENT_TYPES
        assert EventType.STEP_START not in SCOPE_EVENT_TYPES | DECISION_EVENT_TYPES
