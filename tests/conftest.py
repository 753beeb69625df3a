"""
Shared pytest fixtures and event factories for flowviz tests.

This module provides:
- Settings cache isolation (autouse) so env overrides never leak
- ``_make_*`` event factories with sensible defaults (workflow ``wf-1``)
- A manual playback timer for deterministic time-travel tests
- Ready-made event streams for the common scenarios

Usage:
    Factories are plain functions; import them from ``conftest``:

        from conftest import step_start, step_success

    Fixtures are auto-discovered by pytest.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Ensure flowviz package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from flowviz.core.settings import clear_settings_cache
from flowviz.events import (
    DecisionBranchEvent,
    DecisionEndEvent,
    DecisionStartEvent,
    EventType,
    HookEvent,
    ScopeEndEvent,
    ScopeStartEvent,
    StepEvent,
    StreamEvent,
    WorkflowLifecycleEvent,
)

WF = "wf-1"


# =============================================================================
# Event factories
# =============================================================================


def workflow_start(ts: float = 1000, workflow_id: str = WF, name: str | None = None) -> WorkflowLifecycleEvent:
    return WorkflowLifecycleEvent(type=EventType.WORKFLOW_START, workflow_id=workflow_id, ts=ts, name=name)


def workflow_success(ts: float = 2000, duration_ms: float | None = None, workflow_id: str = WF) -> WorkflowLifecycleEvent:
    return WorkflowLifecycleEvent(
        type=EventType.WORKFLOW_SUCCESS, workflow_id=workflow_id, ts=ts, duration_ms=duration_ms
    )


def workflow_error(ts: float = 2000, error: Any = "boom", workflow_id: str = WF) -> WorkflowLifecycleEvent:
    return WorkflowLifecycleEvent(type=EventType.WORKFLOW_ERROR, workflow_id=workflow_id, ts=ts, error=error)


def workflow_cancelled(ts: float = 2000, reason: str = "user", workflow_id: str = WF) -> WorkflowLifecycleEvent:
    return WorkflowLifecycleEvent(type=EventType.WORKFLOW_CANCELLED, workflow_id=workflow_id, ts=ts, reason=reason)


def _make_step(event_type: EventType, key: str, ts: float, **kwargs: Any) -> StepEvent:
    kwargs.setdefault("workflow_id", WF)
    kwargs.setdefault("step_id", key)
    kwargs.setdefault("name", key)
    return StepEvent(type=event_type, ts=ts, step_key=key, **kwargs)


def step_start(key: str, ts: float = 1001, **kwargs: Any) -> StepEvent:
    return _make_step(EventType.STEP_START, key, ts, **kwargs)


def step_success(key: str, ts: float = 1046, duration_ms: float | None = None, **kwargs: Any) -> StepEvent:
    return _make_step(EventType.STEP_SUCCESS, key, ts, duration_ms=duration_ms, **kwargs)


def step_error(key: str, ts: float = 1046, error: Any = "failed", **kwargs: Any) -> StepEvent:
    return _make_step(EventType.STEP_ERROR, key, ts, error=error, **kwargs)


def step_retry(key: str, ts: float = 1020, attempt: int = 1, **kwargs: Any) -> StepEvent:
    return _make_step(EventType.STEP_RETRY, key, ts, attempt=attempt, **kwargs)


def step_event(event_type: EventType, key: str, ts: float = 1010, **kwargs: Any) -> StepEvent:
    return _make_step(event_type, key, ts, **kwargs)


def scope_start(scope_id: str, ts: float = 1010, scope_type: str = "all", name: str | None = None) -> ScopeStartEvent:
    return ScopeStartEvent(workflow_id=WF, ts=ts, scope_id=scope_id, scope_type=scope_type, name=name)


def scope_end(scope_id: str, ts: float = 1100, winner_id: str | None = None) -> ScopeEndEvent:
    return ScopeEndEvent(workflow_id=WF, ts=ts, scope_id=scope_id, winner_id=winner_id)


def decision_start(
    decision_id: str,
    ts: float = 1010,
    condition: str | None = None,
    value: Any = None,
) -> DecisionStartEvent:
    return DecisionStartEvent(
        workflow_id=WF, ts=ts, decision_id=decision_id, name=decision_id, condition=condition, decision_value=value
    )


def decision_branch(
    decision_id: str,
    label: str,
    taken: bool = False,
    condition: str | None = None,
    ts: float = 1011,
) -> DecisionBranchEvent:
    return DecisionBranchEvent(
        workflow_id=WF, ts=ts, decision_id=decision_id, branch_label=label, condition=condition, taken=taken
    )


def decision_end(decision_id: str, ts: float = 1090, branch_taken: str | None = None) -> DecisionEndEvent:
    return DecisionEndEvent(workflow_id=WF, ts=ts, decision_id=decision_id, branch_taken=branch_taken)


def stream_event(event_type: EventType, namespace: str = "tokens", ts: float = 1010, **kwargs: Any) -> StreamEvent:
    return StreamEvent(type=event_type, workflow_id=WF, ts=ts, namespace=namespace, **kwargs)


def hook_event(event_type: EventType, ts: float = 999, **kwargs: Any) -> HookEvent:
    kwargs.setdefault("workflow_id", WF)
    return HookEvent(type=event_type, ts=ts, **kwargs)


def _make_fetch_user_run() -> list:
    """workflow_start → fetch-user (45ms) → workflow_success."""
    return [
        workflow_start(ts=1000, name="load-profile"),
        step_start("fetch-user", ts=1000),
        step_success("fetch-user", ts=1045, duration_ms=45),
        workflow_success(ts=1046, duration_ms=46),
    ]


def _make_overlapping_run() -> list:
    """Two overlapping steps and a third, later one; no scope events."""
    return [
        workflow_start(ts=0),
        step_start("load-cart", ts=10),
        step_start("load-prices", ts=20),
        step_success("load-cart", ts=100, duration_ms=90),
        step_success("load-prices", ts=80, duration_ms=60),
        step_start("checkout", ts=200),
        step_success("checkout", ts=250, duration_ms=50),
        workflow_success(ts=260),
    ]


def _make_decision_run(with_branches: bool = True) -> list:
    """Decision ``route`` taking ``premium`` around a ``charge`` step."""
    events = [
        workflow_start(ts=0),
        step_start("validate", ts=1),
        step_success("validate", ts=5),
        decision_start("route", ts=6, condition="tier", value="premium"),
    ]
    if with_branches:
        events += [
            decision_branch("route", "premium", taken=True, condition="tier == premium", ts=7),
            decision_branch("route", "basic", taken=False, condition="tier == basic", ts=7),
        ]
    events += [
        step_start("charge", ts=8),
        step_success("charge", ts=20),
        decision_end("route", ts=21),
        step_start("notify", ts=22),
        step_success("notify", ts=30),
        workflow_success(ts=31),
    ]
    return events


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch):
    """Fresh settings per test; stray FLOWVIZ_* variables are ignored."""
    for name in list(os.environ):
        if name.startswith("FLOWVIZ_"):
            monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


class ManualTimer:
    """Playback timer driven by ``fire()`` instead of a thread."""

    def __init__(self) -> None:
        self.callback: Callable[[], None] | None = None
        self.interval_ms: float | None = None
        self.starts = 0
        self.cancels = 0

    def start(self, callback: Callable[[], None], interval_ms: float) -> None:
        self.callback = callback
        self.interval_ms = interval_ms
        self.starts += 1

    def cancel(self) -> None:
        self.callback = None
        self.cancels += 1

    @property
    def is_active(self) -> bool:
        return self.callback is not None

    def fire(self, times: int = 1) -> None:
        for _ in range(times):
            if self.callback is None:
                return
            self.callback()


@pytest.fixture
def manual_timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def fetch_user_events() -> list:
    return _make_fetch_user_run()


@pytest.fixture
def overlapping_events() -> list:
    return _make_overlapping_run()


@pytest.fixture
def decision_events() -> list:
    return _make_decision_run()
