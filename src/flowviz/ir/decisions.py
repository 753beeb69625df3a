"""Decision tracking helpers for workflow code.

Engines call these from inside step code to describe a runtime branch. Each
tracker emits ``decision_start`` on creation, one ``decision_branch`` per arm,
and ``decision_end`` when closed, through any ``emit`` callable (an
``IRBuilder.handle_event``, an ``EventCollector``, or a transport).

Example::

    decision = track_if("has-discount", order.total > 100,
                        workflow_id=wf_id, emit=visualizer.handle_event,
                        condition_text="total > 100")
    if order.total > 100:
        decision.then_()
        apply_discount()
    else:
        decision.else_()
    decision.end()

Both ``if`` and ``else`` arms are always emitted (the unselected one as not
taken) so the skipped path stays visible in diagrams. The first arm marked
taken wins; later arms never override it.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from flowviz.core.timing import now_ms
from flowviz.events import DecisionBranchEvent, DecisionEndEvent, DecisionStartEvent, WorkflowEvent

Emit = Callable[[WorkflowEvent], Any]


class DecisionTracker:
    """Emits the event sequence for one decision point."""

    def __init__(
        self,
        decision_id: str,
        *,
        workflow_id: str,
        emit: Emit,
        name: str | None = None,
        condition: str | None = None,
        value: Any = None,
        clock: Callable[[], float] = now_ms,
    ) -> None:
        self.decision_id = decision_id
        self.workflow_id = workflow_id
        self._emit = emit
        self._clock = clock
        self._start_ts = clock()
        self._branches: dict[str, bool] = {}
        self._taken: str | None = None
        self._ended = False
        emit(DecisionStartEvent(
            workflow_id=workflow_id,
            ts=self._start_ts,
            decision_id=decision_id,
            name=name or decision_id,
            condition=condition,
            decision_value=value,
        ))

    @property
    def branch_taken(self) -> str | None:
        return self._taken

    @property
    def ended(self) -> bool:
        return self._ended

    def branch(self, label: str, condition: str | None = None, taken: bool = False) -> None:
        """Record an arm. Only the first taken arm counts as selected."""
        if self._ended or label in self._branches:
            return
        taken = taken and self._taken is None
        self._branches[label] = taken
        if taken:
            self._taken = label
        self._emit(DecisionBranchEvent(
            workflow_id=self.workflow_id,
            ts=self._clock(),
            decision_id=self.decision_id,
            branch_label=label,
            condition=condition,
            taken=taken,
        ))

    def take(self, label: str, condition: str | None = None) -> None:
        self.branch(label, condition, taken=True)

    def end(self, branch_taken: str | None = None) -> None:
        if self._ended:
            return
        self._ended = True
        ts = self._clock()
        self._emit(DecisionEndEvent(
            workflow_id=self.workflow_id,
            ts=ts,
            decision_id=self.decision_id,
            duration_ms=max(0.0, ts - self._start_ts),
            branch_taken=self._taken or branch_taken,
        ))

    def __enter__(self) -> DecisionTracker:
        return self

    def __exit__(self, *args) -> None:
        self.end()


class IfTracker(DecisionTracker):
    """Two-armed decision; ``then_`` / ``else_`` mirror the host language."""

    def __init__(self, decision_id: str, condition: bool, *, condition_text: str | None = None, **kwargs: Any):
        self._condition = bool(condition)
        self._text = condition_text or decision_id
        super().__init__(decision_id, condition=condition_text, value=self._condition, **kwargs)

    def then_(self) -> None:
        self.branch("if", self._text, taken=self._condition)

    def else_(self) -> None:
        self.branch("else", f"!({self._text})", taken=not self._condition)

    def end(self, branch_taken: str | None = None) -> None:
        # Emit whichever arm the caller did not reach so both stay visible
        if "if" not in self._branches:
            self.then_()
        if "else" not in self._branches:
            self.else_()
        super().end(branch_taken)


class SwitchTracker(DecisionTracker):
    """Multi-armed decision on a value; the first matching case is taken."""

    def __init__(self, decision_id: str, value: Any, **kwargs: Any):
        self._value = value
        super().__init__(decision_id, condition=f"switch {decision_id}", value=value, **kwargs)

    def case(self, label: str, match: Any = None) -> bool:
        """Record a case; returns True when it is the selected one."""
        expected = label if match is None else match
        hit = self._taken is None and expected == self._value
        self.branch(label, f"== {expected!r}", taken=hit)
        return hit

    def default(self, label: str = "default") -> bool:
        hit = self._taken is None
        self.branch(label, "default", taken=hit)
        return hit


def track_decision(decision_id: str, **kwargs: Any) -> DecisionTracker:
    return DecisionTracker(decision_id, **kwargs)


def track_if(decision_id: str, condition: bool, **kwargs: Any) -> IfTracker:
    return IfTracker(decision_id, condition, **kwargs)


def track_switch(decision_id: str, value: Any, **kwargs: Any) -> SwitchTracker:
    return SwitchTracker(decision_id, value, **kwargs)


__all__ = [
    "DecisionTracker",
    "IfTracker",
    "SwitchTracker",
    "track_decision",
    "track_if",
    "track_switch",
]
