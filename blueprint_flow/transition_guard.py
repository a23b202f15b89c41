"""
TransitionGuard: decides whether a navigation action is legal.

The guard is a pure function of ``(FlowState, action)``. It never
mutates state and never raises for a well-formed state; an illegal
request comes back as a rejected ``GuardDecision`` with a reason code.

Rules:
    continue/advance  leave the step; required collect steps need a value
    skip              leave the step without a value; only for optional
                      steps unless the session has skip_override
    back              previous step, crossing into the previous stage
    refine            back to step 1 of the current stage, data kept
    restart           first stage/step, completed stages cleared
The terminal stage is absorbing: only restart is accepted there.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from blueprint_flow.errors import Reason
from blueprint_flow.flow_state import FlowState, Position
from blueprint_flow.stage_graph import FLOW_COMPLETE, STAGE_COMPLETE, StageGraph


class Action(str, Enum):
    """Closed set of navigation actions."""
    CONTINUE = "continue"
    ADVANCE = "advance"       # alias of continue
    BACK = "back"
    SKIP = "skip"
    REFINE = "refine"
    RESTART = "restart"

    @classmethod
    def parse(cls, value: Any) -> Optional["Action"]:
        """Map a boundary value (enum or string) to an Action, None if unknown."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return None
        return None

    @classmethod
    def canonical(cls) -> Tuple["Action", ...]:
        """Actions without aliases, in display order."""
        return (cls.CONTINUE, cls.BACK, cls.SKIP, cls.REFINE, cls.RESTART)


@dataclass(frozen=True)
class GuardDecision:
    """
    Result of evaluating an action.

    When ``allowed`` is True, ``target`` and ``completed_stages`` describe
    the state the orchestrator should install.
    """
    allowed: bool
    action: Optional[Action]
    reason: Optional[str] = None
    target: Optional[Position] = None
    completed_stages: Tuple[str, ...] = ()
    wipe_document: bool = False
    stage_completed: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def reject(cls, action: Optional[Action], reason: str, **details: Any) -> "GuardDecision":
        return cls(allowed=False, action=action, reason=reason, details=details)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "action": self.action.value if self.action else None,
            "reason": self.reason,
            "target": self.target.to_dict() if self.target else None,
            "completed_stages": list(self.completed_stages),
            "wipe_document": self.wipe_document,
            "stage_completed": self.stage_completed,
            "details": dict(self.details),
        }


class TransitionGuard:
    """Evaluates navigation actions against a stage graph."""

    def __init__(self, graph: StageGraph):
        self.graph = graph

    def evaluate(self, state: FlowState, action: Any, wipe_document: bool = False) -> GuardDecision:
        parsed = Action.parse(action)
        if parsed is None:
            return GuardDecision.reject(None, Reason.UNKNOWN_ACTION, requested=str(action))

        if parsed == Action.RESTART:
            return self._restart(wipe_document)

        if self.graph.is_terminal(state.current_stage):
            return GuardDecision.reject(parsed, Reason.ALREADY_TERMINAL)

        if parsed in (Action.CONTINUE, Action.ADVANCE):
            return self._continue(state, parsed)
        if parsed == Action.SKIP:
            return self._skip(state)
        if parsed == Action.BACK:
            return self._back(state)
        return self._refine(state)

    def allowed_actions(self, state: FlowState) -> List[Action]:
        """Every canonical action the guard would accept right now."""
        return [a for a in Action.canonical() if self.evaluate(state, a).allowed]

    def is_step_skippable(self, state: FlowState) -> bool:
        if self.graph.is_terminal(state.current_stage):
            return False
        step = self.graph.step(state.current_stage, state.current_step)
        return not step.required or state.skip_override

    # =========================================================================
    # Rules
    # =========================================================================

    def _continue(self, state: FlowState, action: Action) -> GuardDecision:
        step = self.graph.step(state.current_stage, state.current_step)
        if step.blocks_progress:
            path = self.graph.document_path_of(state.current_stage, step.id)
            if not state.document.has(path):
                return GuardDecision.reject(action, Reason.REQUIRED_STEP_INCOMPLETE, path=path)
        return self._forward(state, action)

    def _skip(self, state: FlowState) -> GuardDecision:
        if not self.is_step_skippable(state):
            return GuardDecision.reject(Action.SKIP, Reason.SKIP_NOT_PERMITTED)
        return self._forward(state, Action.SKIP)

    def _forward(self, state: FlowState, action: Action) -> GuardDecision:
        stage = state.current_stage
        next_step = self.graph.next_step(stage, state.current_step)
        if next_step != STAGE_COMPLETE:
            return GuardDecision(
                allowed=True,
                action=action,
                target=Position(stage, next_step, state.stage_step + 1),
                completed_stages=state.completed_stages,
            )

        completed = list(state.completed_stages)
        stage_completed = None
        if state.document.is_stage_satisfied(stage):
            completed.append(stage)
            stage_completed = stage

        next_stage = self.graph.next_stage(stage)
        if next_stage == FLOW_COMPLETE:
            target = Position(self.graph.terminal_stage, None, 0)
        else:
            target = Position(next_stage, self.graph.first_step_of(next_stage).id, 1)

        return GuardDecision(
            allowed=True,
            action=action,
            target=target,
            completed_stages=self.graph.sort_stages(completed),
            stage_completed=stage_completed,
        )

    def _back(self, state: FlowState) -> GuardDecision:
        stage = state.current_stage
        if state.stage_step > 1:
            previous = self.graph.previous_step(stage, state.current_step)
            target = Position(stage, previous, state.stage_step - 1)
        else:
            previous_stage = self.graph.previous_stage(stage)
            if previous_stage is None:
                return GuardDecision.reject(Action.BACK, Reason.AT_START)
            last = self.graph.last_step_of(previous_stage)
            target = Position(
                previous_stage, last.id, self.graph.index_of(previous_stage, last.id)
            )
        return GuardDecision(
            allowed=True,
            action=Action.BACK,
            target=target,
            completed_stages=state.completed_stages,
        )

    def _refine(self, state: FlowState) -> GuardDecision:
        stage = state.current_stage
        return GuardDecision(
            allowed=True,
            action=Action.REFINE,
            target=Position(stage, self.graph.first_step_of(stage).id, 1),
            completed_stages=state.completed_stages,
        )

    def _restart(self, wipe_document: bool) -> GuardDecision:
        return GuardDecision(
            allowed=True,
            action=Action.RESTART,
            target=Position(self.graph.first_stage, self.graph.first_step, 1),
            completed_stages=(),
            wipe_document=bool(wipe_document),
        )
