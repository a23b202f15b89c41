"""
FlowOrchestrator: single owner of one authoring session.

All state changes go through this class:

    submit_input(text)        store an answer for the current step
    dispatch_action(action)   navigate (continue, back, skip, refine, restart)
    load_from(...) / restore  rehydrate from an exported document or snapshot

Every successful mutation builds a new ``FlowState`` and swaps it in,
saves a snapshot through the persistence adapter (when autosave is on)
and then notifies subscribers with a read-only ``FlowView``. Rejected
input raises; rejected navigation is returned as a value. Neither
touches the state.

Usage:
    from blueprint_flow.config_loader import get_graph
    from blueprint_flow.orchestrator import FlowOrchestrator

    flow = FlowOrchestrator(get_graph("sop"), persistence=store)
    unsubscribe = flow.subscribe(render)
    flow.submit_input("Water scarcity")
    result = flow.dispatch_action("continue")
    if not result.allowed:
        show(result.guidance)
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from blueprint_flow.document import DocumentModel
from blueprint_flow.errors import (
    EmptyInputError,
    InputRejectedError,
    InputValidationError,
    MalformedDocumentError,
    Reason,
)
from blueprint_flow.event_bus import EventType, FlowEvent, FlowEventBus, MetricsCollector
from blueprint_flow.feature_flags import feature_flag, flags
from blueprint_flow.flow_state import FlowState, InteractionRecord, Position
from blueprint_flow.guidance import guidance_for
from blueprint_flow.input_validation import InputValidator
from blueprint_flow.logger import logger
from blueprint_flow.persistence import SNAPSHOT_SCHEMA_VERSION, PersistedSession
from blueprint_flow.protocols import PersistenceAdapter
from blueprint_flow.stage_graph import StageGraph
from blueprint_flow.stuck_recovery import (
    RecoveryRecommendation,
    StuckRecoveryConfig,
    StuckSignals,
    StuckTracker,
    recommend,
)
from blueprint_flow.transition_guard import TransitionGuard


@dataclass(frozen=True)
class FlowView:
    """Read-only view of a session handed to callers and subscribers."""
    session_id: str
    graph_name: str
    stage: str
    step: int
    step_id: Optional[str]
    steps_in_stage: int
    progress: float
    completed_stages: Tuple[str, ...]
    document: Dict[str, Any]
    is_terminal: bool
    allowed_actions: Tuple[str, ...]
    dirty: bool
    last_save_error: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "graph_name": self.graph_name,
            "stage": self.stage,
            "step": self.step,
            "step_id": self.step_id,
            "steps_in_stage": self.steps_in_stage,
            "progress": self.progress,
            "completed_stages": list(self.completed_stages),
            "document": self.document,
            "is_terminal": self.is_terminal,
            "allowed_actions": list(self.allowed_actions),
            "dirty": self.dirty,
            "last_save_error": self.last_save_error,
        }


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of ``dispatch_action``."""
    allowed: bool
    action: Optional[str]
    from_position: Position
    to_position: Optional[Position] = None
    reason: Optional[str] = None
    stage_completed: Optional[str] = None
    guidance: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "action": self.action,
            "from": self.from_position.to_dict(),
            "to": self.to_position.to_dict() if self.to_position else None,
            "reason": self.reason,
            "stage_completed": self.stage_completed,
            "guidance": self.guidance,
        }


@dataclass(frozen=True)
class SuggestionQuery:
    """Arguments for ``SuggestionProvider.suggest``."""
    stage: str
    step: str
    context: Dict[str, Any] = field(default_factory=dict)

    def as_kwargs(self) -> Dict[str, Any]:
        return {"stage": self.stage, "step": self.step, "context": self.context}


StateCallback = Callable[[FlowView], None]


class FlowOrchestrator:
    """
    Conversational flow orchestrator for one session.

    Not thread-safe: callers serialize calls per session. Sessions do
    not share mutable state; the stage graph is immutable and may be
    shared.
    """

    def __init__(
        self,
        graph: StageGraph,
        session_id: Optional[str] = None,
        persistence: Optional[PersistenceAdapter] = None,
        validator: Optional[InputValidator] = None,
        recovery_config: Optional[StuckRecoveryConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        skip_override: Optional[bool] = None,
        event_bus: Optional[FlowEventBus] = None,
    ):
        self.graph = graph
        self.guard = TransitionGuard(graph)
        self.persistence = persistence
        self.validator = validator or InputValidator()
        self.recovery_config = recovery_config or StuckRecoveryConfig.from_settings()
        self.events = event_bus or FlowEventBus()
        self.metrics = MetricsCollector()
        self.events.subscribe_all(self.metrics.handle_event)
        self._clock = clock or time.time

        if skip_override is None:
            skip_override = flags.allow_skip_required
        self._state = FlowState.initial(graph, session_id or uuid.uuid4().hex, skip_override)
        self._tracker = StuckTracker()
        self._dirty = False
        self._last_save_error: Optional[str] = None

    @classmethod
    def from_snapshot(
        cls,
        graph: StageGraph,
        snapshot: Dict[str, Any],
        **kwargs: Any,
    ) -> "FlowOrchestrator":
        """
        Build an orchestrator from a persisted snapshot.

        Raises:
            MalformedDocumentError: the snapshot cannot be rehydrated
        """
        session_id = snapshot.get("session_id") if isinstance(snapshot, dict) else None
        if not isinstance(session_id, str) or not session_id:
            raise MalformedDocumentError(["Snapshot has no session_id"])
        orchestrator = cls(graph, session_id=session_id, **kwargs)
        orchestrator.restore(snapshot)
        return orchestrator

    # =========================================================================
    # Read side
    # =========================================================================

    @property
    def session_id(self) -> str:
        return self._state.session_id

    @property
    def is_terminal(self) -> bool:
        return self.graph.is_terminal(self._state.current_stage)

    @property
    def position(self) -> Position:
        return self._state.position

    @property
    def interaction_log(self) -> Tuple[InteractionRecord, ...]:
        return tuple(self._state.interaction_log)

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def last_save_error(self) -> Optional[str]:
        return self._last_save_error

    def get_state(self) -> FlowView:
        state = self._state
        return FlowView(
            session_id=state.session_id,
            graph_name=self.graph.name,
            stage=state.current_stage,
            step=state.stage_step,
            step_id=state.current_step,
            steps_in_stage=len(self.graph.steps_of(state.current_stage)),
            progress=len(state.completed_stages) / self.graph.total_stages,
            completed_stages=tuple(state.completed_stages),
            document=state.document.snapshot(),
            is_terminal=self.graph.is_terminal(state.current_stage),
            allowed_actions=tuple(a.value for a in self.guard.allowed_actions(state)),
            dirty=self._dirty,
            last_save_error=self._last_save_error,
        )

    def export_document(self) -> Dict[str, Any]:
        """Deep copy of the document; legal in every state, terminal included."""
        return self._state.document.snapshot()

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """
        Call ``callback(view)`` after every successful mutation.

        Returns:
            Unsubscribe callable; calling it more than once is harmless

        Raises:
            SubscriberLimitError: the state-change channel is full; earlier
                subscribers keep receiving updates
        """
        def _handler(event: FlowEvent) -> None:
            callback(event.data["view"])

        return self.events.subscribe(EventType.STATE_CHANGED, _handler)

    # =========================================================================
    # Input
    # =========================================================================

    def submit_input(self, raw_text: Optional[str]) -> bool:
        """
        Store an answer at the current step's document slot.

        Does not advance. Returns True if the document changed.

        Raises:
            EmptyInputError: input is blank after trimming
            InputValidationError: input fails the step's rules
            InputRejectedError: the flow is complete or the step takes no input
        """
        if raw_text is None:
            raw_text = ""
        if not isinstance(raw_text, str):
            raise TypeError(f"raw_text must be str, got {type(raw_text).__name__}")

        logger.set_session(self.session_id, graph=self.graph.name)
        now = self._clock()
        self._tracker.touch(now)
        state = self._state

        if self.graph.is_terminal(state.current_stage):
            raise self._rejected(InputRejectedError(Reason.ALREADY_TERMINAL, "The blueprint is complete"))

        path = self.graph.document_path_of(state.current_stage, state.current_step)
        if path is None:
            raise self._rejected(
                InputRejectedError(Reason.NO_INPUT_EXPECTED, f"Step '{state.current_step}' takes no input")
            )

        text = raw_text.strip()
        if not text:
            self._tracker.record_empty()
            raise self._rejected(EmptyInputError())

        if flags.input_validation:
            step = self.graph.step(state.current_stage, state.current_step)
            result = self.validator.validate(step, text)
            if not result.is_valid:
                self._tracker.record_invalid()
                raise self._rejected(InputValidationError(result.errors))

        document = state.document.copy()
        changed = document.write(path, text)
        record = InteractionRecord(
            kind="input",
            stage=state.current_stage,
            step=state.current_step,
            timestamp=now,
            text=text,
        )
        self._state = state.evolve(document=document, record=record)
        self._tracker.record_progress()

        logger.info(
            "Input captured",
            stage=state.current_stage,
            step=state.current_step,
            text=text,
            changed=changed,
        )
        self._emit(EventType.INPUT_CAPTURED, stage=state.current_stage,
                   step=state.current_step, path=path, changed=changed)
        self._after_mutation("input")
        return changed

    def _rejected(self, error: InputRejectedError) -> InputRejectedError:
        """Log and publish an input rejection; the caller raises it."""
        state = self._state
        logger.info(
            "Input rejected",
            reason=error.reason,
            stage=state.current_stage,
            step=state.current_step,
        )
        self._emit(EventType.INPUT_REJECTED, reason=error.reason,
                   stage=state.current_stage, step=state.current_step)
        return error

    # =========================================================================
    # Navigation
    # =========================================================================

    def dispatch_action(self, action: Any, wipe_document: bool = False) -> TransitionResult:
        """
        Apply a navigation action atomically.

        ``wipe_document`` only matters for restart. A rejected action
        leaves the state exactly as it was.
        """
        logger.set_session(self.session_id, graph=self.graph.name)
        now = self._clock()
        self._tracker.touch(now)
        state = self._state
        decision = self.guard.evaluate(state, action, wipe_document=wipe_document)
        action_name = decision.action.value if decision.action else str(action)

        if not decision.allowed:
            logger.debug(
                "Transition rejected",
                action=action_name,
                reason=decision.reason,
                stage=state.current_stage,
                step=state.current_step,
            )
            self._emit(EventType.TRANSITION_REJECTED, action=action_name, reason=decision.reason)
            return TransitionResult(
                allowed=False,
                action=action_name,
                from_position=state.position,
                reason=decision.reason,
                guidance=guidance_for(decision.reason),
            )

        target = decision.target
        document = DocumentModel(self.graph) if decision.wipe_document else None
        record = InteractionRecord(
            kind="action",
            stage=state.current_stage,
            step=state.current_step,
            timestamp=now,
            action=action_name,
            to_stage=target.stage,
            to_step=target.step,
        )
        self._state = state.evolve(
            position=target,
            document=document,
            completed_stages=decision.completed_stages,
            record=record,
        )
        self._tracker.record_progress()

        logger.event(
            "flow_transition",
            action=action_name,
            from_stage=state.current_stage,
            from_step=state.current_step,
            to_stage=target.stage,
            to_step=target.step,
        )
        if decision.stage_completed:
            logger.metric(
                "progress",
                len(decision.completed_stages) / self.graph.total_stages,
                stage_completed=decision.stage_completed,
            )
        self._emit(
            EventType.TRANSITION_APPLIED,
            action=action_name,
            from_position=state.position.to_dict(),
            to_position=target.to_dict(),
            stage_completed=decision.stage_completed,
        )
        self._after_mutation("action")
        return TransitionResult(
            allowed=True,
            action=action_name,
            from_position=state.position,
            to_position=target,
            stage_completed=decision.stage_completed,
        )

    # =========================================================================
    # Rehydration
    # =========================================================================

    def load_from(
        self,
        document: Dict[str, Any],
        current_stage: Optional[str] = None,
        current_step: Optional[str] = None,
        completed_stages: Optional[Iterable[str]] = None,
    ) -> None:
        """
        Replace the session contents with an exported document.

        Without ``current_stage`` the position is the first required
        collect step with no value, walking stages and steps in graph
        order, or the terminal stage once every such step is answered.
        With a non-terminal ``current_stage`` but no ``current_step``
        the same search runs inside that stage, falling back to its
        first step.

        When ``completed_stages`` is omitted it is derived from the
        satisfied stages that precede the resolved stage.

        Raises:
            MalformedDocumentError: position or document do not fit the graph;
                the orchestrator is left unchanged
        """
        now = self._clock()
        if current_stage is None or (
            current_step is None
            and self.graph.has_stage(current_stage)
            and not self.graph.is_terminal(current_stage)
        ):
            errors = DocumentModel.check_mapping(self.graph, document)
            if errors:
                raise MalformedDocumentError(errors)
            current_stage, current_step = self._resume_position(
                DocumentModel(self.graph, document), current_stage
            )

        new_state = self._build_state(
            document=document,
            current_stage=current_stage,
            current_step=current_step,
            completed_stages=completed_stages,
        )
        new_state.interaction_log = list(self._state.interaction_log) + [
            InteractionRecord(kind="load", stage=current_stage, step=current_step, timestamp=now)
        ]
        self._state = new_state
        self._tracker = StuckTracker()
        self._tracker.touch(now)

        logger.info("Session loaded from document", stage=current_stage, step=current_step)
        self._emit(EventType.SESSION_LOADED, source="document", stage=current_stage, step=current_step)
        self._after_mutation("load")

    def _resume_position(
        self, model: DocumentModel, stage_id: Optional[str] = None
    ) -> Tuple[str, Optional[str]]:
        """First unanswered required collect step, in one stage or the whole graph."""
        graph = self.graph
        stages = [stage_id] if stage_id is not None else [
            s for s in graph.stage_ids if not graph.is_terminal(s)
        ]
        for stage in stages:
            for step in graph.steps_of(stage):
                if step.blocks_progress and not model.has(graph.document_path_of(stage, step.id)):
                    return stage, step.id
        if stage_id is not None:
            return stage_id, graph.first_step_of(stage_id).id
        return graph.terminal_stage, None

    def to_snapshot(self) -> Dict[str, Any]:
        """Full JSON-serializable representation of the session."""
        state = self._state
        return {
            "schema_version": SNAPSHOT_SCHEMA_VERSION,
            "session_id": state.session_id,
            "graph": {"name": self.graph.name, "version": self.graph.version},
            "current_stage": state.current_stage,
            "current_step": state.current_step,
            "stage_step": state.stage_step,
            "completed_stages": list(state.completed_stages),
            "document": state.document.snapshot(),
            "interaction_log": [r.to_dict() for r in state.interaction_log],
            "skip_override": state.skip_override,
            "saved_at": self._clock(),
        }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """
        Rehydrate from a snapshot produced by ``to_snapshot``. Does not save.

        Raises:
            MalformedDocumentError: schema, session, graph or position mismatch
        """
        try:
            persisted = PersistedSession.model_validate(snapshot)
        except ValidationError as exc:
            raise MalformedDocumentError([
                f"{'.'.join(str(p) for p in err['loc']) or 'snapshot'}: {err['msg']}"
                for err in exc.errors()
            ]) from exc

        errors = []
        if persisted.session_id != self.session_id:
            errors.append(
                f"Snapshot belongs to session '{persisted.session_id}', not '{self.session_id}'"
            )
        if persisted.graph.name != self.graph.name:
            errors.append(
                f"Snapshot was made for graph '{persisted.graph.name}', not '{self.graph.name}'"
            )
        if errors:
            raise MalformedDocumentError(errors)
        if persisted.graph.version != self.graph.version:
            logger.warning(
                "Snapshot graph version differs",
                snapshot_version=persisted.graph.version,
                graph_version=self.graph.version,
            )

        new_state = self._build_state(
            document=persisted.document,
            current_stage=persisted.current_stage,
            current_step=persisted.current_step,
            completed_stages=persisted.completed_stages,
            stage_step=persisted.stage_step,
        )
        new_state.interaction_log = [
            InteractionRecord(**item.model_dump()) for item in persisted.interaction_log
        ]
        new_state.skip_override = persisted.skip_override

        self._state = new_state
        self._tracker = StuckTracker()
        self._tracker.touch(self._clock())
        self._dirty = False
        self._last_save_error = None

        logger.info("Session restored from snapshot", stage=new_state.current_stage)
        self._emit(EventType.SESSION_LOADED, source="snapshot", stage=new_state.current_stage,
                   step=new_state.current_step)
        self._notify("restore")

    def _build_state(
        self,
        document: Any,
        current_stage: str,
        current_step: Optional[str],
        completed_stages: Optional[Iterable[str]] = None,
        stage_step: Optional[int] = None,
    ) -> FlowState:
        graph = self.graph
        errors: List[str] = []
        expected_step = None

        if not isinstance(current_stage, str) or not graph.has_stage(current_stage):
            errors.append(f"Unknown stage '{current_stage}'")
        elif graph.is_terminal(current_stage):
            if current_step is not None:
                errors.append(f"Terminal stage '{current_stage}' has no step '{current_step}'")
            expected_step = 0
        elif not isinstance(current_step, str) or not graph.has_step(current_stage, current_step):
            errors.append(f"Unknown step '{current_step}' in stage '{current_stage}'")
        else:
            expected_step = graph.index_of(current_stage, current_step)

        if stage_step is not None and expected_step is not None and stage_step != expected_step:
            errors.append(
                f"stage_step {stage_step} does not match step '{current_step}' (expected {expected_step})"
            )

        errors.extend(DocumentModel.check_mapping(graph, document))

        if completed_stages is not None:
            completed_stages = list(completed_stages)
            unknown = [s for s in completed_stages if s not in graph.stage_ids]
            if unknown:
                errors.append(f"Unknown completed stages: {', '.join(map(str, unknown))}")

        if errors:
            raise MalformedDocumentError(errors)

        model = DocumentModel(graph, document)
        if completed_stages is None:
            current_order = graph.stage_order(current_stage)
            completed_stages = [
                s for s in graph.stage_ids
                if graph.stage_order(s) < current_order and model.is_stage_satisfied(s)
            ]

        return FlowState(
            session_id=self.session_id,
            current_stage=current_stage,
            current_step=current_step,
            stage_step=expected_step,
            document=model,
            completed_stages=graph.sort_stages(completed_stages),
            skip_override=self._state.skip_override,
        )

    # =========================================================================
    # Persistence
    # =========================================================================

    def save(self) -> bool:
        """
        Write a snapshot through the persistence adapter.

        Failures are recorded in ``dirty`` / ``last_save_error`` and
        logged; in-memory state is never rolled back. Callers may call
        this again to retry.
        """
        if self.persistence is None:
            self._dirty = False
            return True

        try:
            self.persistence.save(self.session_id, self.to_snapshot())
        except Exception as exc:
            self._dirty = True
            self._last_save_error = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "Snapshot save failed",
                session_id=self.session_id,
                error=self._last_save_error,
            )
            self._emit(EventType.SAVE_FAILED, error=self._last_save_error)
            return False

        self._dirty = False
        self._last_save_error = None
        return True

    def _after_mutation(self, cause: str) -> None:
        self._dirty = True
        if flags.autosave:
            self.save()
        self._notify(cause)

    def _notify(self, cause: str) -> None:
        self._emit(EventType.STATE_CHANGED, view=self.get_state(), cause=cause)

    def _emit(self, event_type: EventType, **data: Any) -> None:
        self.events.emit(FlowEvent(
            event_type=event_type, session_id=self.session_id, timestamp=self._clock(), data=data
        ))

    # =========================================================================
    # Recovery and suggestions
    # =========================================================================

    def stuck_signals(self, now: Optional[float] = None) -> StuckSignals:
        now = self._clock() if now is None else now
        return self._tracker.signals(now, self.guard.is_step_skippable(self._state))

    @feature_flag("stuck_recovery", default_return=RecoveryRecommendation.NONE)
    def recovery_recommendation(self, now: Optional[float] = None) -> RecoveryRecommendation:
        """What the UI should offer a user who seems stuck on this step."""
        signals = self.stuck_signals(now)
        recommendation = recommend(signals, self.recovery_config)
        if recommendation != RecoveryRecommendation.NONE:
            logger.info(
                "Stuck recovery suggested",
                recommendation=recommendation.value,
                stage=self._state.current_stage,
                step=self._state.current_step,
                empty=signals.empty_input_attempts,
                invalid=signals.invalid_input_attempts,
                idle_ms=signals.idle_ms,
            )
        return recommendation

    def suggestion_query(self, context: Optional[Dict[str, Any]] = None) -> SuggestionQuery:
        """
        Build the request a ``SuggestionProvider`` needs for the current step.

        Raises:
            InputRejectedError: the flow is complete or the step takes no input
        """
        state = self._state
        if self.graph.is_terminal(state.current_stage):
            raise InputRejectedError(Reason.ALREADY_TERMINAL, "The blueprint is complete")
        step = self.graph.step(state.current_stage, state.current_step)
        if not step.accepts_input:
            raise InputRejectedError(Reason.NO_INPUT_EXPECTED, f"Step '{step.id}' takes no input")

        merged = {
            "document": state.document.snapshot(),
            "prompt": step.prompt,
            "examples": list(step.suggestions),
        }
        merged.update(context or {})
        return SuggestionQuery(stage=state.current_stage, step=step.id, context=merged)

    @staticmethod
    def guidance_for(reason: Optional[str]) -> Optional[str]:
        return guidance_for(reason)

    def get_stats(self) -> Dict[str, Any]:
        """Session statistics for debugging and analytics."""
        state = self._state
        return {
            "session_id": state.session_id,
            "graph": self.graph.name,
            "position": state.position.to_dict(),
            "progress": len(state.completed_stages) / self.graph.total_stages,
            "interactions": len(state.interaction_log),
            "counters": self._tracker.to_dict(),
            "events": self.metrics.get_summary(),
            "dirty": self._dirty,
        }

    def __repr__(self) -> str:
        state = self._state
        return (
            f"FlowOrchestrator(session_id={state.session_id!r}, graph={self.graph.name!r}, "
            f"stage={state.current_stage!r}, step={state.current_step!r})"
        )
