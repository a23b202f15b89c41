"""
Runtime state of one authoring session.

``FlowState`` is owned by a single ``FlowOrchestrator``. Mutations never
edit a live state in place: the orchestrator builds a new state with
``evolve()`` and swaps it in, so a failure halfway through a transition
cannot leave a mixed position behind.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from blueprint_flow.document import DocumentModel
from blueprint_flow.stage_graph import StageGraph


@dataclass(frozen=True)
class Position:
    """Where a session is: stage, step id and 1-based step number."""
    stage: str
    step: Optional[str]
    stage_step: int

    def to_dict(self) -> Dict[str, Any]:
        return {"stage": self.stage, "step": self.step, "stage_step": self.stage_step}


@dataclass
class InteractionRecord:
    """One entry of the append-only interaction log."""
    kind: str                       # "input" | "action" | "load"
    stage: str
    step: Optional[str]
    timestamp: float
    text: Optional[str] = None
    action: Optional[str] = None
    to_stage: Optional[str] = None
    to_step: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "stage": self.stage,
            "step": self.step,
            "timestamp": self.timestamp,
            "text": self.text,
            "action": self.action,
            "to_stage": self.to_stage,
            "to_step": self.to_step,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InteractionRecord":
        return cls(
            kind=data["kind"],
            stage=data["stage"],
            step=data.get("step"),
            timestamp=data["timestamp"],
            text=data.get("text"),
            action=data.get("action"),
            to_stage=data.get("to_stage"),
            to_step=data.get("to_step"),
        )


@dataclass
class FlowState:
    """
    Position, progress and document of a session.

    Attributes:
        session_id: Opaque id, fixed at creation
        current_stage: Stage id (may be the terminal stage)
        current_step: Step id, None at the terminal stage
        stage_step: 1-based step number, 0 at the terminal stage
        document: Captured answers
        completed_stages: Satisfied stages, in graph order
        interaction_log: Successful submissions and actions
        skip_override: Session may skip required steps
    """
    session_id: str
    current_stage: str
    current_step: Optional[str]
    stage_step: int
    document: DocumentModel
    completed_stages: Tuple[str, ...] = ()
    interaction_log: List[InteractionRecord] = field(default_factory=list)
    skip_override: bool = False

    @classmethod
    def initial(cls, graph: StageGraph, session_id: str, skip_override: bool = False) -> "FlowState":
        return cls(
            session_id=session_id,
            current_stage=graph.first_stage,
            current_step=graph.first_step,
            stage_step=1,
            document=DocumentModel(graph),
            skip_override=skip_override,
        )

    @property
    def position(self) -> Position:
        return Position(self.current_stage, self.current_step, self.stage_step)

    def evolve(
        self,
        position: Optional[Position] = None,
        document: Optional[DocumentModel] = None,
        completed_stages: Optional[Tuple[str, ...]] = None,
        record: Optional[InteractionRecord] = None,
    ) -> "FlowState":
        """Return a new state; the receiver is left untouched."""
        position = position or self.position
        log = list(self.interaction_log)
        if record is not None:
            log.append(record)
        return replace(
            self,
            current_stage=position.stage,
            current_step=position.step,
            stage_step=position.stage_step,
            document=document if document is not None else self.document.copy(),
            completed_stages=(
                tuple(completed_stages) if completed_stages is not None else self.completed_stages
            ),
            interaction_log=log,
        )
