"""
StageGraph: the static shape of an authoring flow.

A graph is an ordered list of stages, each an ordered list of steps,
plus an absorbing terminal stage that has no steps. Graphs are built
from YAML by ``ConfigLoader`` and are never mutated afterwards, so one
instance can be shared by every session that uses the same flow.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from blueprint_flow.errors import GraphConfigurationError


STAGE_COMPLETE = "STAGE_COMPLETE"
FLOW_COMPLETE = "FLOW_COMPLETE"
DEFAULT_TERMINAL_STAGE = "COMPLETED"


class StepKind(str, Enum):
    """How a step participates in the flow."""
    COLLECT = "collect"                  # captures an answer into the document
    CLARIFY = "clarify"                  # follow-up turn, never blocks progress
    TRANSITION_ONLY = "transition-only"  # intro/outro turn, no document slot

    @classmethod
    def values(cls) -> List[str]:
        return [kind.value for kind in cls]


@dataclass(frozen=True)
class StepConfig:
    """One step of a stage."""
    id: str
    kind: StepKind = StepKind.COLLECT
    document_path: Optional[str] = None
    required: bool = True
    prompt: str = ""
    suggestions: Tuple[str, ...] = ()
    validation: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def accepts_input(self) -> bool:
        return self.document_path is not None

    @property
    def blocks_progress(self) -> bool:
        """Only required collect steps need a value before moving on."""
        return self.kind == StepKind.COLLECT and self.required


@dataclass(frozen=True)
class StageConfig:
    """One stage: a document section and its ordered steps."""
    id: str
    document_key: str
    steps: Tuple[StepConfig, ...]
    title: str = ""


class StageGraph:
    """
    Read-only description of stages and steps.

    Positions are addressed by ``(stage_id, step_id)``; step positions
    inside a stage are 1-based. The terminal stage has no steps.
    Unknown stage or step ids raise ``GraphConfigurationError`` since
    they can only come from a programming or configuration mistake.
    """

    def __init__(
        self,
        stages: Sequence[StageConfig],
        terminal_stage: str = DEFAULT_TERMINAL_STAGE,
        name: str = "custom",
        version: str = "1.0",
        description: str = "",
    ):
        stages = tuple(stages)
        errors = validate_stage_definitions(stages, terminal_stage)
        if errors:
            raise GraphConfigurationError(
                f"Invalid stage graph '{name}': {len(errors)} error(s)", errors
            )

        self.name = name
        self.version = str(version)
        self.description = description
        self.terminal_stage = terminal_stage
        self._stages: Tuple[StageConfig, ...] = stages
        self._by_id: Dict[str, StageConfig] = {s.id: s for s in stages}
        self._order: Dict[str, int] = {s.id: i for i, s in enumerate(stages)}
        self._by_document_key: Dict[str, StageConfig] = {s.document_key: s for s in stages}

    # =========================================================================
    # Stages
    # =========================================================================

    @property
    def stage_ids(self) -> Tuple[str, ...]:
        return tuple(s.id for s in self._stages)

    @property
    def stages(self) -> Tuple[StageConfig, ...]:
        return self._stages

    @property
    def total_stages(self) -> int:
        return len(self._stages)

    @property
    def total_steps(self) -> int:
        return sum(len(s.steps) for s in self._stages)

    @property
    def first_stage(self) -> str:
        return self._stages[0].id

    @property
    def first_step(self) -> str:
        return self._stages[0].steps[0].id

    def has_stage(self, stage_id: str) -> bool:
        return stage_id in self._by_id or stage_id == self.terminal_stage

    def is_terminal(self, stage_id: str) -> bool:
        return stage_id == self.terminal_stage

    def stage(self, stage_id: str) -> StageConfig:
        try:
            return self._by_id[stage_id]
        except KeyError:
            raise GraphConfigurationError(
                f"Unknown stage '{stage_id}' in graph '{self.name}'"
            ) from None

    def stage_order(self, stage_id: str) -> int:
        """0-based position of a stage; the terminal stage sorts last."""
        if self.is_terminal(stage_id):
            return len(self._stages)
        self.stage(stage_id)
        return self._order[stage_id]

    def next_stage(self, stage_id: str) -> str:
        """Following stage id, or ``FLOW_COMPLETE`` after the last one."""
        index = self.stage_order(stage_id)
        if index + 1 >= len(self._stages):
            return FLOW_COMPLETE
        return self._stages[index + 1].id

    def previous_stage(self, stage_id: str) -> Optional[str]:
        index = self.stage_order(stage_id)
        if index == 0:
            return None
        return self._stages[index - 1].id

    def sort_stages(self, stage_ids) -> Tuple[str, ...]:
        """Deduplicate and order stage ids by graph order."""
        return tuple(sorted(set(stage_ids), key=self.stage_order))

    def stage_for_document_key(self, document_key: str) -> Optional[StageConfig]:
        return self._by_document_key.get(document_key)

    # =========================================================================
    # Steps
    # =========================================================================

    def steps_of(self, stage_id: str) -> Tuple[StepConfig, ...]:
        if self.is_terminal(stage_id):
            return ()
        return self.stage(stage_id).steps

    def step(self, stage_id: str, step_id: str) -> StepConfig:
        for step in self.steps_of(stage_id):
            if step.id == step_id:
                return step
        raise GraphConfigurationError(
            f"Unknown step '{step_id}' in stage '{stage_id}'"
        )

    def has_step(self, stage_id: str, step_id: str) -> bool:
        if stage_id not in self._by_id:
            return False
        return any(step.id == step_id for step in self._by_id[stage_id].steps)

    def index_of(self, stage_id: str, step_id: str) -> int:
        """1-based position of a step within its stage."""
        for index, step in enumerate(self.steps_of(stage_id), start=1):
            if step.id == step_id:
                return index
        raise GraphConfigurationError(
            f"Unknown step '{step_id}' in stage '{stage_id}'"
        )

    def step_at(self, stage_id: str, position: int) -> StepConfig:
        steps = self.steps_of(stage_id)
        if not 1 <= position <= len(steps):
            raise GraphConfigurationError(
                f"Stage '{stage_id}' has no step at position {position}"
            )
        return steps[position - 1]

    def first_step_of(self, stage_id: str) -> StepConfig:
        return self.step_at(stage_id, 1)

    def last_step_of(self, stage_id: str) -> StepConfig:
        return self.step_at(stage_id, len(self.steps_of(stage_id)))

    def next_step(self, stage_id: str, step_id: str) -> str:
        """Following step id in the stage, or ``STAGE_COMPLETE`` after the last one."""
        index = self.index_of(stage_id, step_id)
        steps = self.steps_of(stage_id)
        if index >= len(steps):
            return STAGE_COMPLETE
        return steps[index].id

    def previous_step(self, stage_id: str, step_id: str) -> Optional[str]:
        index = self.index_of(stage_id, step_id)
        if index == 1:
            return None
        return self.steps_of(stage_id)[index - 2].id

    def is_last_step_of_stage(self, stage_id: str, step_id: str) -> bool:
        return self.index_of(stage_id, step_id) == len(self.steps_of(stage_id))

    # =========================================================================
    # Document paths
    # =========================================================================

    def document_path_of(self, stage_id: str, step_id: str) -> Optional[str]:
        """Full dotted path (``document_key.field``) or None for steps without a slot."""
        step = self.step(stage_id, step_id)
        if step.document_path is None:
            return None
        return f"{self.stage(stage_id).document_key}.{step.document_path}"

    def required_paths(self, stage_id: str) -> List[str]:
        stage = self.stage(stage_id)
        return [
            f"{stage.document_key}.{step.document_path}"
            for step in stage.steps
            if step.blocks_progress
        ]

    def known_fields(self, document_key: str) -> List[str]:
        stage = self.stage_for_document_key(document_key)
        if stage is None:
            return []
        return [s.document_path for s in stage.steps if s.document_path is not None]

    def resolve_path(self, path: str) -> Tuple[str, str]:
        """Split and check a dotted document path against the graph."""
        document_key, _, field_name = path.partition(".")
        if not field_name or field_name not in self.known_fields(document_key):
            raise GraphConfigurationError(
                f"Unknown document path '{path}' in graph '{self.name}'"
            )
        return document_key, field_name

    def to_dict(self) -> Dict[str, Any]:
        """Summary for logs and debugging."""
        return {
            "name": self.name,
            "version": self.version,
            "terminal_stage": self.terminal_stage,
            "stages": [
                {
                    "id": stage.id,
                    "document_key": stage.document_key,
                    "steps": [step.id for step in stage.steps],
                }
                for stage in self._stages
            ],
        }

    def __repr__(self) -> str:
        return (
            f"StageGraph(name={self.name!r}, version={self.version!r}, "
            f"stages={list(self.stage_ids)})"
        )


def validate_stage_definitions(
    stages: Sequence[StageConfig],
    terminal_stage: str,
) -> List[str]:
    """Return a list of problems with a stage definition (empty if valid)."""
    errors: List[str] = []

    if not stages:
        errors.append("Graph must declare at least one stage")
    if not terminal_stage:
        errors.append("Terminal stage id must not be empty")

    seen_stages = set()
    seen_keys = set()
    for stage in stages:
        if stage.id in seen_stages:
            errors.append(f"Duplicate stage id '{stage.id}'")
        seen_stages.add(stage.id)

        if stage.id == terminal_stage:
            errors.append(f"Stage '{stage.id}' collides with the terminal stage id")

        if not stage.document_key or "." in stage.document_key:
            errors.append(f"Stage '{stage.id}' has an invalid document key '{stage.document_key}'")
        elif stage.document_key in seen_keys:
            errors.append(f"Duplicate document key '{stage.document_key}'")
        seen_keys.add(stage.document_key)

        if not stage.steps:
            errors.append(f"Stage '{stage.id}' has no steps")

        seen_steps = set()
        seen_paths = set()
        for step in stage.steps:
            if step.id in seen_steps:
                errors.append(f"Duplicate step id '{step.id}' in stage '{stage.id}'")
            seen_steps.add(step.id)

            if step.kind == StepKind.COLLECT and not step.document_path:
                errors.append(f"Collect step '{stage.id}.{step.id}' has no document path")
            if step.kind == StepKind.TRANSITION_ONLY and step.document_path:
                errors.append(
                    f"Transition-only step '{stage.id}.{step.id}' must not have a document path"
                )

            if step.document_path:
                if "." in step.document_path:
                    errors.append(
                        f"Step '{stage.id}.{step.id}' document path must not contain '.'"
                    )
                if step.document_path in seen_paths:
                    errors.append(
                        f"Duplicate document path '{step.document_path}' in stage '{stage.id}'"
                    )
                seen_paths.add(step.document_path)

            errors.extend(_validate_rules(f"{stage.id}.{step.id}", step.validation))

    return errors


def _validate_rules(where: str, rules: Dict[str, Any]) -> List[str]:
    errors = []
    min_length = rules.get("min_length")
    max_length = rules.get("max_length")
    for key, value in (("min_length", min_length), ("max_length", max_length)):
        if value is not None and (not isinstance(value, int) or value < 0):
            errors.append(f"Step '{where}' {key} must be a non-negative integer")
    if isinstance(min_length, int) and isinstance(max_length, int) and min_length > max_length:
        errors.append(f"Step '{where}' min_length is greater than max_length")
    pattern = rules.get("pattern")
    if pattern is not None:
        try:
            re.compile(pattern)
        except (re.error, TypeError) as e:
            errors.append(f"Step '{where}' has an invalid pattern: {e}")
    return errors
