"""
Tests for StageGraph.

These tests verify:
1. Stage and step navigation queries on the bundled SOP graph
2. Document path helpers
3. Terminal stage handling
4. Structural validation of hand-built definitions
"""

import pytest

from blueprint_flow.errors import GraphConfigurationError
from blueprint_flow.stage_graph import (
    FLOW_COMPLETE,
    STAGE_COMPLETE,
    StageConfig,
    StageGraph,
    StepConfig,
    StepKind,
    validate_stage_definitions,
)


def _stage(stage_id, *steps, document_key=None):
    return StageConfig(id=stage_id, document_key=document_key or stage_id.lower(), steps=tuple(steps))


class TestStageQueries:
    """Stage-level navigation."""

    def test_stage_ids_in_order(self, sop_graph):
        assert sop_graph.stage_ids == ("IDEATION", "JOURNEY", "DELIVERABLES")
        assert sop_graph.total_stages == 3
        assert sop_graph.total_steps == 9

    def test_first_stage_and_step(self, sop_graph):
        assert sop_graph.first_stage == "IDEATION"
        assert sop_graph.first_step == "IDEATION_BIG_IDEA"

    def test_next_stage(self, sop_graph):
        assert sop_graph.next_stage("IDEATION") == "JOURNEY"
        assert sop_graph.next_stage("JOURNEY") == "DELIVERABLES"
        assert sop_graph.next_stage("DELIVERABLES") == FLOW_COMPLETE

    def test_previous_stage(self, sop_graph):
        assert sop_graph.previous_stage("IDEATION") is None
        assert sop_graph.previous_stage("DELIVERABLES") == "JOURNEY"

    def test_terminal_stage_sorts_last(self, sop_graph):
        assert sop_graph.stage_order("COMPLETED") == 3
        assert sop_graph.stage_order("IDEATION") == 0

    def test_sort_stages_orders_and_dedupes(self, sop_graph):
        assert sop_graph.sort_stages(["DELIVERABLES", "IDEATION", "DELIVERABLES"]) == (
            "IDEATION",
            "DELIVERABLES",
        )

    def test_unknown_stage_raises(self, sop_graph):
        with pytest.raises(GraphConfigurationError):
            sop_graph.stage("NOPE")
        with pytest.raises(GraphConfigurationError):
            sop_graph.next_stage("NOPE")

    def test_stage_for_document_key(self, sop_graph):
        assert sop_graph.stage_for_document_key("journey").id == "JOURNEY"
        assert sop_graph.stage_for_document_key("missing") is None


class TestTerminalStage:
    """The terminal stage has no steps and no document section."""

    def test_has_stage_includes_terminal(self, sop_graph):
        assert sop_graph.has_stage("COMPLETED")
        assert sop_graph.is_terminal("COMPLETED")
        assert not sop_graph.is_terminal("IDEATION")

    def test_terminal_has_no_steps(self, sop_graph):
        assert sop_graph.steps_of("COMPLETED") == ()
        assert not sop_graph.has_step("COMPLETED", "anything")

    def test_terminal_is_not_a_regular_stage(self, sop_graph):
        assert "COMPLETED" not in sop_graph.stage_ids
        with pytest.raises(GraphConfigurationError):
            sop_graph.stage("COMPLETED")


class TestStepQueries:
    """Step-level navigation inside a stage."""

    def test_index_is_one_based(self, sop_graph):
        assert sop_graph.index_of("IDEATION", "IDEATION_BIG_IDEA") == 1
        assert sop_graph.index_of("IDEATION", "IDEATION_CHALLENGE") == 3

    def test_next_step_and_stage_complete(self, sop_graph):
        assert sop_graph.next_step("JOURNEY", "JOURNEY_PHASES") == "JOURNEY_ACTIVITIES"
        assert sop_graph.next_step("JOURNEY", "JOURNEY_RESOURCES") == STAGE_COMPLETE

    def test_previous_step(self, sop_graph):
        assert sop_graph.previous_step("JOURNEY", "JOURNEY_PHASES") is None
        assert sop_graph.previous_step("JOURNEY", "JOURNEY_RESOURCES") == "JOURNEY_ACTIVITIES"

    def test_step_at_bounds(self, sop_graph):
        assert sop_graph.step_at("DELIVERABLES", 2).id == "DELIVER_RUBRIC"
        with pytest.raises(GraphConfigurationError):
            sop_graph.step_at("DELIVERABLES", 0)
        with pytest.raises(GraphConfigurationError):
            sop_graph.step_at("DELIVERABLES", 4)

    def test_first_and_last_step_of(self, sop_graph):
        assert sop_graph.first_step_of("JOURNEY").id == "JOURNEY_PHASES"
        assert sop_graph.last_step_of("JOURNEY").id == "JOURNEY_RESOURCES"
        assert sop_graph.is_last_step_of_stage("JOURNEY", "JOURNEY_RESOURCES")
        assert not sop_graph.is_last_step_of_stage("JOURNEY", "JOURNEY_PHASES")

    def test_unknown_step_raises(self, sop_graph):
        with pytest.raises(GraphConfigurationError):
            sop_graph.step("IDEATION", "JOURNEY_PHASES")

    def test_step_kinds(self, wizard_graph):
        assert wizard_graph.step("IDEATION", "IDEATION_INTRO").kind == StepKind.TRANSITION_ONLY
        assert wizard_graph.step("IDEATION", "IDEATION_CLARIFIER").kind == StepKind.CLARIFY
        assert wizard_graph.step("IDEATION", "IDEATION_EQ").kind == StepKind.COLLECT


class TestDocumentPaths:
    """Dotted document paths derived from the graph."""

    def test_document_path_of_collect_step(self, sop_graph):
        assert sop_graph.document_path_of("IDEATION", "IDEATION_BIG_IDEA") == "ideation.bigIdea"
        assert sop_graph.document_path_of("DELIVERABLES", "DELIVER_IMPACT") == "deliverables.impact"

    def test_transition_only_step_has_no_path(self, wizard_graph):
        assert wizard_graph.document_path_of("JOURNEY", "JOURNEY_INTRO") is None

    def test_required_paths_skip_optional_and_clarify(self, wizard_graph):
        assert wizard_graph.required_paths("WIZARD") == [
            "wizard.vision",
            "wizard.subject",
            "wizard.students",
        ]
        assert "ideation.notes" not in wizard_graph.required_paths("IDEATION")

    def test_known_fields(self, sop_graph):
        assert sop_graph.known_fields("ideation") == ["bigIdea", "essentialQuestion", "challenge"]
        assert sop_graph.known_fields("unknown") == []

    def test_resolve_path(self, sop_graph):
        assert sop_graph.resolve_path("journey.phases") == ("journey", "phases")
        for bad in ("journey", "journey.nope", "nope.phases", ""):
            with pytest.raises(GraphConfigurationError):
                sop_graph.resolve_path(bad)

    def test_to_dict_summary(self, sop_graph):
        summary = sop_graph.to_dict()
        assert summary["name"] == "sop"
        assert summary["terminal_stage"] == "COMPLETED"
        assert summary["stages"][0]["steps"] == [
            "IDEATION_BIG_IDEA",
            "IDEATION_EQ",
            "IDEATION_CHALLENGE",
        ]


class TestStepConfig:
    """Derived properties of a step."""

    def test_required_collect_blocks_progress(self):
        assert StepConfig(id="x", document_path="x").blocks_progress

    def test_optional_collect_does_not_block(self):
        assert not StepConfig(id="x", document_path="x", required=False).blocks_progress

    def test_clarify_never_blocks(self):
        step = StepConfig(id="x", kind=StepKind.CLARIFY, document_path="x", required=True)
        assert not step.blocks_progress
        assert step.accepts_input

    def test_transition_only_accepts_no_input(self):
        step = StepConfig(id="x", kind=StepKind.TRANSITION_ONLY)
        assert not step.accepts_input


class TestGraphValidation:
    """StageGraph refuses inconsistent definitions."""

    def test_empty_graph(self):
        with pytest.raises(GraphConfigurationError) as exc_info:
            StageGraph([])
        assert "Graph must declare at least one stage" in exc_info.value.errors

    def test_duplicate_stage_ids(self):
        errors = validate_stage_definitions(
            [
                _stage("A", StepConfig(id="a", document_path="a")),
                _stage("A", StepConfig(id="b", document_path="b"), document_key="other"),
            ],
            "DONE",
        )
        assert "Duplicate stage id 'A'" in errors

    def test_terminal_collision(self):
        errors = validate_stage_definitions(
            [_stage("DONE", StepConfig(id="a", document_path="a"))], "DONE"
        )
        assert any("collides with the terminal stage" in e for e in errors)

    def test_stage_without_steps(self):
        errors = validate_stage_definitions([_stage("A")], "DONE")
        assert "Stage 'A' has no steps" in errors

    def test_collect_step_needs_path(self):
        errors = validate_stage_definitions([_stage("A", StepConfig(id="a"))], "DONE")
        assert "Collect step 'A.a' has no document path" in errors

    def test_transition_only_step_must_not_have_path(self):
        errors = validate_stage_definitions(
            [_stage("A", StepConfig(id="a", kind=StepKind.TRANSITION_ONLY, document_path="x"))],
            "DONE",
        )
        assert any("must not have a document path" in e for e in errors)

    def test_dotted_field_rejected(self):
        errors = validate_stage_definitions(
            [_stage("A", StepConfig(id="a", document_path="x.y"))], "DONE"
        )
        assert any("must not contain '.'" in e for e in errors)

    def test_duplicate_document_key(self):
        errors = validate_stage_definitions(
            [
                _stage("A", StepConfig(id="a", document_path="a"), document_key="same"),
                _stage("B", StepConfig(id="b", document_path="b"), document_key="same"),
            ],
            "DONE",
        )
        assert "Duplicate document key 'same'" in errors

    def test_invalid_validation_rules(self):
        errors = validate_stage_definitions(
            [
                _stage(
                    "A",
                    StepConfig(id="a", document_path="a", validation={"pattern": "("}),
                    StepConfig(id="b", document_path="b", validation={"min_length": 5, "max_length": 2}),
                    StepConfig(id="c", document_path="c", validation={"min_length": -1}),
                )
            ],
            "DONE",
        )
        assert any("invalid pattern" in e for e in errors)
        assert "Step 'A.b' min_length is greater than max_length" in errors
        assert "Step 'A.c' min_length must be a non-negative integer" in errors

    def test_all_errors_reported_together(self):
        with pytest.raises(GraphConfigurationError) as exc_info:
            StageGraph([_stage("A", StepConfig(id="a")), _stage("B")])
        assert len(exc_info.value.errors) == 2
