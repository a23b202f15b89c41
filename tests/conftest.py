"""
Shared pytest fixtures for Blueprint Flow tests.

Provides fixtures for:
- Stage graphs loaded from the bundled flow files
- A small hand-built graph for guard tests
- A controllable clock
- In-memory and failing persistence adapters
- Feature flag isolation
"""

import pytest
from typing import Any, Dict, Optional
from unittest.mock import Mock

from blueprint_flow.config_loader import ConfigLoader
from blueprint_flow.document import DocumentModel
from blueprint_flow.feature_flags import flags
from blueprint_flow.flow_state import FlowState
from blueprint_flow.orchestrator import FlowOrchestrator
from blueprint_flow.persistence import InMemoryPersistence
from blueprint_flow.stage_graph import StageConfig, StageGraph, StepConfig, StepKind
from blueprint_flow.stuck_recovery import StuckRecoveryConfig


# =============================================================================
# Feature flags
# =============================================================================

@pytest.fixture(autouse=True)
def reset_flag_overrides():
    """Every test starts and ends without runtime flag overrides."""
    flags.clear_all_overrides()
    yield
    flags.clear_all_overrides()


# =============================================================================
# Graphs
# =============================================================================

@pytest.fixture(scope="session")
def config_loader():
    return ConfigLoader()


@pytest.fixture(scope="session")
def sop_graph(config_loader):
    return config_loader.load_graph("sop")


@pytest.fixture(scope="session")
def wizard_graph(config_loader):
    return config_loader.load_graph("sop_wizard")


@pytest.fixture(scope="session")
def pbl_graph(config_loader):
    return config_loader.load_graph("pbl")


def build_small_graph() -> StageGraph:
    """
    Two stages covering every step kind:

        A: a1 (required), a2 (optional)
        B: b_intro (transition-only), b1 (required), b_clar (clarify)
    """
    return StageGraph(
        [
            StageConfig(
                id="A",
                document_key="a",
                steps=(
                    StepConfig(id="a1", document_path="f1"),
                    StepConfig(id="a2", document_path="f2", required=False),
                ),
            ),
            StageConfig(
                id="B",
                document_key="b",
                steps=(
                    StepConfig(id="b_intro", kind=StepKind.TRANSITION_ONLY, required=False),
                    StepConfig(id="b1", document_path="g1"),
                    StepConfig(id="b_clar", kind=StepKind.CLARIFY, document_path="notes", required=False),
                ),
            ),
        ],
        terminal_stage="DONE",
        name="small",
    )


@pytest.fixture
def small_graph():
    return build_small_graph()


@pytest.fixture
def state_at(small_graph):
    """Factory for FlowState positioned anywhere in the small graph."""
    def _create(
        stage: str = "A",
        step: Optional[str] = "a1",
        document: Optional[Dict[str, Any]] = None,
        completed=(),
        skip_override: bool = False,
    ) -> FlowState:
        stage_step = 0 if step is None else small_graph.index_of(stage, step)
        return FlowState(
            session_id="guard-test",
            current_stage=stage,
            current_step=step,
            stage_step=stage_step,
            document=DocumentModel(small_graph, document),
            completed_stages=tuple(completed),
            skip_override=skip_override,
        )
    return _create


# =============================================================================
# Clock and persistence
# =============================================================================

class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return InMemoryPersistence()


@pytest.fixture
def failing_store():
    """Adapter whose save always fails until side_effect is cleared."""
    store = Mock()
    store.save.side_effect = OSError("disk full")
    store.load.return_value = None
    return store


# =============================================================================
# Orchestrator factory
# =============================================================================

@pytest.fixture
def make_flow(clock):
    """Build an orchestrator with a fake clock and default recovery thresholds."""
    def _create(graph: StageGraph, **kwargs: Any) -> FlowOrchestrator:
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("recovery_config", StuckRecoveryConfig.default())
        kwargs.setdefault("skip_override", False)
        return FlowOrchestrator(graph, **kwargs)
    return _create
