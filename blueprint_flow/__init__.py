"""
Blueprint Flow - conversational flow orchestrator for project blueprints.

Guides an educator through a staged authoring conversation, captures
answers into a structured blueprint document and keeps navigation
(continue, back, skip, refine, restart) consistent.
"""

from blueprint_flow.config_loader import ConfigLoader, ConfigLoadError, ConfigValidationError, get_graph
from blueprint_flow.document import DocumentModel
from blueprint_flow.errors import (
    EmptyInputError,
    FlowError,
    GraphConfigurationError,
    InputRejectedError,
    InputValidationError,
    MalformedDocumentError,
    Reason,
    SubscriberLimitError,
)
from blueprint_flow.orchestrator import FlowOrchestrator, FlowView, SuggestionQuery, TransitionResult
from blueprint_flow.persistence import InMemoryPersistence, PersistedSession, SQLiteSnapshotStore
from blueprint_flow.session_manager import SessionManager
from blueprint_flow.stage_graph import StageConfig, StageGraph, StepConfig, StepKind
from blueprint_flow.stuck_recovery import RecoveryRecommendation, StuckRecoveryConfig, StuckSignals, recommend
from blueprint_flow.transition_guard import Action, GuardDecision, TransitionGuard

__version__ = "1.0.0"

__all__ = [
    "Action",
    "ConfigLoadError",
    "ConfigLoader",
    "ConfigValidationError",
    "DocumentModel",
    "EmptyInputError",
    "FlowError",
    "FlowOrchestrator",
    "FlowView",
    "GraphConfigurationError",
    "GuardDecision",
    "InMemoryPersistence",
    "InputRejectedError",
    "InputValidationError",
    "MalformedDocumentError",
    "PersistedSession",
    "Reason",
    "RecoveryRecommendation",
    "SQLiteSnapshotStore",
    "SessionManager",
    "StageConfig",
    "StageGraph",
    "StepConfig",
    "StepKind",
    "StuckRecoveryConfig",
    "StuckSignals",
    "SubscriberLimitError",
    "SuggestionQuery",
    "TransitionGuard",
    "TransitionResult",
    "get_graph",
    "recommend",
]
