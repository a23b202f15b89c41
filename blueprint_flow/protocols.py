"""
Protocols for the collaborators the orchestrator talks to.

These protocols enable:
- Swapping the durable store without touching the orchestrator
- Easy mocking in tests
- Keeping generative-AI calls outside the core
"""

from typing import Any, Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class PersistenceAdapter(Protocol):
    """
    Output Port: durable storage for session snapshots.

    ``save`` is called synchronously after every successful mutation
    with a JSON-serializable snapshot. It may raise; the orchestrator
    records the failure and keeps its in-memory state.
    """

    def save(self, session_id: str, snapshot: Dict[str, Any]) -> None:
        ...

    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        ...


@runtime_checkable
class SuggestionProvider(Protocol):
    """
    Output Port: produces a draft answer for a step.

    Implemented by the generative-AI client. The orchestrator only
    builds the query; the caller invokes the provider and submits the
    returned text through ``submit_input`` like any other answer.
    """

    def suggest(self, stage: str, step: str, context: Dict[str, Any]) -> str:
        ...
