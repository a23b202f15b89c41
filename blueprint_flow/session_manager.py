"""
Session Manager - caches active orchestrators and loads snapshots only on cache miss.

One orchestrator per session id. Expired sessions are saved and evicted.
A snapshot that cannot be rehydrated is logged and replaced by a fresh
session so one corrupted record never locks a teacher out.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from blueprint_flow.config_loader import get_graph
from blueprint_flow.errors import MalformedDocumentError
from blueprint_flow.logger import logger
from blueprint_flow.orchestrator import FlowOrchestrator
from blueprint_flow.persistence import create_persistence
from blueprint_flow.protocols import PersistenceAdapter
from blueprint_flow.settings import settings
from blueprint_flow.stage_graph import StageGraph


@dataclass
class SessionEntry:
    orchestrator: FlowOrchestrator
    last_activity: float
    created_at: float


class SessionManager:
    def __init__(
        self,
        graph: Optional[StageGraph] = None,
        persistence: Optional[PersistenceAdapter] = None,
        ttl_seconds: Optional[int] = None,
        time_provider: Optional[Callable[[], float]] = None,
        **orchestrator_kwargs: Any,
    ):
        self._graph = graph or get_graph()
        self._persistence = persistence if persistence is not None else create_persistence()
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.get_nested("session.ttl_seconds", 3600)
        self._time = time_provider or time.time
        self._orchestrator_kwargs = orchestrator_kwargs
        self._sessions: Dict[str, SessionEntry] = {}

    @property
    def graph(self) -> StageGraph:
        return self._graph

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def _new_orchestrator(self, session_id: str) -> FlowOrchestrator:
        return FlowOrchestrator(
            self._graph,
            session_id=session_id,
            persistence=self._persistence,
            **self._orchestrator_kwargs,
        )

    def _restore(self, session_id: str, snapshot: Dict[str, Any]) -> Optional[FlowOrchestrator]:
        try:
            return FlowOrchestrator.from_snapshot(
                self._graph,
                snapshot,
                persistence=self._persistence,
                **self._orchestrator_kwargs,
            )
        except MalformedDocumentError as exc:
            logger.warning(
                "Stored snapshot rejected, starting fresh session",
                session_id=session_id,
                errors=exc.errors,
            )
            return None

    def get_or_create(self, session_id: str) -> FlowOrchestrator:
        """
        Flow:
        1. Cache hit within TTL -> return.
        2. Expired -> save and evict.
        3. Stored snapshot -> restore.
        4. Otherwise (or snapshot malformed) -> new orchestrator.
        """
        now = self._time()

        entry = self._sessions.get(session_id)
        if entry is not None:
            if now - entry.last_activity < self._ttl:
                entry.last_activity = now
                logger.debug("Session from cache", session_id=session_id)
                return entry.orchestrator
            self.save(session_id)
            del self._sessions[session_id]

        orchestrator = None
        snapshot = self._persistence.load(session_id)
        if snapshot:
            orchestrator = self._restore(session_id, snapshot)
            if orchestrator is not None:
                logger.info("Session restored from snapshot", session_id=session_id)

        if orchestrator is None:
            orchestrator = self._new_orchestrator(session_id)
            logger.info("New session created", session_id=session_id, graph=self._graph.name)

        self._sessions[session_id] = SessionEntry(
            orchestrator=orchestrator,
            last_activity=now,
            created_at=now,
        )
        return orchestrator

    def save(self, session_id: str) -> bool:
        """Save a cached session; False if it is unknown or the save failed."""
        entry = self._sessions.get(session_id)
        if entry is None:
            return False
        return entry.orchestrator.save()

    def close(self, session_id: str) -> bool:
        """Save and evict a session. Returns whether it was cached."""
        if session_id not in self._sessions:
            return False
        self.save(session_id)
        del self._sessions[session_id]
        logger.info("Session closed", session_id=session_id)
        return True

    def cleanup_expired(self) -> int:
        """Remove expired sessions from cache."""
        now = self._time()
        expired = [
            sid for sid, entry in self._sessions.items()
            if now - entry.last_activity >= self._ttl
        ]
        for sid in expired:
            self.save(sid)
            del self._sessions[sid]

        if expired:
            logger.info("Cleaned up expired sessions", count=len(expired))
        return len(expired)
