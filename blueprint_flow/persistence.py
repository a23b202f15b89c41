"""
Snapshot schema and persistence adapters.

Snapshots are plain JSON-serializable dicts. ``PersistedSession`` is the
pydantic schema used to check a snapshot before it is rehydrated.
Two adapters ship with the package:

- ``InMemoryPersistence``: process-local, for tests and development
- ``SQLiteSnapshotStore``: local durable store, safe across processes
"""

from __future__ import annotations

import json
import os
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from blueprint_flow.logger import logger
from blueprint_flow.settings import settings


SNAPSHOT_SCHEMA_VERSION = 1


# ── Schema ────────────────────────────────────────────

class PersistedInteraction(BaseModel):
    kind: Literal["input", "action", "load"]
    stage: str
    step: Optional[str] = None
    timestamp: float
    text: Optional[str] = None
    action: Optional[str] = None
    to_stage: Optional[str] = None
    to_step: Optional[str] = None


class PersistedGraphRef(BaseModel):
    name: str
    version: str = "1.0"


class PersistedSession(BaseModel):
    """Validated form of an orchestrator snapshot."""
    schema_version: int = SNAPSHOT_SCHEMA_VERSION
    session_id: str = Field(..., min_length=1)
    graph: PersistedGraphRef
    current_stage: str
    current_step: Optional[str] = None
    stage_step: int = Field(..., ge=0)
    completed_stages: List[str] = Field(default_factory=list)
    document: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    interaction_log: List[PersistedInteraction] = Field(default_factory=list)
    skip_override: bool = False
    saved_at: Optional[float] = None

    @field_validator("schema_version")
    @classmethod
    def _supported_schema(cls, value: int) -> int:
        if value != SNAPSHOT_SCHEMA_VERSION:
            raise ValueError(
                f"unsupported snapshot schema {value}, expected {SNAPSHOT_SCHEMA_VERSION}"
            )
        return value

    @field_validator("completed_stages")
    @classmethod
    def _unique_stages(cls, value: List[str]) -> List[str]:
        if len(set(value)) != len(value):
            raise ValueError("completed_stages contains duplicates")
        return value


# ── Adapters ──────────────────────────────────────────

class InMemoryPersistence:
    """Process-local adapter. Stores JSON text so callers never share objects."""

    def __init__(self):
        self._store: Dict[str, str] = {}
        self.save_count = 0

    def save(self, session_id: str, snapshot: Dict[str, Any]) -> None:
        self._store[session_id] = json.dumps(snapshot)
        self.save_count += 1

    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        payload = self._store.get(session_id)
        if payload is None:
            return None
        return json.loads(payload)

    def delete(self, session_id: str) -> None:
        self._store.pop(session_id, None)

    def list_sessions(self) -> List[str]:
        return sorted(self._store)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._store


class SQLiteSnapshotStore:
    """Persistent snapshot store shared across processes."""

    DEFAULT_DB_NAME = "blueprint_sessions.sqlite"

    def __init__(self, db_path: Optional[str] = None):
        self._db_path = Path(
            db_path
            or os.getenv("BLUEPRINT_SNAPSHOT_PATH")
            or settings.get_nested("persistence.db_path")
            or self.DEFAULT_DB_NAME
        ).resolve()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS sessions (
                        session_id TEXT PRIMARY KEY,
                        graph_name TEXT NOT NULL DEFAULT '',
                        snapshot_json TEXT NOT NULL,
                        updated_at REAL NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_sessions_graph_name
                    ON sessions(graph_name)
                    """
                )
        finally:
            conn.close()

    def save(self, session_id: str, snapshot: Dict[str, Any]) -> None:
        """Insert or replace the snapshot of a session."""
        graph_name = (snapshot.get("graph") or {}).get("name", "")
        payload = json.dumps(snapshot)
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO sessions
                    (session_id, graph_name, snapshot_json, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (session_id, graph_name, payload, time.time()),
                )
        finally:
            conn.close()

    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT snapshot_json FROM sessions WHERE session_id = ?",
                (session_id,),
            ).fetchone()
        finally:
            conn.close()
        if not row:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as exc:
            logger.warning("Corrupted snapshot payload", session_id=session_id, error=str(exc))
            return None

    def delete(self, session_id: str) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute("DELETE FROM sessions WHERE session_id = ?", (session_id,))
        finally:
            conn.close()

    def list_sessions(self, graph_name: Optional[str] = None) -> List[str]:
        conn = self._connect()
        try:
            if graph_name is None:
                rows = conn.execute(
                    "SELECT session_id FROM sessions ORDER BY updated_at ASC"
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT session_id FROM sessions
                    WHERE graph_name = ?
                    ORDER BY updated_at ASC
                    """,
                    (graph_name,),
                ).fetchall()
            return [row[0] for row in rows]
        finally:
            conn.close()

    def count(self) -> int:
        conn = self._connect()
        try:
            row = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()
            return int(row[0]) if row else 0
        finally:
            conn.close()

    def clear(self) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute("DELETE FROM sessions")
        finally:
            conn.close()


def create_persistence(backend: Optional[str] = None):
    """Build the adapter named by ``persistence.backend``."""
    backend = backend or settings.get_nested("persistence.backend", "memory")
    if backend == "sqlite":
        return SQLiteSnapshotStore()
    if backend == "memory":
        return InMemoryPersistence()
    raise ValueError(f"Unknown persistence backend '{backend}'")
