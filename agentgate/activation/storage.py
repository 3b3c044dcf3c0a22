"""
Session Storage

Durable storage for session snapshots so live sessions survive restarts.
SQLite by default; an in-memory backend exists for tests and embedding.
"""

import sqlite3
import logging
from pathlib import Path
from datetime import datetime
from typing import Dict, List
from contextlib import contextmanager

from ..errors import StoreUnavailableError
from .session import SessionSnapshot, SessionState

logger = logging.getLogger("agentgate.activation.storage")


class SessionStore:
    """Persistence interface for session snapshots."""

    def save(self, snapshot: SessionSnapshot) -> None:
        raise NotImplementedError

    def load_all(self) -> List[SessionSnapshot]:
        raise NotImplementedError

    def delete(self, session_id: str) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        pass


class MemorySessionStore(SessionStore):
    """In-memory store. Survives manager re-creation, not process exit."""

    def __init__(self):
        self._snapshots: Dict[str, SessionSnapshot] = {}

    def save(self, snapshot: SessionSnapshot) -> None:
        self._snapshots[snapshot.session_id] = SessionSnapshot.from_dict(snapshot.to_dict())

    def load_all(self) -> List[SessionSnapshot]:
        return [
            SessionSnapshot.from_dict(s.to_dict())
            for s in sorted(self._snapshots.values(), key=lambda s: s.created_at)
        ]

    def delete(self, session_id: str) -> bool:
        return self._snapshots.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._snapshots)


class SQLiteSessionStore(SessionStore):
    """
    SQLite storage for session snapshots.

    An unusable database path does not fail construction: the store logs a
    warning and retries opening on every operation, raising
    StoreUnavailableError until the database can be created.
    """

    def __init__(self, db_path: str = "./.agentgate/sessions.db"):
        self.db_path = Path(db_path)
        self._ready = False
        try:
            self._ensure_ready()
        except StoreUnavailableError as e:
            logger.warning(f"{e}; will retry on next use")

    @property
    def available(self) -> bool:
        return self._ready

    def _ensure_ready(self) -> None:
        if self._ready:
            return
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailableError(f"Session store at {self.db_path} unavailable: {e}") from e
        self._init_db()
        self._ready = True

    @contextmanager
    def _conn(self, initializing: bool = False):
        """Context manager for database connections."""
        if not initializing:
            self._ensure_ready()
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open session store {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreUnavailableError(f"Session store error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._conn(initializing=True) as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    agent_id TEXT NOT NULL,
                    owner_context TEXT,
                    created_at TEXT NOT NULL,
                    last_activity_at TEXT NOT NULL,
                    state TEXT NOT NULL,
                    timeout_seconds REAL NOT NULL,
                    role_group TEXT,
                    expansion_pack_id TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_sessions_agent ON sessions(agent_id);
            """)
        logger.info(f"Session storage initialized at {self.db_path}")

    def save(self, snapshot: SessionSnapshot) -> None:
        """Insert or replace a snapshot."""
        with self._conn() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO sessions
                (session_id, agent_id, owner_context, created_at, last_activity_at,
                 state, timeout_seconds, role_group, expansion_pack_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                snapshot.session_id,
                snapshot.agent_id,
                snapshot.owner_context,
                snapshot.created_at.isoformat(),
                snapshot.last_activity_at.isoformat(),
                snapshot.state.value,
                snapshot.timeout_seconds,
                snapshot.role_group,
                snapshot.expansion_pack_id,
            ))

    def load_all(self) -> List[SessionSnapshot]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM sessions ORDER BY created_at ASC"
            ).fetchall()

            return [
                SessionSnapshot(
                    session_id=row["session_id"],
                    agent_id=row["agent_id"],
                    owner_context=row["owner_context"] or "",
                    created_at=datetime.fromisoformat(row["created_at"]),
                    last_activity_at=datetime.fromisoformat(row["last_activity_at"]),
                    state=SessionState(row["state"]),
                    timeout_seconds=row["timeout_seconds"],
                    role_group=row["role_group"],
                    expansion_pack_id=row["expansion_pack_id"],
                )
                for row in rows
            ]

    def delete(self, session_id: str) -> bool:
        with self._conn() as conn:
            result = conn.execute("DELETE FROM sessions WHERE session_id = ?", (session_id,))
            return result.rowcount > 0

    def count(self) -> int:
        with self._conn() as conn:
            return conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]


def create_session_store(storage: str = "sqlite", path: str = "./.agentgate/sessions.db") -> SessionStore:
    """Build a store from configuration values."""
    if storage == "sqlite":
        return SQLiteSessionStore(db_path=path)
    if storage == "memory":
        return MemorySessionStore()
    raise ValueError(f"Unknown session storage: {storage}")
