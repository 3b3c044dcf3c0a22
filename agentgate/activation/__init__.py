"""Agent activation: sessions, conflict resolution and persistence."""

from .session import (
    Session, SessionSnapshot, SessionHandle, SessionState,
    AgentActivationState, DeactivationAck,
)
from .conflicts import ConflictPolicy, resolve_conflicts, specificity_score
from .storage import SessionStore, MemorySessionStore, SQLiteSessionStore, create_session_store
from .monitor import ActivationMonitor, categorize_error
from .manager import ActivationManager

__all__ = [
    "Session",
    "SessionSnapshot",
    "SessionHandle",
    "SessionState",
    "AgentActivationState",
    "DeactivationAck",
    "ConflictPolicy",
    "resolve_conflicts",
    "specificity_score",
    "SessionStore",
    "MemorySessionStore",
    "SQLiteSessionStore",
    "create_session_store",
    "ActivationMonitor",
    "categorize_error",
    "ActivationManager",
]
