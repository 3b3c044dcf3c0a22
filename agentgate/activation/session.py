"""
Activation Sessions

Runtime record of one activated agent bound to an owner context, its
persisted snapshot form, and the handle returned to callers.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, List, Any, Tuple

from pydantic import BaseModel, Field

from ..errors import InvalidTransitionError


class SessionState(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    EXPIRED = "expired"
    TERMINATED = "terminated"


LIVE_STATES = (SessionState.ACTIVE, SessionState.IDLE)

SESSION_TRANSITIONS = {
    SessionState.ACTIVE: {SessionState.IDLE, SessionState.TERMINATED},
    SessionState.IDLE: {SessionState.ACTIVE, SessionState.EXPIRED, SessionState.TERMINATED},
    SessionState.EXPIRED: {SessionState.TERMINATED},
    SessionState.TERMINATED: set(),
}


class AgentActivationState(str, Enum):
    """Per-agent activation state machine."""
    NOT_ACTIVE = "not-active"
    ACTIVATING = "activating"
    ACTIVE = "active"
    IDLE = "idle"
    DEACTIVATING = "deactivating"
    ACTIVATION_FAILED = "activation-failed"


AGENT_TRANSITIONS = {
    AgentActivationState.NOT_ACTIVE: {AgentActivationState.ACTIVATING, AgentActivationState.IDLE},
    AgentActivationState.ACTIVATING: {AgentActivationState.ACTIVE, AgentActivationState.ACTIVATION_FAILED},
    AgentActivationState.ACTIVE: {AgentActivationState.IDLE, AgentActivationState.DEACTIVATING},
    AgentActivationState.IDLE: {AgentActivationState.ACTIVE, AgentActivationState.DEACTIVATING},
    AgentActivationState.DEACTIVATING: {AgentActivationState.NOT_ACTIVE},
    AgentActivationState.ACTIVATION_FAILED: {AgentActivationState.NOT_ACTIVE},
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    return f"sess_{uuid.uuid4().hex}"


@dataclass
class SessionSnapshot:
    """Persisted form of a session."""
    session_id: str
    agent_id: str
    owner_context: str
    created_at: datetime
    last_activity_at: datetime
    state: SessionState
    timeout_seconds: float = 1800.0
    role_group: Optional[str] = None
    expansion_pack_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "agent_id": self.agent_id,
            "owner_context": self.owner_context,
            "created_at": self.created_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "state": self.state.value,
            "timeout_seconds": self.timeout_seconds,
            "role_group": self.role_group,
            "expansion_pack_id": self.expansion_pack_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionSnapshot":
        return cls(
            session_id=data["session_id"],
            agent_id=data["agent_id"],
            owner_context=data.get("owner_context") or "",
            created_at=datetime.fromisoformat(data["created_at"]),
            last_activity_at=datetime.fromisoformat(data["last_activity_at"]),
            state=SessionState(data["state"]),
            timeout_seconds=float(data.get("timeout_seconds") or 1800.0),
            role_group=data.get("role_group"),
            expansion_pack_id=data.get("expansion_pack_id"),
        )


@dataclass
class Session:
    """A live (or just-ended) activation of one agent."""
    session_id: str
    agent_id: str
    owner_context: str
    created_at: datetime
    last_activity_at: datetime
    timeout_seconds: float
    state: SessionState = SessionState.ACTIVE
    role_group: Optional[str] = None
    expansion_pack_id: Optional[str] = None
    instance_token: Optional[str] = None
    degraded_capabilities: List[str] = field(default_factory=list)

    @property
    def slot(self) -> Tuple[Optional[str], Optional[str]]:
        """(role group, expansion pack id) index key."""
        return (self.role_group, self.expansion_pack_id)

    @property
    def is_live(self) -> bool:
        return self.state in LIVE_STATES

    def transition(self, new_state: SessionState) -> None:
        if new_state == self.state:
            return
        if new_state not in SESSION_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Session {self.session_id}: {self.state.value} -> {new_state.value} not allowed"
            )
        self.state = new_state

    def touch(self, now: datetime) -> None:
        """Record activity; an idle session becomes active again."""
        self.last_activity_at = now
        if self.state == SessionState.IDLE:
            self.transition(SessionState.ACTIVE)

    def idle_seconds(self, now: datetime) -> float:
        return (now - self.last_activity_at).total_seconds()

    def is_expired(self, now: datetime) -> bool:
        return self.idle_seconds(now) > self.timeout_seconds

    def to_snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            agent_id=self.agent_id,
            owner_context=self.owner_context,
            created_at=self.created_at,
            last_activity_at=self.last_activity_at,
            state=self.state,
            timeout_seconds=self.timeout_seconds,
            role_group=self.role_group,
            expansion_pack_id=self.expansion_pack_id,
        )

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "Session":
        return cls(
            session_id=snapshot.session_id,
            agent_id=snapshot.agent_id,
            owner_context=snapshot.owner_context,
            created_at=snapshot.created_at,
            last_activity_at=snapshot.last_activity_at,
            timeout_seconds=snapshot.timeout_seconds,
            state=snapshot.state,
            role_group=snapshot.role_group,
            expansion_pack_id=snapshot.expansion_pack_id,
        )

    def to_handle(self, reused: bool = False) -> "SessionHandle":
        return SessionHandle(
            session_id=self.session_id,
            agent_id=self.agent_id,
            degraded_capabilities=list(self.degraded_capabilities),
            state=self.state,
            owner_context=self.owner_context,
            created_at=self.created_at,
            last_activity_at=self.last_activity_at,
            reused=reused,
        )


class SessionHandle(BaseModel):
    """What callers get back from an activation."""
    session_id: str
    agent_id: str
    degraded_capabilities: List[str] = Field(default_factory=list)
    state: SessionState = SessionState.ACTIVE
    owner_context: str = ""
    created_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    reused: bool = False

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_capabilities)


class DeactivationAck(BaseModel):
    """Acknowledgement of a deactivation."""
    agent_id: str
    session_id: str
    state: SessionState = SessionState.TERMINATED
    reason: str = "deactivated"
