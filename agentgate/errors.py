"""
AgentGate Errors

Exception hierarchy shared by the registry, the activation manager
and the HTTP/CLI front ends.
"""

from typing import List, Optional


class AgentGateError(Exception):
    """Base class for all AgentGate errors."""


class ValidationError(AgentGateError):
    """A discovered agent definition is malformed."""

    def __init__(self, message: str, agent_id: Optional[str] = None):
        super().__init__(message)
        self.agent_id = agent_id


class RegistrationError(AgentGateError):
    """Creating the activation handler for an agent failed."""

    def __init__(self, message: str, agent_id: Optional[str] = None):
        super().__init__(message)
        self.agent_id = agent_id


class NotFoundError(AgentGateError, KeyError):
    """Unknown agent id, or no live session for it."""

    def __init__(self, message: str, agent_id: Optional[str] = None):
        super().__init__(message)
        self.agent_id = agent_id

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0]) if self.args else ""


class ConflictError(AgentGateError):
    """
    Activation blocked by a role/pack conflict, or an unregister blocked
    by a live session.

    Carries every competing id so callers can ask for an explicit override.
    """

    def __init__(self, message: str, agent_id: str, conflicting_ids: List[str]):
        super().__init__(message)
        self.agent_id = agent_id
        self.conflicting_ids = list(conflicting_ids)

    @property
    def ids(self) -> List[str]:
        return [self.agent_id] + self.conflicting_ids


class ResourceExhaustedError(AgentGateError):
    """The concurrency ceiling is reached."""

    def __init__(self, message: str, ceiling: int, active_ids: List[str] = None):
        super().__init__(message)
        self.ceiling = ceiling
        self.active_ids = list(active_ids or [])


class ActivationFailedError(AgentGateError):
    """The activation handler or the commit step failed."""

    def __init__(self, message: str, agent_id: Optional[str] = None):
        super().__init__(message)
        self.agent_id = agent_id


class ActivationCancelledError(ActivationFailedError):
    """An in-flight activation was cancelled before commit."""


class InvalidTransitionError(AgentGateError):
    """An agent activation state change that the state machine forbids."""


class StoreUnavailableError(AgentGateError):
    """The session persistence store cannot be reached."""
