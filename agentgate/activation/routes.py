"""
Session API Routes

FastAPI router for activating, deactivating and inspecting agent sessions.
"""

import logging
from typing import Dict, List, Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ..agents.models import ActivationContext
from .manager import ActivationManager

logger = logging.getLogger("agentgate.activation.routes")


class ActivateRequest(BaseModel):
    """Request to activate an agent."""
    agent_id: str
    owner: str = Field(default="api", description="Owner context, e.g. an IDE window id")
    tags: List[str] = Field(default_factory=list, description="Role tags used for specificity")
    metadata: Dict[str, Any] = Field(default_factory=dict)


def create_session_router(manager: ActivationManager) -> APIRouter:
    """Create FastAPI router for session operations."""

    router = APIRouter(prefix="/v1/sessions", tags=["sessions"])

    @router.get("")
    def list_sessions():
        """List live sessions."""
        sessions = manager.list_active()
        return {
            "sessions": [s.model_dump(mode="json") for s in sessions],
            "count": len(sessions),
            "max_active_sessions": manager.max_active_sessions,
        }

    @router.post("", status_code=201)
    def activate(request: ActivateRequest):
        """
        Activate an agent.

        Returns the existing session when the agent is already live.
        Missing dependencies are listed in degraded_capabilities.
        """
        context = ActivationContext(owner=request.owner, tags=request.tags, metadata=request.metadata)
        handle = manager.activate_agent(request.agent_id, context)
        return {
            "status": "reused" if handle.reused else "activated",
            "session": handle.model_dump(mode="json"),
        }

    @router.delete("/{agent_id}")
    def deactivate(agent_id: str):
        """Deactivate an agent's session."""
        ack = manager.deactivate_agent(agent_id)
        return {"status": "deactivated", **ack.model_dump(mode="json")}

    @router.post("/{agent_id}/touch")
    def touch(agent_id: str):
        """Record activity on a session."""
        return manager.touch(agent_id).model_dump(mode="json")

    @router.post("/cleanup")
    def cleanup():
        """Run the expiry sweep now."""
        expired = manager.cleanup_expired_sessions()
        return {"expired": expired, "count": len(expired)}

    return router
