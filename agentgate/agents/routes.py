"""
Agent Registry API Routes

FastAPI router for listing, inspecting, discovering and removing agents.
Domain errors propagate to the exception handlers installed by the app.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

from .models import RegistrationState
from .registry import AgentRegistry

logger = logging.getLogger("agentgate.agents.routes")


def create_agent_router(registry: AgentRegistry) -> APIRouter:
    """Create FastAPI router for agent operations."""

    router = APIRouter(prefix="/v1/agents", tags=["agents"])

    @router.get("")
    def list_agents(
        state: Optional[RegistrationState] = Query(default=None),
        limit: int = Query(default=100, le=1000),
        offset: int = Query(default=0, ge=0),
    ):
        """List known agents, including failed ones."""
        agents = registry.list(state=state)
        page = agents[offset:offset + limit]
        return {
            "agents": [a.to_dict() for a in page],
            "count": len(page),
            "total": len(agents),
            "limit": limit,
            "offset": offset,
        }

    @router.get("/stats")
    def agent_stats():
        """Counts by registration state and source kind."""
        return registry.statistics().model_dump()

    # Plain def: retries sleep, so this runs in the threadpool
    @router.post("/discover")
    def discover_agents():
        """Re-scan the catalog and register what it reports."""
        stats = registry.discover_and_register()
        logger.info(f"Discovery via API: {stats.registered} registered, {stats.failed} failed")
        return {"status": "discovered", "stats": stats.model_dump()}

    @router.get("/{agent_id}")
    def get_agent(agent_id: str):
        """Get an agent descriptor by ID."""
        return registry.get_descriptor(agent_id).to_dict()

    @router.delete("/{agent_id}")
    def unregister_agent(agent_id: str, force: bool = Query(default=False)):
        """Remove an agent. Refused while it has a live session unless forced."""
        registry.unregister(agent_id, force=force)
        return {"status": "unregistered", "agent_id": agent_id, "forced": force}

    return router
