"""
AgentGate Server

FastAPI application exposing the registry and activation API.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .activation.routes import create_session_router
from .agents.routes import create_agent_router
from .config import GateConfig, load_config
from .errors import (
    ActivationFailedError, AgentGateError, ConflictError, InvalidTransitionError,
    NotFoundError, ResourceExhaustedError, StoreUnavailableError, ValidationError,
)
from .runtime import AgentGate

logger = logging.getLogger("agentgate.server")


# =============================================================================
# Error mapping
# =============================================================================

def error_status(exc: AgentGateError) -> int:
    """HTTP status for a domain error."""
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, ResourceExhaustedError):
        return 429
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, StoreUnavailableError):
        return 503
    if isinstance(exc, InvalidTransitionError):
        return 400
    return 500


def error_body(exc: AgentGateError) -> dict:
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ConflictError):
        body["agent_id"] = exc.agent_id
        body["conflicting_ids"] = exc.conflicting_ids
    elif isinstance(exc, ResourceExhaustedError):
        body["ceiling"] = exc.ceiling
        body["active_ids"] = exc.active_ids
    elif getattr(exc, "agent_id", None):
        body["agent_id"] = exc.agent_id
    return body


# =============================================================================
# Application Factory
# =============================================================================

def create_app(config: GateConfig = None, gate: AgentGate = None) -> FastAPI:
    """Create FastAPI application."""

    gate = gate or AgentGate(config)
    config = gate.config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        logger.info("AgentGate starting...")
        owned = not gate.started
        if owned:
            gate.start()

        yield

        logger.info("AgentGate shutting down...")
        if owned:
            gate.shutdown()

    app = FastAPI(
        title="AgentGate",
        description="Agent registration and activation service",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.gate = gate
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AgentGateError)
    async def handle_gate_error(request: Request, exc: AgentGateError):
        status = error_status(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status, content=error_body(exc))

    app.include_router(create_agent_router(gate.registry))
    app.include_router(create_session_router(gate.manager))

    # =========================================================================
    # Routes
    # =========================================================================

    @app.get("/")
    def root():
        """Health check and service info."""
        return {
            "service": "AgentGate",
            "version": __version__,
            "status": "running",
            "agents": gate.registry.agent_count,
            "active_sessions": gate.manager.active_count,
            "audit_enabled": gate.audit is not None,
        }

    @app.get("/health")
    async def health():
        """Health check."""
        return {"status": "healthy"}

    @app.get("/status")
    def status():
        """Registry, session and audit summary."""
        return gate.status()

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    @app.get("/audit")
    def query_audit(
        entity_id: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 100,
    ):
        """Query audit log."""
        if not gate.audit:
            raise HTTPException(status_code=503, detail="Audit trail not enabled")

        entries = gate.audit.query(entity_id=entity_id, event_type=event_type, limit=limit)
        return {
            "count": len(entries),
            "entries": [e.to_dict() for e in entries],
        }

    @app.get("/audit/verify")
    def verify_audit():
        """Verify audit chain integrity."""
        if not gate.audit:
            raise HTTPException(status_code=503, detail="Audit trail not enabled")

        return gate.audit.verify_chain().to_dict()

    return app


# =============================================================================
# Main
# =============================================================================

def main(config_path: str = None):
    """Run the AgentGate server."""
    import uvicorn

    config = load_config(config_path) if config_path else GateConfig()
    logging.basicConfig(
        level=getattr(logging, config.logging.level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app(config)

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
