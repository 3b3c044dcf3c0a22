"""
AgentGate Runtime

Wires catalog, resource loader, session store, event bus, audit trail,
registry and activation manager from configuration, and owns the
start/shutdown lifecycle including the background expiry sweeper.
"""

import logging
import threading
from typing import Optional, List, Dict, Any

from .agents.catalog import CatalogSource, DirectoryCatalogSource
from .agents.models import ActivationContext, RegistryStats
from .agents.registry import AgentRegistry, HandlerFactory
from .agents.resources import FileSystemResourceLoader, ResourceLoader
from .activation.conflicts import ConflictPolicy
from .activation.manager import ActivationManager
from .activation.session import DeactivationAck, SessionHandle
from .activation.storage import SessionStore, create_session_store
from .audit.trail import AuditTrail
from .config import GateConfig
from .events import EventBus

logger = logging.getLogger("agentgate.runtime")


class AgentGate:
    """
    Registry and activation runtime.

    Components may be injected (tests, embedding); anything not given is
    built from the configuration.
    """

    def __init__(
        self,
        config: GateConfig = None,
        catalog: CatalogSource = None,
        store: SessionStore = None,
        resource_loader: ResourceLoader = None,
        audit: AuditTrail = None,
        handler_factory: HandlerFactory = None,
        clock=None,
        sleep=None,
    ):
        self.config = config or GateConfig()
        cfg = self.config

        self.events = EventBus()

        self.audit = audit
        if self.audit is None and cfg.audit.enabled:
            self.audit = AuditTrail(storage=cfg.audit.storage, path=cfg.audit.path)
        if self.audit is not None:
            self.audit.attach(self.events)

        self.catalog = catalog or DirectoryCatalogSource(
            root_path=cfg.catalog.root_path,
            agent_dirs=cfg.catalog.agent_dirs,
        )
        self.resource_loader = resource_loader or FileSystemResourceLoader(
            root_path=cfg.catalog.root_path,
        )
        self.store = store or create_session_store(cfg.store.storage, cfg.store.path)

        self.registry = AgentRegistry(
            catalog=self.catalog,
            events=self.events,
            handler_factory=handler_factory,
            retry_attempts=cfg.registry.retry_attempts,
            retry_base_delay=cfg.registry.retry_base_delay,
            sleep=sleep,
        )
        self.manager = ActivationManager(
            registry=self.registry,
            store=self.store,
            resource_loader=self.resource_loader,
            events=self.events,
            max_active_sessions=cfg.activation.max_active_sessions,
            session_timeout_seconds=cfg.activation.session_timeout_seconds,
            idle_after_seconds=cfg.activation.idle_after_seconds,
            conflict_policy=ConflictPolicy.from_lists(
                cfg.activation.exempt_role_groups,
                cfg.activation.pack_exclusive_groups,
            ),
            clock=clock,
        )

        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        self._started = False

    @classmethod
    def from_config(cls, config: GateConfig, **overrides) -> "AgentGate":
        return cls(config=config, **overrides)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> RegistryStats:
        """Register all agents, restore persisted sessions, start the sweeper."""
        stats = self.register_all()
        self.manager.restore()

        interval = self.config.activation.cleanup_interval_seconds
        if interval and interval > 0:
            self._stop.clear()
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                args=(interval,),
                name="agentgate-sweeper",
                daemon=True,
            )
            self._sweeper.start()

        self._started = True
        logger.info(
            f"AgentGate started: {stats.registered} agents registered, "
            f"{self.manager.active_count} sessions restored"
        )
        return stats

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                expired = self.manager.cleanup_expired_sessions()
                if expired:
                    logger.info(f"Expired {len(expired)} idle sessions")
            except Exception:
                logger.exception("Session sweep failed")

    def shutdown(self) -> None:
        """Stop the sweeper, cancel registry retries and flush sessions."""
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None
        self.registry.shutdown()
        self.manager.shutdown()
        self.store.close()
        if self.audit is not None:
            self.audit.close()
        self._started = False
        logger.info("AgentGate shut down")

    @property
    def started(self) -> bool:
        return self._started

    def __enter__(self) -> "AgentGate":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # =========================================================================
    # Caller API
    # =========================================================================

    def register_all(self) -> RegistryStats:
        return self.registry.discover_and_register()

    def activate(
        self,
        agent_id: str,
        context: ActivationContext = None,
        cancel: threading.Event = None,
    ) -> SessionHandle:
        return self.manager.activate_agent(agent_id, context, cancel=cancel)

    def deactivate(self, agent_id: str) -> DeactivationAck:
        return self.manager.deactivate_agent(agent_id)

    def touch(self, agent_id: str) -> SessionHandle:
        return self.manager.touch(agent_id)

    def list_active(self) -> List[SessionHandle]:
        return self.manager.list_active()

    def stats(self) -> RegistryStats:
        return self.registry.statistics()

    def cleanup(self) -> List[str]:
        return self.manager.cleanup_expired_sessions()

    def status(self) -> Dict[str, Any]:
        """Combined registry/session/audit summary."""
        return {
            "registry": self.registry.statistics().model_dump(),
            "sessions": self.manager.statistics(),
            "activations": self.manager.monitor.summary(),
            "audit": self.audit.stats if self.audit is not None else None,
        }
