"""
AgentGate Agent Registry

Canonical map of agent id -> descriptor. Pulls candidates from a catalog
source, validates them, and registers them with bounded retry. Failures
are recorded per agent and never abort the batch.
"""

import re
import uuid
import logging
import threading
from typing import Optional, List, Dict, Any, Callable

from ..errors import ConflictError, NotFoundError, RegistrationError, ValidationError
from ..events import EventBus, EventType
from .catalog import CatalogSource
from .models import (
    ActivationContext, ActivationHandler, AgentDescriptor,
    RegisteredAgent, RegistrationState, RegistryStats, SourceKind,
)

logger = logging.getLogger("agentgate.registry")

AGENT_ID_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")

HandlerFactory = Callable[[AgentDescriptor], ActivationHandler]


def default_handler_factory(descriptor: AgentDescriptor) -> ActivationHandler:
    """Handler that mints an opaque instance token per activation."""
    agent_id = descriptor.id

    def activate(context: ActivationContext) -> str:
        return f"{agent_id}@{uuid.uuid4().hex[:12]}"

    return activate


class AgentRegistry:
    """
    AgentGate Agent Registry

    Owns descriptors and registered agents. All operations are synchronous;
    events are dispatched in-line on the shared event bus.
    """

    def __init__(
        self,
        catalog: CatalogSource,
        events: EventBus = None,
        handler_factory: HandlerFactory = None,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.2,
        sleep: Callable[[float], None] = None,
    ):
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        self.catalog = catalog
        self.events = events or EventBus()
        self.handler_factory = handler_factory or default_handler_factory
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay

        self._descriptors: Dict[str, AgentDescriptor] = {}
        self._agents: Dict[str, RegisteredAgent] = {}
        # Entries that could not be keyed by id (duplicates), keyed by source path
        self._rejected: Dict[str, AgentDescriptor] = {}

        self._shutdown = threading.Event()
        self._sleep = sleep or self._interruptible_sleep
        self._has_live_session: Callable[[str], bool] = lambda agent_id: False
        self._session_release: Optional[Callable[[str], Any]] = None

        logger.info(
            f"Agent Registry initialized (retry: {retry_attempts} attempts, "
            f"base delay {retry_base_delay}s)"
        )

    def attach_session_hooks(
        self,
        has_live_session: Callable[[str], bool],
        release: Callable[[str], Any] = None,
    ) -> None:
        """
        Let the registry ask whether an agent has a live session, and end
        that session when the agent is force-unregistered.
        """
        self._has_live_session = has_live_session
        self._session_release = release

    # =========================================================================
    # Discovery
    # =========================================================================

    def discover_and_register(self) -> RegistryStats:
        """
        Pull candidates from the catalog and register each valid one.

        Agents the catalog no longer reports are removed, unless they still
        have a live session.
        """
        candidates = self.catalog.discover()
        logger.info(f"Found {len(candidates)} agent candidates to register")

        self._rejected = {}
        seen: Dict[str, AgentDescriptor] = {}

        for raw in candidates:
            descriptor = AgentDescriptor.from_raw(raw)
            for warning in descriptor.validation_warnings:
                logger.debug(f"{descriptor.id or raw.source_path}: {warning}")

            try:
                self._validate(descriptor, seen)
            except ValidationError as e:
                self._reject(descriptor, str(e), seen)
                continue

            seen[descriptor.id] = descriptor
            self._adopt(descriptor)
            self.register_with_retry(descriptor)

        for agent_id in list(self._descriptors):
            if agent_id in seen:
                continue
            if self._has_live_session(agent_id):
                logger.warning(f"Agent {agent_id} no longer in catalog but has a live session; keeping it")
                continue
            self._remove(agent_id)
            logger.info(f"Removed agent no longer in catalog: {agent_id}")

        stats = self.statistics()
        logger.info(
            f"Registry holds {stats.registered} registered agents "
            f"({stats.failed} failed)"
        )
        return stats

    def _validate(self, descriptor: AgentDescriptor, seen: Dict[str, AgentDescriptor]) -> None:
        if not descriptor.id:
            raise ValidationError("missing identifier")
        if not AGENT_ID_RE.match(descriptor.id):
            raise ValidationError(f"malformed identifier '{descriptor.id}'", descriptor.id)
        if descriptor.id in seen:
            raise ValidationError(
                f"duplicate identifier '{descriptor.id}' "
                f"(already provided by {seen[descriptor.id].source_path})",
                descriptor.id,
            )
        if not descriptor.display_name.strip():
            raise ValidationError("missing display name", descriptor.id)
        if not descriptor.role_group:
            raise ValidationError("missing role group", descriptor.id)

    def _reject(self, descriptor: AgentDescriptor, reason: str, seen: Dict[str, AgentDescriptor]) -> None:
        if descriptor.id and descriptor.id not in seen and self._keep_live(descriptor.id, reason):
            seen[descriptor.id] = self._descriptors[descriptor.id]
            return

        descriptor.mark_failed(reason)
        logger.warning(f"Invalid agent definition {descriptor.id or descriptor.source_path}: {reason}")

        # A duplicate must not overwrite the valid entry it collides with
        if descriptor.id and descriptor.id not in seen and AGENT_ID_RE.match(descriptor.id):
            seen[descriptor.id] = descriptor
            self._agents.pop(descriptor.id, None)
            self._descriptors[descriptor.id] = descriptor
        else:
            key = descriptor.source_path or descriptor.id or f"unnamed-{len(self._rejected)}"
            self._rejected[key] = descriptor

        self.events.emit(
            EventType.REGISTRATION_FAILED,
            descriptor.id or key_for(descriptor),
            reason=reason,
            validation=True,
        )

    def _keep_live(self, agent_id: str, reason: str) -> bool:
        """Keep the current registration of an agent whose session is live."""
        if agent_id not in self._agents or not self._has_live_session(agent_id):
            return False
        note = f"re-validation failed: {reason}"
        current = self._descriptors[agent_id]
        if note not in current.validation_warnings:
            current.validation_warnings.append(note)
        logger.warning(
            f"Agent {agent_id} has a live session; keeping its registration "
            f"despite invalid definition: {reason}"
        )
        return True

    def _adopt(self, descriptor: AgentDescriptor) -> None:
        """Store a fresh descriptor, replacing the previous one for its id."""
        previous = self._descriptors.get(descriptor.id)
        if previous and previous.content_hash == descriptor.content_hash and descriptor.id in self._agents:
            # Unchanged and already registered: keep the existing handler
            descriptor.state = previous.state
            descriptor.registered_at = previous.registered_at
        self._descriptors[descriptor.id] = descriptor

    # =========================================================================
    # Registration
    # =========================================================================

    def register(self, descriptor: AgentDescriptor) -> RegisteredAgent:
        """
        Single registration attempt: build the activation handler.

        Raises RegistrationError on failure.
        """
        try:
            handler = self.handler_factory(descriptor)
        except Exception as e:
            raise RegistrationError(f"handler creation failed: {e}", descriptor.id) from e
        if not callable(handler):
            raise RegistrationError("handler factory returned a non-callable", descriptor.id)

        agent = RegisteredAgent(descriptor=descriptor, activation_handler=handler)
        self._descriptors[descriptor.id] = descriptor
        self._agents[descriptor.id] = agent
        descriptor.mark_registered()
        return agent

    def register_with_retry(self, descriptor: AgentDescriptor) -> Optional[RegisteredAgent]:
        """
        Register with exponential backoff.

        Delay before attempt n (n >= 2) is base * 2 ** (n - 2). The wait is
        cut short on shutdown.
        """
        if descriptor.state == RegistrationState.REGISTERED and descriptor.id in self._agents:
            self._agents[descriptor.id].descriptor = descriptor
            return self._agents[descriptor.id]

        descriptor.state = RegistrationState.PENDING
        descriptor.retry_count = 0
        last_error: Optional[Exception] = None

        for attempt in range(1, self.retry_attempts + 1):
            if attempt > 1:
                delay = self.retry_base_delay * (2 ** (attempt - 2))
                logger.info(
                    f"Retry attempt {attempt}/{self.retry_attempts} for agent "
                    f"{descriptor.id} in {delay:.2f}s"
                )
                self._sleep(delay)
                if self._shutdown.is_set():
                    last_error = RegistrationError("registration cancelled by shutdown", descriptor.id)
                    break
            try:
                agent = self.register(descriptor)
            except RegistrationError as e:
                descriptor.retry_count = attempt
                last_error = e
                logger.warning(f"Registration attempt {attempt} failed for {descriptor.id}: {e}")
                continue

            logger.info(f"Agent registered: {descriptor.id} ({descriptor.display_name})")
            self.events.emit(
                EventType.REGISTERED,
                descriptor.id,
                source=descriptor.source_kind.value,
                expansion_pack_id=descriptor.expansion_pack_id,
                retries=descriptor.retry_count,
            )
            return agent

        reason = f"registration failed after {descriptor.retry_count} attempts: {last_error}"
        descriptor.mark_failed(reason)
        self._agents.pop(descriptor.id, None)
        logger.error(f"All retry attempts failed for agent {descriptor.id}: {last_error}")
        self.events.emit(EventType.REGISTRATION_FAILED, descriptor.id, reason=reason)
        return None

    def _interruptible_sleep(self, seconds: float) -> None:
        self._shutdown.wait(seconds)

    # =========================================================================
    # Lookup
    # =========================================================================

    def get_descriptor(self, agent_id: str) -> AgentDescriptor:
        """Return the descriptor for an id, or raise NotFoundError."""
        descriptor = self._descriptors.get(agent_id)
        if descriptor is None:
            raise NotFoundError(f"Agent '{agent_id}' not found", agent_id)
        return descriptor

    def get_registered(self, agent_id: str) -> RegisteredAgent:
        """Return a Registered agent, or raise NotFoundError."""
        agent = self._agents.get(agent_id)
        if agent is None or agent.descriptor.state != RegistrationState.REGISTERED:
            raise NotFoundError(f"Agent '{agent_id}' is not registered", agent_id)
        return agent

    def is_registered(self, agent_id: str) -> bool:
        agent = self._agents.get(agent_id)
        return agent is not None and agent.descriptor.state == RegistrationState.REGISTERED

    def list(self, state: RegistrationState = None) -> List[AgentDescriptor]:
        """List descriptors, optionally filtered by state."""
        descriptors = list(self._descriptors.values()) + list(self._rejected.values())
        if state is not None:
            descriptors = [d for d in descriptors if d.state == state]
        return sorted(descriptors, key=lambda d: (d.id, d.source_path or ""))

    def unregister(self, agent_id: str, force: bool = False) -> AgentDescriptor:
        """
        Remove an agent.

        Fails with ConflictError when the agent has a live session, unless
        force is set, in which case the session is released first.
        """
        descriptor = self.get_descriptor(agent_id)
        if self._has_live_session(agent_id):
            if not force:
                raise ConflictError(
                    f"Agent '{agent_id}' has an active session; deactivate it or force",
                    agent_id,
                    [],
                )
            if self._session_release is not None:
                self._session_release(agent_id)
        self._remove(agent_id)
        logger.info(f"Unregistered agent: {agent_id}{' (forced)' if force else ''}")
        return descriptor

    def _remove(self, agent_id: str) -> None:
        self._descriptors.pop(agent_id, None)
        self._agents.pop(agent_id, None)

    # =========================================================================
    # Stats / lifecycle
    # =========================================================================

    def statistics(self) -> RegistryStats:
        """Counts by state and source."""
        by_state = {s.value: 0 for s in RegistrationState}
        by_source = {s.value: 0 for s in SourceKind}
        failures: Dict[str, str] = {}
        descriptors = self.list()
        for d in descriptors:
            by_state[d.state.value] += 1
            by_source[d.source_kind.value] += 1
            if d.state == RegistrationState.FAILED:
                failures[d.id or key_for(d)] = d.failure_reason or "unknown"
        return RegistryStats(
            total=len(descriptors),
            by_state=by_state,
            by_source=by_source,
            failures=failures,
        )

    def shutdown(self) -> None:
        """Cancel any in-progress retry wait."""
        self._shutdown.set()

    @property
    def agent_count(self) -> int:
        """Number of registered agents."""
        return len(self._agents)


def key_for(descriptor: AgentDescriptor) -> str:
    return descriptor.source_path or descriptor.id or "unknown"
