"""
Activation Manager

Accepts activation and deactivation requests, resolves role/pack
conflicts, enforces the concurrency ceiling, and owns session lifecycle
including persistence, restoration and the idle-expiry sweep.

Every mutation of the active set happens under one re-entrant lock, so the
read-decide-write sequence of conflict resolution plus commit is atomic.
"""

import logging
import threading
from datetime import datetime
from typing import Optional, Dict, List, Any, Callable

from ..agents.models import ActivationContext, RegisteredAgent, ResourceLoadResult
from ..agents.registry import AgentRegistry
from ..agents.resources import ResourceLoader
from ..errors import (
    ActivationCancelledError, ActivationFailedError, ConflictError,
    InvalidTransitionError, NotFoundError, ResourceExhaustedError, StoreUnavailableError,
)
from ..events import EventBus, EventType
from .active_set import ActiveSet
from .conflicts import ConflictPolicy, resolve_conflicts
from .monitor import ActivationMonitor
from .session import (
    AGENT_TRANSITIONS, LIVE_STATES, AgentActivationState, DeactivationAck,
    Session, SessionHandle, SessionState, new_session_id, utcnow,
)
from .storage import SessionStore

logger = logging.getLogger("agentgate.activation")


class ActivationManager:
    """
    Activation Manager

    Per-agent state machine:
        NotActive -> Activating -> Active <-> Idle -> Deactivating -> NotActive
        Activating -> ActivationFailed -> NotActive
    """

    def __init__(
        self,
        registry: AgentRegistry,
        store: SessionStore,
        resource_loader: ResourceLoader = None,
        events: EventBus = None,
        max_active_sessions: int = 5,
        session_timeout_seconds: float = 1800.0,
        idle_after_seconds: float = 300.0,
        conflict_policy: ConflictPolicy = None,
        monitor: ActivationMonitor = None,
        clock: Callable[[], datetime] = None,
    ):
        if max_active_sessions < 1:
            raise ValueError("max_active_sessions must be at least 1")
        self.registry = registry
        self.store = store
        self.resource_loader = resource_loader
        self.events = events or registry.events
        self.max_active_sessions = max_active_sessions
        self.session_timeout_seconds = session_timeout_seconds
        self.idle_after_seconds = idle_after_seconds
        self.conflict_policy = conflict_policy or ConflictPolicy()
        self.monitor = monitor or ActivationMonitor()
        self._clock = clock or utcnow

        self._lock = threading.RLock()
        self._active = ActiveSet()
        self._states: Dict[str, AgentActivationState] = {}

        registry.attach_session_hooks(self.has_live_session, self.release_agent)

    # =========================================================================
    # State machine
    # =========================================================================

    def activation_state(self, agent_id: str) -> AgentActivationState:
        return self._states.get(agent_id, AgentActivationState.NOT_ACTIVE)

    def _set_state(self, agent_id: str, new_state: AgentActivationState) -> None:
        current = self.activation_state(agent_id)
        if new_state == current:
            return
        if new_state not in AGENT_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Agent {agent_id}: {current.value} -> {new_state.value} not allowed"
            )
        if new_state == AgentActivationState.NOT_ACTIVE:
            self._states.pop(agent_id, None)
        else:
            self._states[agent_id] = new_state

    # =========================================================================
    # Activation
    # =========================================================================

    def activate_agent(
        self,
        agent_id: str,
        context: ActivationContext = None,
        cancel: threading.Event = None,
    ) -> SessionHandle:
        """
        Activate an agent, or return its existing live session.

        Raises NotFoundError, ConflictError, ResourceExhaustedError,
        ActivationCancelledError or ActivationFailedError. Missing
        dependencies do not raise; they are listed on the handle.
        """
        started = self.monitor.start()
        try:
            handle = self._activate(agent_id, context or ActivationContext(), cancel)
        except Exception as e:
            self.monitor.record_failure(agent_id, e)
            raise
        self.monitor.record_success(agent_id, started, reused=handle.reused, at=self._clock())
        return handle

    def _activate(
        self,
        agent_id: str,
        context: ActivationContext,
        cancel: Optional[threading.Event],
    ) -> SessionHandle:
        with self._lock:
            agent = self.registry.get_registered(agent_id)

            existing = self._active.get(agent_id)
            if existing is not None:
                logger.info(f"Agent {agent_id} already active (session {existing.session_id})")
                self._touch_session(existing)
                return existing.to_handle(reused=True)

            self._set_state(agent_id, AgentActivationState.ACTIVATING)
            try:
                session = self._activate_new(agent, context, cancel)
            except Exception as e:
                self._set_state(agent_id, AgentActivationState.ACTIVATION_FAILED)
                logger.warning(f"Activation of {agent_id} failed: {e}")
                self._set_state(agent_id, AgentActivationState.NOT_ACTIVE)
                raise

            self._set_state(agent_id, AgentActivationState.ACTIVE)
            logger.info(
                f"Agent activated: {agent_id} (session {session.session_id}, "
                f"{len(self._active)}/{self.max_active_sessions} active)"
            )
            self.events.emit(
                EventType.ACTIVATED,
                agent_id,
                session_id=session.session_id,
                owner=session.owner_context,
                degraded_capabilities=list(session.degraded_capabilities),
            )
            return session.to_handle()

    def _activate_new(
        self,
        agent: RegisteredAgent,
        context: ActivationContext,
        cancel: Optional[threading.Event],
    ) -> Session:
        descriptor = agent.descriptor
        agent_id = descriptor.id

        # Conflict check: decide only, displace at commit
        decision = resolve_conflicts(descriptor, context, self._active.sessions(), self.conflict_policy)
        if not decision.allowed:
            ids = decision.conflicting_ids
            outcome = "equal specificity" if decision.tied else "lower specificity"
            self.events.emit(
                EventType.CONFLICT,
                agent_id,
                reason=f"{outcome} than active {', '.join(ids)}",
                conflicting_ids=ids,
                resolution="rejected",
            )
            raise ConflictError(
                f"Agent '{agent_id}' conflicts with active {', '.join(repr(i) for i in ids)} "
                f"({outcome}); deactivate one explicitly",
                agent_id,
                ids,
            )

        # Ceiling check, counting the slots freed by displacement
        remaining = len(self._active) - len(decision.displace)
        if remaining >= self.max_active_sessions:
            raise ResourceExhaustedError(
                f"Maximum concurrent agents limit reached ({self.max_active_sessions})",
                self.max_active_sessions,
                self._active.agent_ids(),
            )

        resources = self._load_resources(agent)

        if cancel is not None and cancel.is_set():
            raise ActivationCancelledError(f"Activation of '{agent_id}' cancelled", agent_id)

        # Commit
        try:
            token = agent.activate(context)
        except Exception as e:
            raise ActivationFailedError(f"Activation handler for '{agent_id}' failed: {e}", agent_id) from e

        now = self._clock()
        session = Session(
            session_id=new_session_id(),
            agent_id=agent_id,
            owner_context=context.owner,
            created_at=now,
            last_activity_at=now,
            timeout_seconds=self.session_timeout_seconds,
            role_group=descriptor.role_group,
            expansion_pack_id=descriptor.expansion_pack_id,
            instance_token=token,
            degraded_capabilities=list(resources.missing),
        )

        try:
            self.store.save(session.to_snapshot())
        except StoreUnavailableError as e:
            raise ActivationFailedError(f"Could not persist session for '{agent_id}': {e}", agent_id) from e

        for incumbent in decision.displace:
            logger.info(f"Deactivating {incumbent.agent_id} in favor of more specific {agent_id}")
            self.events.emit(
                EventType.CONFLICT,
                agent_id,
                reason=f"displaced {incumbent.agent_id} (higher specificity)",
                conflicting_ids=[incumbent.agent_id],
                resolution="displaced",
            )
            self._end_session(
                incumbent,
                EventType.DEACTIVATED,
                reason=f"displaced by {agent_id}",
                strict=False,
            )

        self._active.add(session)
        return session

    def _load_resources(self, agent: RegisteredAgent) -> ResourceLoadResult:
        if self.resource_loader is None or not agent.descriptor.dependencies:
            return ResourceLoadResult()
        try:
            return self.resource_loader.load(agent.descriptor)
        except Exception as e:
            # Loading never blocks activation; everything counts as missing
            logger.warning(f"Resource loading failed for {agent.id}: {e}")
            return ResourceLoadResult(missing=[str(d) for d in agent.descriptor.dependencies])

    # =========================================================================
    # Deactivation / expiry
    # =========================================================================

    def deactivate_agent(self, agent_id: str, reason: str = "deactivated") -> DeactivationAck:
        """Terminate the live session of an agent."""
        with self._lock:
            session = self._active.get(agent_id)
            if session is None:
                raise NotFoundError(f"No active session for agent '{agent_id}'", agent_id)
            self._end_session(session, EventType.DEACTIVATED, reason=reason, strict=True)
            logger.info(f"Agent deactivated: {agent_id}")
            return DeactivationAck(agent_id=agent_id, session_id=session.session_id, reason=reason)

    def release_agent(self, agent_id: str, reason: str = "agent unregistered") -> bool:
        """End an agent's live session, if any, tolerating store errors."""
        with self._lock:
            session = self._active.get(agent_id)
            if session is None:
                return False
            self._end_session(session, EventType.DEACTIVATED, reason=reason, strict=False)
            logger.info(f"Released session {session.session_id} of {agent_id}: {reason}")
            return True

    def _end_session(self, session: Session, event: EventType, reason: str, strict: bool) -> None:
        """
        Remove a session from the active set and the store.

        strict: a store failure aborts (explicit deactivation); otherwise
        it is logged and the session is dropped from memory anyway.
        """
        agent_id = session.agent_id
        try:
            self.store.delete(session.session_id)
        except StoreUnavailableError as e:
            if strict:
                raise
            logger.warning(f"Could not delete snapshot {session.session_id}: {e}")

        self._set_state(agent_id, AgentActivationState.DEACTIVATING)
        if event == EventType.SESSION_EXPIRED:
            session.transition(SessionState.IDLE)
            session.transition(SessionState.EXPIRED)
        session.transition(SessionState.TERMINATED)
        self._active.remove(agent_id)
        self._set_state(agent_id, AgentActivationState.NOT_ACTIVE)

        self.events.emit(event, agent_id, reason=reason, session_id=session.session_id)

    def cleanup_expired_sessions(self) -> List[str]:
        """
        Sweep the active set.

        Active sessions quiet for longer than idle_after_seconds become Idle;
        sessions quiet for longer than their timeout expire. Returns the ids
        of expired sessions.
        """
        expired: List[str] = []
        with self._lock:
            now = self._clock()
            for session in self._active.sessions():
                idle_for = session.idle_seconds(now)
                if session.state == SessionState.ACTIVE and idle_for > self.idle_after_seconds:
                    session.transition(SessionState.IDLE)
                    self._set_state(session.agent_id, AgentActivationState.IDLE)
                    self._save_quietly(session)

                if session.is_expired(now):
                    logger.info(f"Cleaning up expired session for agent: {session.agent_id}")
                    self._end_session(
                        session,
                        EventType.SESSION_EXPIRED,
                        reason=f"idle for {int(idle_for)}s (timeout {int(session.timeout_seconds)}s)",
                        strict=False,
                    )
                    expired.append(session.session_id)
        return expired

    # =========================================================================
    # Activity
    # =========================================================================

    def touch(self, agent_id: str) -> SessionHandle:
        """Record activity on an agent's session."""
        with self._lock:
            session = self._active.get(agent_id)
            if session is None:
                raise NotFoundError(f"No active session for agent '{agent_id}'", agent_id)
            self._touch_session(session)
            return session.to_handle()

    def _touch_session(self, session: Session) -> None:
        session.touch(self._clock())
        self._set_state(session.agent_id, AgentActivationState.ACTIVE)
        self._save_quietly(session)

    def _save_quietly(self, session: Session) -> None:
        try:
            self.store.save(session.to_snapshot())
        except StoreUnavailableError as e:
            logger.warning(f"Could not persist session {session.session_id}: {e}")

    # =========================================================================
    # Restoration / shutdown
    # =========================================================================

    def restore(self) -> int:
        """
        Reload persisted sessions as Idle.

        Snapshots for agents that are no longer registered are dropped. The
        most recently used session wins a contested slot, and at most the
        ceiling is restored. Returns the number of restored sessions.
        """
        with self._lock:
            try:
                snapshots = self.store.load_all()
            except StoreUnavailableError as e:
                logger.warning(f"Session store unavailable, starting with no active sessions: {e}")
                return 0

            snapshots.sort(key=lambda s: s.last_activity_at, reverse=True)
            restored = 0
            for snapshot in snapshots:
                drop_reason = self._restore_blocker(snapshot)
                if drop_reason:
                    logger.warning(f"Dropping persisted session {snapshot.session_id}: {drop_reason}")
                    self._delete_quietly(snapshot.session_id)
                    continue

                session = Session.from_snapshot(snapshot)
                descriptor = self.registry.get_descriptor(snapshot.agent_id)
                session.role_group = descriptor.role_group
                session.expansion_pack_id = descriptor.expansion_pack_id
                session.state = SessionState.IDLE

                self._active.add(session)
                self._set_state(session.agent_id, AgentActivationState.IDLE)
                self._save_quietly(session)
                restored += 1

            if restored:
                logger.info(f"Restored {restored} sessions as idle")
            return restored

    def _restore_blocker(self, snapshot) -> Optional[str]:
        if snapshot.state not in LIVE_STATES:
            return f"stale state {snapshot.state.value}"
        if not self.registry.is_registered(snapshot.agent_id):
            return f"agent '{snapshot.agent_id}' is no longer registered"
        if snapshot.agent_id in self._active:
            return f"newer session exists for '{snapshot.agent_id}'"
        descriptor = self.registry.get_descriptor(snapshot.agent_id)
        for live in self._active.sessions():
            if self.conflict_policy.competes(
                descriptor.role_group, descriptor.expansion_pack_id,
                live.role_group, live.expansion_pack_id,
            ):
                return f"slot already taken by '{live.agent_id}'"
        if len(self._active) >= self.max_active_sessions:
            return "ceiling reached"
        return None

    def _delete_quietly(self, session_id: str) -> None:
        try:
            self.store.delete(session_id)
        except StoreUnavailableError as e:
            logger.warning(f"Could not delete snapshot {session_id}: {e}")

    def shutdown(self) -> None:
        """Flush every live session to the store."""
        with self._lock:
            for session in self._active.sessions():
                self._save_quietly(session)
            logger.info(f"Activation Manager flushed {len(self._active)} sessions")

    # =========================================================================
    # Queries
    # =========================================================================

    def has_live_session(self, agent_id: str) -> bool:
        return agent_id in self._active

    def get_session(self, agent_id: str) -> SessionHandle:
        with self._lock:
            session = self._active.get(agent_id)
            if session is None:
                raise NotFoundError(f"No active session for agent '{agent_id}'", agent_id)
            return session.to_handle()

    def list_active(self) -> List[SessionHandle]:
        with self._lock:
            return [s.to_handle() for s in self._active.sessions()]

    @property
    def active_count(self) -> int:
        return len(self._active)

    def statistics(self) -> Dict[str, Any]:
        with self._lock:
            sessions = self._active.sessions()
            return {
                "active_sessions": len(sessions),
                "max_active_sessions": self.max_active_sessions,
                "session_timeout_seconds": self.session_timeout_seconds,
                "by_state": {
                    state.value: sum(1 for s in sessions if s.state == state)
                    for state in LIVE_STATES
                },
                "active_agent_ids": [s.agent_id for s in sessions],
            }
