"""
Lifecycle Events

Closed set of event tags published by the registry and the activation
manager. Subscribers are plain callables, dispatched in-line.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

logger = logging.getLogger("agentgate.events")


class EventType(str, Enum):
    REGISTERED = "registered"
    REGISTRATION_FAILED = "registration-failed"
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"
    SESSION_EXPIRED = "session-expired"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class AgentEvent:
    """A single lifecycle event."""
    type: EventType
    entity_id: str
    reason: Optional[str] = None
    session_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "entity_id": self.entity_id,
            "reason": self.reason,
            "session_id": self.session_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


Subscriber = Callable[[AgentEvent], None]


class EventBus:
    """
    Observer list for lifecycle events.

    A subscriber may restrict itself to a subset of event types. A failing
    subscriber is logged and never interrupts the publisher.
    """

    def __init__(self):
        self._subscribers: List[Tuple[Subscriber, Optional[Set[EventType]]]] = []

    def subscribe(
        self,
        callback: Subscriber,
        types: Optional[Iterable[EventType]] = None,
    ) -> Callable[[], None]:
        """Register a subscriber. Returns a function that unsubscribes it."""
        entry = (callback, set(types) if types else None)
        self._subscribers.append(entry)

        def unsubscribe():
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: AgentEvent) -> None:
        for callback, types in list(self._subscribers):
            if types is not None and event.type not in types:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception(f"Event subscriber failed on {event.type.value} for {event.entity_id}")

    def emit(
        self,
        type: EventType,
        entity_id: str,
        reason: str = None,
        session_id: str = None,
        **details: Any,
    ) -> AgentEvent:
        """Build and publish an event."""
        event = AgentEvent(
            type=type,
            entity_id=entity_id,
            reason=reason,
            session_id=session_id,
            details=details,
        )
        self.publish(event)
        return event

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
