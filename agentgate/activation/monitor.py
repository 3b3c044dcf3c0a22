"""
Activation Monitor

Per-agent activation metrics: attempts, successes, reuse of live sessions,
failures by error category and activation durations. Fed by the
activation manager and surfaced through the runtime status.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, Callable

from ..errors import (
    ActivationCancelledError, ActivationFailedError, ConflictError,
    NotFoundError, ResourceExhaustedError, StoreUnavailableError,
)

logger = logging.getLogger("agentgate.activation.monitor")

# Order matters: subclasses before their bases
ERROR_CATEGORIES = (
    (ActivationCancelledError, "cancelled"),
    (NotFoundError, "agent-not-found"),
    (ConflictError, "conflict"),
    (ResourceExhaustedError, "resource-exhausted"),
    (ActivationFailedError, "activation-failed"),
)


def categorize_error(error: BaseException) -> str:
    if isinstance(error.__cause__, StoreUnavailableError):
        return "store-unavailable"
    for exc_type, category in ERROR_CATEGORIES:
        if isinstance(error, exc_type):
            return category
    return "unknown"


@dataclass
class AgentActivationMetrics:
    """Counters for one agent."""
    attempts: int = 0
    successes: int = 0
    reused: int = 0
    failures: Dict[str, int] = field(default_factory=dict)
    total_duration: float = 0.0
    min_duration: Optional[float] = None
    max_duration: float = 0.0
    slow_activations: int = 0
    last_activated_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def failed(self) -> int:
        return sum(self.failures.values())

    @property
    def average_duration(self) -> float:
        timed = self.successes - self.reused
        return self.total_duration / timed if timed else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "successes": self.successes,
            "reused": self.reused,
            "failed": self.failed,
            "failures": dict(self.failures),
            "average_duration": round(self.average_duration, 6),
            "min_duration": self.min_duration,
            "max_duration": self.max_duration,
            "slow_activations": self.slow_activations,
            "last_activated_at": self.last_activated_at.isoformat() if self.last_activated_at else None,
            "last_error": self.last_error,
        }


class ActivationMonitor:
    """
    Activation metrics collector.

    Durations are measured for new activations only; returning an already
    live session counts as a success and as a reuse.
    """

    def __init__(
        self,
        slow_threshold_seconds: float = 1.0,
        timer: Callable[[], float] = None,
    ):
        self.slow_threshold_seconds = slow_threshold_seconds
        self._timer = timer or time.perf_counter
        self._lock = threading.Lock()
        self._agents: Dict[str, AgentActivationMetrics] = {}

    def start(self) -> float:
        """Mark the start of an activation attempt."""
        return self._timer()

    def _metrics(self, agent_id: str) -> AgentActivationMetrics:
        if agent_id not in self._agents:
            self._agents[agent_id] = AgentActivationMetrics()
        return self._agents[agent_id]

    def record_success(self, agent_id: str, started: float, reused: bool = False, at: datetime = None) -> None:
        duration = self._timer() - started
        with self._lock:
            metrics = self._metrics(agent_id)
            metrics.attempts += 1
            metrics.successes += 1
            if reused:
                metrics.reused += 1
                return
            metrics.last_activated_at = at
            metrics.total_duration += duration
            metrics.max_duration = max(metrics.max_duration, duration)
            if metrics.min_duration is None or duration < metrics.min_duration:
                metrics.min_duration = duration
            if duration > self.slow_threshold_seconds:
                metrics.slow_activations += 1
                logger.warning(f"Slow activation of {agent_id}: {duration:.3f}s")

    def record_failure(self, agent_id: str, error: BaseException) -> str:
        """Count a failed attempt. Returns the error category."""
        category = categorize_error(error)
        with self._lock:
            metrics = self._metrics(agent_id)
            metrics.attempts += 1
            metrics.failures[category] = metrics.failures.get(category, 0) + 1
            metrics.last_error = f"{category}: {error}"
        return category

    def agent_metrics(self, agent_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            metrics = self._agents.get(agent_id)
            return metrics.to_dict() if metrics else None

    def summary(self) -> Dict[str, Any]:
        """Totals, error breakdown and per-agent metrics."""
        with self._lock:
            agents = {agent_id: m.to_dict() for agent_id, m in sorted(self._agents.items())}
            attempts = sum(m.attempts for m in self._agents.values())
            successes = sum(m.successes for m in self._agents.values())
            timed = sum(m.successes - m.reused for m in self._agents.values())
            total_duration = sum(m.total_duration for m in self._agents.values())
            by_category: Dict[str, int] = {}
            for m in self._agents.values():
                for category, count in m.failures.items():
                    by_category[category] = by_category.get(category, 0) + count

        return {
            "total_attempts": attempts,
            "successful": successes,
            "failed": attempts - successes,
            "success_rate": round(successes / attempts, 4) if attempts else None,
            "errors_by_category": by_category,
            "average_duration": round(total_duration / timed, 6) if timed else 0.0,
            "slow_activations": sum(a["slow_activations"] for a in agents.values()),
            "agents": agents,
        }

    def reset(self) -> None:
        with self._lock:
            self._agents.clear()
