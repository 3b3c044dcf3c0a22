"""
AgentGate - Agent Registration & Activation

Discovers agent definitions (core and expansion packs), registers them
with bounded retry, and activates them under role-conflict and
concurrency rules with persisted, restorable sessions.
"""

__version__ = "0.1.0"

from .config import GateConfig, load_config
from .errors import AgentGateError
from .runtime import AgentGate
from .server import create_app

__all__ = [
    "__version__",
    "AgentGate",
    "AgentGateError",
    "GateConfig",
    "load_config",
    "create_app",
]
