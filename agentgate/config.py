"""
Configuration management for AgentGate.

Supports YAML configuration with environment variable expansion.
"""

import os
import re
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Any, Union

import yaml


@dataclass
class CatalogConfig:
    """Where agent definition files are discovered."""
    root_path: str = "."
    agent_dirs: List[str] = field(default_factory=lambda: ["bmad-core/agents", "expansion-packs"])


@dataclass
class RegistryConfig:
    """Registration retry policy."""
    retry_attempts: int = 3
    retry_base_delay: float = 0.2


@dataclass
class ActivationConfig:
    """Activation ceiling, session timeouts and conflict policy."""
    max_active_sessions: int = 5
    session_timeout_seconds: float = 1800.0
    idle_after_seconds: float = 300.0
    cleanup_interval_seconds: float = 60.0
    exempt_role_groups: List[str] = field(default_factory=lambda: ["dev"])
    pack_exclusive_groups: List[List[str]] = field(default_factory=lambda: [["pm", "po"]])


@dataclass
class StoreConfig:
    """Session persistence configuration."""
    storage: str = "sqlite"  # sqlite | memory
    path: str = "./.agentgate/sessions.db"


@dataclass
class AuditConfig:
    """Audit trail configuration."""
    enabled: bool = True
    storage: str = "sqlite"  # sqlite | memory
    path: str = "./.agentgate/audit.db"


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = "127.0.0.1"
    port: int = 8767


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class GateConfig:
    """Root configuration for AgentGate."""
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    activation: ActivationConfig = field(default_factory=ActivationConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def expand_env_vars(value: Any) -> Any:
    """Recursively expand environment variables in config values."""
    if isinstance(value, str):
        # Match ${VAR} or $VAR patterns
        pattern = r'\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)'

        def replace(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [expand_env_vars(v) for v in value]
    return value


def parse_config(data: Optional[Dict[str, Any]]) -> GateConfig:
    """Build a GateConfig from an already-loaded mapping."""
    data = expand_env_vars(data or {})

    catalog_data = data.get("catalog") or {}
    catalog = CatalogConfig(
        root_path=str(catalog_data.get("root_path", ".")),
        agent_dirs=list(catalog_data.get("agent_dirs", ["bmad-core/agents", "expansion-packs"])),
    )

    registry_data = data.get("registry") or {}
    registry = RegistryConfig(
        retry_attempts=int(registry_data.get("retry_attempts", 3)),
        retry_base_delay=float(registry_data.get("retry_base_delay", 0.2)),
    )

    activation_data = data.get("activation") or {}
    activation = ActivationConfig(
        max_active_sessions=int(activation_data.get("max_active_sessions", 5)),
        session_timeout_seconds=float(activation_data.get("session_timeout_seconds", 1800)),
        idle_after_seconds=float(activation_data.get("idle_after_seconds", 300)),
        cleanup_interval_seconds=float(activation_data.get("cleanup_interval_seconds", 60)),
        exempt_role_groups=list(activation_data.get("exempt_role_groups", ["dev"])),
        pack_exclusive_groups=[
            list(group) for group in activation_data.get("pack_exclusive_groups", [["pm", "po"]])
        ],
    )

    store_data = data.get("store") or {}
    store = StoreConfig(
        storage=store_data.get("storage", "sqlite"),
        path=store_data.get("path", "./.agentgate/sessions.db"),
    )

    audit_data = data.get("audit") or {}
    audit = AuditConfig(
        enabled=bool(audit_data.get("enabled", True)),
        storage=audit_data.get("storage", "sqlite"),
        path=audit_data.get("path", "./.agentgate/audit.db"),
    )

    server_data = data.get("server") or {}
    server = ServerConfig(
        host=server_data.get("host", "127.0.0.1"),
        port=int(server_data.get("port", 8767)),
    )

    logging_data = data.get("logging") or {}
    log = LoggingConfig(level=str(logging_data.get("level", "INFO")).upper())

    return GateConfig(
        catalog=catalog,
        registry=registry,
        activation=activation,
        store=store,
        audit=audit,
        server=server,
        logging=log,
    )


def load_config(path: Union[str, Path]) -> GateConfig:
    """Load configuration from YAML file."""
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    return parse_config(raw)


def create_default_config() -> str:
    """Generate default configuration YAML."""
    return """# AgentGate Configuration

# Where agent definitions live
catalog:
  root_path: .
  agent_dirs:
    - bmad-core/agents
    - expansion-packs

# Registration retry (exponential backoff)
registry:
  retry_attempts: 3
  retry_base_delay: 0.2

# Activation limits and conflict policy
activation:
  max_active_sessions: 5
  session_timeout_seconds: 1800
  idle_after_seconds: 300
  cleanup_interval_seconds: 60  # 0 disables the background sweeper
  exempt_role_groups: [dev]
  pack_exclusive_groups:
    - [pm, po]

# Session persistence
store:
  storage: sqlite
  path: ./.agentgate/sessions.db

# Audit trail
audit:
  enabled: true
  storage: sqlite
  path: ./.agentgate/audit.db

server:
  host: 127.0.0.1
  port: 8767

logging:
  level: INFO
"""
