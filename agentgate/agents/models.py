"""
Agent Registry Models

Pydantic models for discovered agent files, registry descriptors,
session handles and registry statistics.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, List, Any, Callable
from pydantic import BaseModel, Field
import hashlib


class SourceKind(str, Enum):
    """Where an agent definition comes from."""
    CORE_BUILTIN = "core-builtin"
    EXPANSION_PACK = "expansion-pack"


class RegistrationState(str, Enum):
    PENDING = "pending"
    REGISTERED = "registered"
    FAILED = "failed"


class DependencyRef(BaseModel):
    """A declared dependency (task, template, checklist, data file)."""
    kind: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.name}"


class RawAgentFile(BaseModel):
    """An agent definition as yielded by a catalog source."""
    identifier: Optional[str] = None
    display_name: Optional[str] = None
    role_group: Optional[str] = None
    expansion_pack_id: Optional[str] = None
    description: Optional[str] = None
    raw_content: str = ""
    source_path: Optional[str] = None

    # Declared dependencies keyed by kind: {"tasks": ["create-doc.md"], ...}
    dependencies: Dict[str, List[str]] = Field(default_factory=dict)

    # Heuristic derivations made by the catalog source
    warnings: List[str] = Field(default_factory=list)

    def content_hash(self) -> str:
        """SHA256 hash of the raw content."""
        return hashlib.sha256(self.raw_content.encode()).hexdigest()


class AgentDescriptor(BaseModel):
    """Registry entry for one agent. Mutated only by the registry."""
    id: str = Field(..., description="Unique agent identifier (slug)")
    display_name: str = ""
    role_group: Optional[str] = None
    source_kind: SourceKind = SourceKind.CORE_BUILTIN
    expansion_pack_id: Optional[str] = None
    description: Optional[str] = None
    dependencies: List[DependencyRef] = Field(default_factory=list)
    content_hash: str = ""
    source_path: Optional[str] = None

    # Registration
    state: RegistrationState = RegistrationState.PENDING
    retry_count: int = 0
    failure_reason: Optional[str] = None
    validation_warnings: List[str] = Field(default_factory=list)
    registered_at: Optional[datetime] = None

    @classmethod
    def from_raw(cls, raw: RawAgentFile) -> "AgentDescriptor":
        """Build a pending descriptor from a discovered file."""
        dependencies = [
            DependencyRef(kind=kind, name=name)
            for kind, names in sorted(raw.dependencies.items())
            for name in names
        ]
        return cls(
            id=raw.identifier or "",
            display_name=raw.display_name or "",
            role_group=raw.role_group,
            source_kind=(
                SourceKind.EXPANSION_PACK if raw.expansion_pack_id else SourceKind.CORE_BUILTIN
            ),
            expansion_pack_id=raw.expansion_pack_id,
            description=raw.description,
            dependencies=dependencies,
            content_hash=raw.content_hash(),
            source_path=raw.source_path,
            validation_warnings=list(raw.warnings),
        )

    @property
    def is_pack_scoped(self) -> bool:
        return self.expansion_pack_id is not None

    def mark_registered(self) -> None:
        self.state = RegistrationState.REGISTERED
        self.failure_reason = None
        self.registered_at = datetime.now(timezone.utc)

    def mark_failed(self, reason: str) -> None:
        self.state = RegistrationState.FAILED
        self.failure_reason = reason

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "role_group": self.role_group,
            "source_kind": self.source_kind.value,
            "expansion_pack_id": self.expansion_pack_id,
            "description": self.description,
            "dependencies": [str(d) for d in self.dependencies],
            "content_hash": self.content_hash,
            "source_path": self.source_path,
            "state": self.state.value,
            "retry_count": self.retry_count,
            "failure_reason": self.failure_reason,
            "validation_warnings": self.validation_warnings,
            "registered_at": self.registered_at.isoformat() if self.registered_at else None,
        }


class ActivationContext(BaseModel):
    """Who is asking for an activation, and with which tags."""
    owner: str = "ide"
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


# Capability: context -> instance token
ActivationHandler = Callable[[ActivationContext], str]


@dataclass
class RegisteredAgent:
    """A Registered descriptor plus its activation handler."""
    descriptor: AgentDescriptor
    activation_handler: ActivationHandler

    @property
    def id(self) -> str:
        return self.descriptor.id

    def activate(self, context: ActivationContext) -> str:
        return self.activation_handler(context)


class ResourceLoadResult(BaseModel):
    """Outcome of resolving an agent's declared dependencies."""
    resolved: List[str] = Field(default_factory=list)
    missing: List[str] = Field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.missing)


class RegistryStats(BaseModel):
    """Counts by registration state and by source kind."""
    total: int = 0
    by_state: Dict[str, int] = Field(default_factory=dict)
    by_source: Dict[str, int] = Field(default_factory=dict)
    failures: Dict[str, str] = Field(default_factory=dict)

    @property
    def registered(self) -> int:
        return self.by_state.get(RegistrationState.REGISTERED.value, 0)

    @property
    def failed(self) -> int:
        return self.by_state.get(RegistrationState.FAILED.value, 0)
