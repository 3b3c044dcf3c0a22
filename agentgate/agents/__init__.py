"""
Agent Registry

Discovers agent definition files, validates them and registers each
with an activation handler. Failed registrations are recorded per agent.
"""

from .models import (
    AgentDescriptor, RawAgentFile, DependencyRef, RegisteredAgent,
    ActivationContext, RegistrationState, SourceKind, RegistryStats,
    ResourceLoadResult,
)
from .catalog import CatalogSource, DirectoryCatalogSource, StaticCatalogSource
from .resources import ResourceLoader, FileSystemResourceLoader
from .registry import AgentRegistry

__all__ = [
    "AgentDescriptor",
    "RawAgentFile",
    "DependencyRef",
    "RegisteredAgent",
    "ActivationContext",
    "RegistrationState",
    "SourceKind",
    "RegistryStats",
    "ResourceLoadResult",
    "CatalogSource",
    "DirectoryCatalogSource",
    "StaticCatalogSource",
    "ResourceLoader",
    "FileSystemResourceLoader",
    "AgentRegistry",
]
