"""
Agent Resource Loading

Resolves an agent's declared dependencies (tasks, templates, checklists,
data) against the project tree. Missing dependencies are reported, never
raised: activation proceeds in degraded mode.
"""

import logging
from pathlib import Path
from typing import Dict, List, Tuple

from .models import AgentDescriptor, DependencyRef, ResourceLoadResult, SourceKind

logger = logging.getLogger("agentgate.resources")

EXTENSION_MAP = {
    "tasks": ".md",
    "templates": ".yaml",
    "checklists": ".md",
    "data": ".md",
    "utils": ".md",
}


def ensure_extension(kind: str, name: str) -> str:
    """Give a dependency name the default extension for its kind."""
    expected = EXTENSION_MAP.get(kind, ".md")
    if name.endswith(expected):
        return name
    return Path(name).stem + expected


def alternative_names(filename: str) -> List[str]:
    """kebab-case <-> snake_case variants."""
    path = Path(filename)
    stem, ext = path.stem, path.suffix
    alternatives = []
    if "-" in stem:
        alternatives.append(stem.replace("-", "_") + ext)
    if "_" in stem:
        alternatives.append(stem.replace("_", "-") + ext)
    return alternatives


class ResourceLoader:
    """Resolves declared dependencies for a descriptor."""

    def load(self, descriptor: AgentDescriptor) -> ResourceLoadResult:
        raise NotImplementedError


class FileSystemResourceLoader(ResourceLoader):
    """
    Look dependencies up on disk.

    Search order for ``<kind>/<name>``:
    1. the agent's own root (``bmad-core`` or ``expansion-packs/<pack>``)
    2. ``common``
    3. ``bmad-core`` (pack agents only)
    followed by the same roots with kebab/snake-case alternates.
    """

    def __init__(
        self,
        root_path: str = ".",
        core_dir: str = "bmad-core",
        packs_dir: str = "expansion-packs",
        common_dir: str = "common",
    ):
        self.root_path = Path(root_path)
        self.core_dir = core_dir
        self.packs_dir = packs_dir
        self.common_dir = common_dir
        self._cache: Dict[Tuple[str, str, str], str] = {}

    def _roots(self, descriptor: AgentDescriptor) -> List[Path]:
        roots = []
        if descriptor.source_kind == SourceKind.EXPANSION_PACK and descriptor.expansion_pack_id:
            roots.append(self.root_path / self.packs_dir / descriptor.expansion_pack_id)
        else:
            roots.append(self.root_path / self.core_dir)
        roots.append(self.root_path / self.common_dir)
        if descriptor.source_kind == SourceKind.EXPANSION_PACK:
            roots.append(self.root_path / self.core_dir)
        return roots

    def candidate_paths(self, descriptor: AgentDescriptor, dep: DependencyRef) -> List[Path]:
        filename = ensure_extension(dep.kind, dep.name)
        roots = self._roots(descriptor)
        paths = [root / dep.kind / filename for root in roots]
        for alt in alternative_names(filename):
            paths.extend(root / dep.kind / alt for root in roots)
        return paths

    def resolve(self, descriptor: AgentDescriptor, dep: DependencyRef) -> str:
        """Return the resolved path, or an empty string if not found."""
        key = (descriptor.expansion_pack_id or "", dep.kind, dep.name)
        if key in self._cache:
            return self._cache[key]
        found = ""
        for path in self.candidate_paths(descriptor, dep):
            if path.is_file():
                found = str(path)
                break
        # Misses are not cached; a dependency may be added while running
        if found:
            self._cache[key] = found
        return found

    def load(self, descriptor: AgentDescriptor) -> ResourceLoadResult:
        result = ResourceLoadResult()
        for dep in descriptor.dependencies:
            if self.resolve(descriptor, dep):
                result.resolved.append(str(dep))
            else:
                result.missing.append(str(dep))
        if result.missing:
            logger.warning(
                f"Agent {descriptor.id} has {len(result.missing)} unresolved "
                f"dependencies: {', '.join(result.missing)}"
            )
        return result

    def clear_cache(self) -> None:
        self._cache.clear()
