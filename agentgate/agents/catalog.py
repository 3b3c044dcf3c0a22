"""
Agent Catalog Sources

Discover raw agent definitions. The directory source scans markdown agent
files and reads their YAML configuration (front matter or an embedded
```yaml block). Missing identifiers, names and role groups are derived
heuristically and recorded as warnings on the raw file.
"""

import re
import logging
from pathlib import Path
from typing import Optional, Dict, List, Any, Iterable

import yaml

from .models import RawAgentFile

logger = logging.getLogger("agentgate.catalog")

FRONT_MATTER_RE = re.compile(r"^---\s*\n(.*?)\n---", re.DOTALL)
YAML_BLOCK_RE = re.compile(r"```ya?ml\s*\n(.*?)\n```", re.DOTALL)
HEADING_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)

# Checked in order; first match wins
ROLE_PATTERNS = [
    ("architect", re.compile(r"architect")),
    ("pm", re.compile(r"(^|-)(pm|project-manager)(-|$)")),
    ("po", re.compile(r"(^|-)(po|product-owner)(-|$)")),
    ("dev", re.compile(r"(^|-)(dev|developer)(-|$)")),
    ("qa", re.compile(r"(^|-)(qa|quality|test|tester)(-|$)")),
    ("sm", re.compile(r"(^|-)(sm|scrum-master)(-|$)")),
    ("analyst", re.compile(r"analyst")),
    ("ux", re.compile(r"(^|-)(ux|user-experience)(-|$)")),
]

DEPENDENCY_KINDS = ("tasks", "templates", "checklists", "data", "utils")


def normalize_agent_id(value: str) -> str:
    """Lowercase kebab-case slug."""
    slug = re.sub(r"[^a-z0-9-]", "-", value.lower())
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def format_agent_name(agent_id: str) -> str:
    """'game-designer' -> 'Game Designer'."""
    return " ".join(word.capitalize() for word in agent_id.split("-") if word)


def infer_role_group(agent_id: str) -> Optional[str]:
    """Guess a role group from well-known identifier patterns."""
    for role, pattern in ROLE_PATTERNS:
        if pattern.search(agent_id):
            return role
    return None


def extract_config(content: str) -> Dict[str, Any]:
    """
    Read the agent's YAML configuration.

    Front matter wins over an embedded ```yaml block. Unparseable YAML
    yields an empty dict; the caller falls back to heuristics.
    """
    for pattern in (FRONT_MATTER_RE, YAML_BLOCK_RE):
        match = pattern.search(content)
        if not match:
            continue
        try:
            data = yaml.safe_load(match.group(1))
        except yaml.YAMLError as e:
            logger.debug(f"Unparseable agent YAML: {e}")
            continue
        if isinstance(data, dict):
            return data
    return {}


def _first_paragraph(content: str) -> Optional[str]:
    found_heading = False
    for line in content.splitlines():
        if line.startswith("#"):
            found_heading = True
            continue
        if found_heading and line.strip() and not line.startswith("```"):
            return line.strip()
    return None


def parse_agent_file(
    content: str,
    filename_stem: str,
    source_path: str = None,
    expansion_pack_id: str = None,
) -> RawAgentFile:
    """Build a RawAgentFile from markdown content."""
    config = extract_config(content)
    agent = config.get("agent") if isinstance(config.get("agent"), dict) else {}
    warnings: List[str] = []

    def pick(*keys):
        for source in (agent, config):
            for key in keys:
                value = source.get(key)
                if value not in (None, ""):
                    return str(value).strip()
        return None

    identifier = pick("id")
    if identifier is None:
        heading = HEADING_RE.search(content)
        if heading and heading.group(1).strip().lower().startswith("agent:"):
            identifier = normalize_agent_id(heading.group(1).split(":", 1)[1])
        else:
            identifier = normalize_agent_id(filename_stem)
        warnings.append(f"identifier derived as '{identifier}'")

    display_name = pick("name")
    if display_name is None:
        heading = HEADING_RE.search(content)
        if heading:
            display_name = re.sub(r"^Agent:\s*", "", heading.group(1)).strip()
        else:
            display_name = format_agent_name(identifier)
        warnings.append(f"display name derived as '{display_name}'")

    role_group = pick("roleGroup", "role_group")
    if role_group is None:
        role_group = infer_role_group(identifier)
        if role_group:
            warnings.append(f"role group inferred as '{role_group}'")

    pack = pick("expansionPack", "expansion_pack") or expansion_pack_id

    dependencies: Dict[str, List[str]] = {}
    raw_deps = config.get("dependencies")
    if isinstance(raw_deps, dict):
        for kind, names in raw_deps.items():
            if isinstance(names, str):
                names = [names]
            if isinstance(names, list):
                dependencies[str(kind)] = [str(n) for n in names if n]

    return RawAgentFile(
        identifier=identifier,
        display_name=display_name,
        role_group=role_group,
        expansion_pack_id=pack,
        description=pick("whenToUse", "description") or _first_paragraph(content),
        raw_content=content,
        source_path=source_path,
        dependencies=dependencies,
        warnings=warnings,
    )


class CatalogSource:
    """Yields raw agent definitions."""

    def discover(self) -> List[RawAgentFile]:
        raise NotImplementedError


class StaticCatalogSource(CatalogSource):
    """In-memory catalog, mostly for embedding and tests."""

    def __init__(self, files: Iterable[RawAgentFile] = ()):
        self.files: List[RawAgentFile] = list(files)

    def discover(self) -> List[RawAgentFile]:
        return list(self.files)


class DirectoryCatalogSource(CatalogSource):
    """
    Scan directories for agent markdown files.

    Only files with an ``agents`` directory somewhere in their path
    (relative to the scanned directory's root) are considered agents, so
    tasks and checklists living next to them in a pack are skipped.
    A file below ``expansion-packs/<pack>/`` belongs to ``<pack>``.
    """

    def __init__(self, root_path: str = ".", agent_dirs: List[str] = None):
        self.root_path = Path(root_path)
        self.agent_dirs = agent_dirs or ["bmad-core/agents", "expansion-packs"]

    def find_agent_files(self) -> List[Path]:
        files = set()
        for rel in self.agent_dirs:
            base = self.root_path / rel
            if not base.is_dir():
                logger.debug(f"Agent directory not found: {base}")
                continue
            for path in base.rglob("*.md"):
                if path.is_file() and "agents" in path.relative_to(self.root_path).parts[:-1]:
                    files.add(path)
        return sorted(files)

    def _pack_for(self, path: Path) -> Optional[str]:
        parts = path.relative_to(self.root_path).parts
        if "expansion-packs" in parts:
            idx = parts.index("expansion-packs")
            if len(parts) > idx + 2:
                return parts[idx + 1]
        return None

    def discover(self) -> List[RawAgentFile]:
        results = []
        for path in self.find_agent_files():
            try:
                content = path.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning(f"Cannot read agent file {path}: {e}")
                continue
            results.append(parse_agent_file(
                content,
                filename_stem=path.stem,
                source_path=str(path.relative_to(self.root_path)),
                expansion_pack_id=self._pack_for(path),
            ))
        logger.info(f"Discovered {len(results)} agent files under {self.root_path}")
        return results
