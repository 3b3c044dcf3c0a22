"""Tests for agent file parsing and directory discovery."""

from agentgate.agents.catalog import (
    DirectoryCatalogSource,
    format_agent_name,
    infer_role_group,
    normalize_agent_id,
    parse_agent_file,
)


ARCHITECT_MD = """# architect

ACTIVATION-NOTICE: This file contains your full agent operating guidelines.

```yaml
agent:
  name: Winston
  id: architect
  title: Architect
  roleGroup: architect
  whenToUse: Use for system design and architecture documents
dependencies:
  tasks:
    - create-doc.md
  templates:
    - architecture-tmpl.yaml
```
"""

FRONT_MATTER_MD = """---
id: game-sm
name: Jordan
role_group: sm
expansionPack: game-dev
---

# Game Scrum Master
"""


def test_parse_embedded_yaml_block():
    raw = parse_agent_file(ARCHITECT_MD, "architect", source_path="bmad-core/agents/architect.md")

    assert raw.identifier == "architect"
    assert raw.display_name == "Winston"
    assert raw.role_group == "architect"
    assert raw.expansion_pack_id is None
    assert raw.description == "Use for system design and architecture documents"
    assert raw.dependencies == {
        "tasks": ["create-doc.md"],
        "templates": ["architecture-tmpl.yaml"],
    }
    assert raw.warnings == []


def test_parse_front_matter():
    raw = parse_agent_file(FRONT_MATTER_MD, "game-sm")

    assert raw.identifier == "game-sm"
    assert raw.display_name == "Jordan"
    assert raw.role_group == "sm"
    assert raw.expansion_pack_id == "game-dev"


def test_heuristics_fill_missing_fields():
    """Identifier, name and role group are derived and flagged."""
    content = "# Game Developer\n\nImplements game features.\n"

    raw = parse_agent_file(content, "Game_Developer", expansion_pack_id="game-dev")

    assert raw.identifier == "game-developer"
    assert raw.display_name == "Game Developer"
    assert raw.role_group == "dev"
    assert raw.expansion_pack_id == "game-dev"
    assert raw.description == "Implements game features."
    assert len(raw.warnings) == 3


def test_agent_heading_supplies_identifier():
    raw = parse_agent_file("# Agent: Business Analyst\n", "ba")

    assert raw.identifier == "business-analyst"
    assert raw.role_group == "analyst"


def test_unparseable_yaml_falls_back():
    content = "# qa\n\n```yaml\nagent: [unclosed\n```\n"

    raw = parse_agent_file(content, "qa")

    assert raw.identifier == "qa"
    assert raw.role_group == "qa"


def test_content_hash_tracks_content():
    a = parse_agent_file(ARCHITECT_MD, "architect")
    b = parse_agent_file(ARCHITECT_MD, "architect")
    c = parse_agent_file(ARCHITECT_MD + "\nextra\n", "architect")

    assert a.content_hash() == b.content_hash()
    assert a.content_hash() != c.content_hash()


def test_naming_helpers():
    assert normalize_agent_id("Game Designer!") == "game-designer"
    assert format_agent_name("game-designer") == "Game Designer"
    assert infer_role_group("product-owner") == "po"
    assert infer_role_group("scrum-master") == "sm"
    assert infer_role_group("ux-expert") == "ux"
    assert infer_role_group("storyteller") is None


def test_directory_discovery(tmp_path):
    core = tmp_path / "bmad-core" / "agents"
    core.mkdir(parents=True)
    (core / "architect.md").write_text(ARCHITECT_MD)

    pack = tmp_path / "expansion-packs" / "game-dev"
    (pack / "agents").mkdir(parents=True)
    (pack / "agents" / "game-sm.md").write_text(FRONT_MATTER_MD.replace("expansionPack: game-dev\n", ""))
    (pack / "tasks").mkdir()
    (pack / "tasks" / "create-story.md").write_text("# Create story\n")

    source = DirectoryCatalogSource(root_path=str(tmp_path))
    found = {raw.identifier: raw for raw in source.discover()}

    assert sorted(found) == ["architect", "game-sm"]
    assert found["architect"].expansion_pack_id is None
    assert found["architect"].source_path == "bmad-core/agents/architect.md"
    assert found["game-sm"].expansion_pack_id == "game-dev"


def test_directory_discovery_missing_dirs(tmp_path):
    assert DirectoryCatalogSource(root_path=str(tmp_path)).discover() == []
