"""Tests for dependency resolution."""

import pytest

from agentgate.agents.models import AgentDescriptor, DependencyRef, SourceKind
from agentgate.agents.resources import (
    FileSystemResourceLoader,
    alternative_names,
    ensure_extension,
)


def write(root, relative, content="# resource\n"):
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def core_agent(*deps):
    return AgentDescriptor(
        id="architect",
        display_name="Architect",
        role_group="architect",
        dependencies=[DependencyRef(kind=k, name=n) for k, n in deps],
    )


def pack_agent(*deps):
    return AgentDescriptor(
        id="game-architect",
        display_name="Game Architect",
        role_group="architect",
        source_kind=SourceKind.EXPANSION_PACK,
        expansion_pack_id="game-dev",
        dependencies=[DependencyRef(kind=k, name=n) for k, n in deps],
    )


@pytest.fixture
def loader(tmp_path):
    return FileSystemResourceLoader(root_path=str(tmp_path))


def test_ensure_extension():
    assert ensure_extension("templates", "prd-tmpl") == "prd-tmpl.yaml"
    assert ensure_extension("templates", "prd-tmpl.yaml") == "prd-tmpl.yaml"
    assert ensure_extension("templates", "prd-tmpl.md") == "prd-tmpl.yaml"
    assert ensure_extension("tasks", "create-doc") == "create-doc.md"
    assert ensure_extension("unknown-kind", "notes") == "notes.md"


def test_alternative_names():
    assert alternative_names("create-doc.md") == ["create_doc.md"]
    assert alternative_names("create_doc.md") == ["create-doc.md"]
    assert alternative_names("plain.md") == []


def test_pack_root_wins_over_core(tmp_path, loader):
    write(tmp_path, "bmad-core/tasks/create-doc.md")
    pack_copy = write(tmp_path, "expansion-packs/game-dev/tasks/create-doc.md")

    resolved = loader.resolve(pack_agent(), DependencyRef(kind="tasks", name="create-doc"))

    assert resolved == str(pack_copy)


def test_pack_agent_falls_back_to_common_then_core(tmp_path, loader):
    core_copy = write(tmp_path, "bmad-core/checklists/story-dod.md")
    common_copy = write(tmp_path, "common/checklists/story-dod.md")
    dep = DependencyRef(kind="checklists", name="story-dod.md")

    assert loader.resolve(pack_agent(), dep) == str(common_copy)

    common_copy.unlink()
    loader.clear_cache()
    assert loader.resolve(pack_agent(), dep) == str(core_copy)


def test_core_agent_does_not_see_pack_resources(tmp_path, loader):
    write(tmp_path, "expansion-packs/game-dev/templates/game-tmpl.yaml")

    result = loader.load(core_agent(("templates", "game-tmpl")))

    assert result.missing == ["templates/game-tmpl"]
    assert result.degraded


def test_snake_case_alternate(tmp_path, loader):
    write(tmp_path, "bmad-core/data/technical_preferences.md")

    result = loader.load(core_agent(("data", "technical-preferences")))

    assert result.resolved == ["data/technical-preferences"]
    assert not result.degraded


def test_load_reports_resolved_and_missing(tmp_path, loader):
    write(tmp_path, "bmad-core/tasks/create-doc.md")
    write(tmp_path, "bmad-core/templates/architecture-tmpl.yaml")

    result = loader.load(core_agent(
        ("tasks", "create-doc.md"),
        ("templates", "architecture-tmpl.yaml"),
        ("checklists", "architect-checklist.md"),
    ))

    assert result.resolved == ["tasks/create-doc.md", "templates/architecture-tmpl.yaml"]
    assert result.missing == ["checklists/architect-checklist.md"]


def test_missing_resources_are_not_cached(tmp_path, loader):
    dep = DependencyRef(kind="tasks", name="late-task")
    assert loader.resolve(core_agent(), dep) == ""

    write(tmp_path, "bmad-core/tasks/late-task.md")
    assert loader.resolve(core_agent(), dep).endswith("late-task.md")
