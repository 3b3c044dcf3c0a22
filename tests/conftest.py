"""Shared fixtures: fake clock, in-memory catalogs and stores."""

import pytest
from datetime import datetime, timedelta, timezone

from agentgate.activation.manager import ActivationManager
from agentgate.activation.storage import MemorySessionStore
from agentgate.agents.catalog import StaticCatalogSource
from agentgate.agents.models import RawAgentFile
from agentgate.agents.registry import AgentRegistry
from agentgate.events import EventBus


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return MemorySessionStore()


@pytest.fixture
def raw_agent():
    """Factory for raw agent files."""
    def make(agent_id, role_group, pack=None, name=None, dependencies=None):
        if pack:
            source_path = f"expansion-packs/{pack}/agents/{agent_id}.md"
        else:
            source_path = f"bmad-core/agents/{agent_id}.md"
        return RawAgentFile(
            identifier=agent_id,
            display_name=name if name is not None else agent_id.replace("-", " ").title(),
            role_group=role_group,
            expansion_pack_id=pack,
            raw_content=f"# {agent_id}\n\nrole: {role_group}\n",
            source_path=source_path,
            dependencies=dependencies or {},
        )
    return make


@pytest.fixture
def team(raw_agent):
    """A small core team plus one game-dev pack."""
    return [
        raw_agent("architect", "architect"),
        raw_agent("pm", "pm"),
        raw_agent("qa", "qa"),
        raw_agent("dev", "dev"),
        raw_agent("game-architect", "architect", pack="game-dev"),
        raw_agent("game-developer", "dev", pack="game-dev"),
        raw_agent("game-pm", "pm", pack="game-dev"),
        raw_agent("game-po", "po", pack="game-dev"),
    ]


@pytest.fixture
def build_manager(clock, store):
    """Registry + manager over a static catalog, sharing the fake clock."""
    def build(
        files,
        max_active_sessions=5,
        session_timeout_seconds=1800,
        idle_after_seconds=300,
        session_store=None,
        resource_loader=None,
        handler_factory=None,
    ):
        events = EventBus()
        registry = AgentRegistry(
            StaticCatalogSource(files),
            events=events,
            handler_factory=handler_factory,
            sleep=lambda seconds: None,
        )
        registry.discover_and_register()
        return ActivationManager(
            registry,
            session_store if session_store is not None else store,
            resource_loader=resource_loader,
            events=events,
            max_active_sessions=max_active_sessions,
            session_timeout_seconds=session_timeout_seconds,
            idle_after_seconds=idle_after_seconds,
            clock=clock,
        )
    return build
