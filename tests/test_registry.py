"""Tests for the Agent Registry."""

import pytest

from agentgate.agents.catalog import StaticCatalogSource
from agentgate.agents.models import AgentDescriptor, RegistrationState, SourceKind
from agentgate.agents.registry import AgentRegistry
from agentgate.errors import ConflictError, NotFoundError
from agentgate.events import EventBus, EventType


def make_registry(files, handler_factory=None, delays=None, retry_attempts=3):
    events = EventBus()
    sleep = delays.append if delays is not None else (lambda seconds: None)
    return AgentRegistry(
        StaticCatalogSource(files),
        events=events,
        handler_factory=handler_factory,
        retry_attempts=retry_attempts,
        sleep=sleep,
    )


def flaky_factory(failures_before_success):
    """Handler factory that fails a given number of times per agent."""
    calls = {}

    def factory(descriptor):
        calls[descriptor.id] = calls.get(descriptor.id, 0) + 1
        if calls[descriptor.id] <= failures_before_success:
            raise RuntimeError(f"backend not ready ({calls[descriptor.id]})")
        return lambda context: f"{descriptor.id}-token"

    factory.calls = calls
    return factory


def test_valid_descriptors_are_registered(team):
    """Every valid, uniquely identified agent ends Registered."""
    registry = make_registry(team)
    stats = registry.discover_and_register()

    assert stats.registered == len(team)
    assert stats.failed == 0
    for raw in team:
        assert registry.get_descriptor(raw.identifier).state == RegistrationState.REGISTERED
        assert registry.is_registered(raw.identifier)


def test_registered_events(team):
    """A registered event is published per agent."""
    registry = make_registry(team)
    events = []
    registry.events.subscribe(events.append, types=[EventType.REGISTERED])

    registry.discover_and_register()

    assert sorted(e.entity_id for e in events) == sorted(r.identifier for r in team)
    pack_event = next(e for e in events if e.entity_id == "game-architect")
    assert pack_event.details["source"] == "expansion-pack"
    assert pack_event.details["expansion_pack_id"] == "game-dev"


def test_source_kind_from_pack(raw_agent):
    """Pack membership decides the source kind."""
    registry = make_registry([
        raw_agent("architect", "architect"),
        raw_agent("game-architect", "architect", pack="game-dev"),
    ])
    stats = registry.discover_and_register()

    assert registry.get_descriptor("architect").source_kind == SourceKind.CORE_BUILTIN
    assert registry.get_descriptor("game-architect").source_kind == SourceKind.EXPANSION_PACK
    assert stats.by_source == {"core-builtin": 1, "expansion-pack": 1}


def test_missing_display_name_fails_without_aborting_batch(raw_agent):
    """A malformed descriptor is recorded Failed; the rest register."""
    registry = make_registry([
        raw_agent("architect", "architect"),
        raw_agent("nameless", "qa", name=""),
    ])
    failures = []
    registry.events.subscribe(failures.append, types=[EventType.REGISTRATION_FAILED])

    stats = registry.discover_and_register()

    assert stats.registered == 1
    assert stats.failed == 1
    descriptor = registry.get_descriptor("nameless")
    assert descriptor.state == RegistrationState.FAILED
    assert "display name" in descriptor.failure_reason
    assert failures[0].entity_id == "nameless"
    assert failures[0].details["validation"] is True


def test_missing_role_group_fails(raw_agent):
    registry = make_registry([raw_agent("helper", None)])
    stats = registry.discover_and_register()

    assert stats.failed == 1
    assert "role group" in registry.get_descriptor("helper").failure_reason


def test_malformed_identifier_is_listed_but_not_addressable(raw_agent):
    """Malformed ids cannot be looked up but still show in listings."""
    registry = make_registry([
        raw_agent("Bad Id", "qa"),
        raw_agent("qa", "qa"),
    ])
    stats = registry.discover_and_register()

    assert stats.registered == 1
    assert stats.failed == 1
    assert "Bad Id" in stats.failures
    with pytest.raises(NotFoundError):
        registry.get_descriptor("Bad Id")
    failed = registry.list(state=RegistrationState.FAILED)
    assert [d.id for d in failed] == ["Bad Id"]


def test_duplicate_identifier_keeps_first(raw_agent):
    """A duplicate id is rejected without touching the first definition."""
    first = raw_agent("architect", "architect")
    duplicate = raw_agent("architect", "architect", name="Other Architect")
    duplicate.source_path = "custom/agents/architect.md"

    registry = make_registry([first, duplicate])
    stats = registry.discover_and_register()

    assert stats.registered == 1
    assert stats.failed == 1
    kept = registry.get_descriptor("architect")
    assert kept.state == RegistrationState.REGISTERED
    assert kept.source_path == "bmad-core/agents/architect.md"
    assert len(registry.list()) == 2


def test_retry_then_success(raw_agent):
    """Fails twice, then succeeds: ends Registered after backoff."""
    delays = []
    factory = flaky_factory(failures_before_success=2)
    registry = make_registry([raw_agent("architect", "architect")], factory, delays)

    registry.discover_and_register()

    descriptor = registry.get_descriptor("architect")
    assert descriptor.state == RegistrationState.REGISTERED
    assert descriptor.retry_count == 2
    assert factory.calls["architect"] == 3
    assert delays == [0.2, 0.4]


def test_retry_exhausted(raw_agent):
    """Always failing: ends Failed with retry_count equal to the cap."""
    delays = []
    factory = flaky_factory(failures_before_success=100)
    registry = make_registry([raw_agent("architect", "architect"), raw_agent("qa", "qa")], factory, delays)
    failures = []
    registry.events.subscribe(failures.append, types=[EventType.REGISTRATION_FAILED])

    stats = registry.discover_and_register()

    descriptor = registry.get_descriptor("architect")
    assert descriptor.state == RegistrationState.FAILED
    assert descriptor.retry_count == registry.retry_attempts == 3
    assert "backend not ready" in descriptor.failure_reason
    assert stats.failed == 2
    assert {e.entity_id for e in failures} == {"architect", "qa"}
    with pytest.raises(NotFoundError):
        registry.get_registered("architect")


def test_non_callable_handler_is_a_registration_failure(raw_agent):
    registry = make_registry([raw_agent("qa", "qa")], handler_factory=lambda d: "not-callable")
    registry.discover_and_register()

    descriptor = registry.get_descriptor("qa")
    assert descriptor.state == RegistrationState.FAILED
    assert "non-callable" in descriptor.failure_reason


def test_shutdown_cuts_retry_short(raw_agent):
    """A shutdown during backoff stops retrying."""
    registry = AgentRegistry(
        StaticCatalogSource([]),
        handler_factory=flaky_factory(failures_before_success=100),
        retry_base_delay=30.0,
    )
    registry.shutdown()
    descriptor = AgentDescriptor(id="qa", display_name="QA", role_group="qa")

    assert registry.register_with_retry(descriptor) is None
    assert descriptor.state == RegistrationState.FAILED
    assert descriptor.retry_count == 1
    assert "shutdown" in descriptor.failure_reason


def test_rediscovery_removes_vanished_agents(team):
    registry = make_registry(team)
    registry.discover_and_register()

    registry.catalog.files = [f for f in team if f.identifier != "qa"]
    registry.discover_and_register()

    with pytest.raises(NotFoundError):
        registry.get_descriptor("qa")
    assert registry.is_registered("architect")


def test_rediscovery_keeps_agent_with_live_session(team):
    registry = make_registry(team)
    registry.discover_and_register()
    registry.attach_session_hooks(lambda agent_id: agent_id == "qa")

    registry.catalog.files = [f for f in team if f.identifier != "qa"]
    registry.discover_and_register()

    assert registry.is_registered("qa")


def test_rediscovery_of_unchanged_agent_keeps_registration(team):
    registry = make_registry(team)
    registry.discover_and_register()
    registered_at = registry.get_descriptor("architect").registered_at

    registry.discover_and_register()

    assert registry.get_descriptor("architect").registered_at == registered_at


def test_unregister_refused_with_live_session(team):
    registry = make_registry(team)
    registry.discover_and_register()
    registry.attach_session_hooks(lambda agent_id: agent_id == "architect")

    with pytest.raises(ConflictError):
        registry.unregister("architect")

    registry.unregister("architect", force=True)
    assert not registry.is_registered("architect")


def test_forced_unregister_releases_live_session(team):
    registry = make_registry(team)
    registry.discover_and_register()
    live = {"architect"}
    released = []

    def release(agent_id):
        released.append(agent_id)
        live.discard(agent_id)

    registry.attach_session_hooks(lambda agent_id: agent_id in live, release)

    registry.unregister("qa", force=True)
    registry.unregister("architect", force=True)

    assert released == ["architect"]
    assert live == set()


def test_invalid_rescan_keeps_agent_with_live_session(team, raw_agent):
    registry = make_registry(team)
    registry.discover_and_register()
    registry.attach_session_hooks(lambda agent_id: agent_id == "architect")
    failed = []
    registry.events.subscribe(lambda e: failed.append(e.entity_id), [EventType.REGISTRATION_FAILED])

    broken = [raw for raw in team if raw.identifier not in ("architect", "qa")]
    broken += [raw_agent("architect", None), raw_agent("qa", None)]
    registry.catalog = StaticCatalogSource(broken)
    registry.discover_and_register()

    assert registry.is_registered("architect")
    assert registry.get_registered("architect").descriptor.role_group == "architect"
    assert "re-validation failed: missing role group" in (
        registry.get_descriptor("architect").validation_warnings
    )
    assert not registry.is_registered("qa")
    assert registry.get_descriptor("qa").state == RegistrationState.FAILED
    assert failed == ["qa"]


def test_unregister_unknown():
    registry = make_registry([])
    with pytest.raises(NotFoundError):
        registry.unregister("ghost")


def test_statistics_counts_every_state(team, raw_agent):
    registry = make_registry(team + [raw_agent("broken", None)])
    stats = registry.discover_and_register()

    assert stats.total == len(team) + 1
    assert stats.by_state == {
        "pending": 0,
        "registered": len(team),
        "failed": 1,
    }
    assert registry.agent_count == len(team)
