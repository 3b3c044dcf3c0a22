"""Tests for the lifecycle Audit Trail."""

import json

import pytest

from agentgate.audit import AuditTrail
from agentgate.events import EventBus, EventType


@pytest.fixture
def memory_trail():
    """Create an in-memory trail for testing."""
    return AuditTrail(storage="memory")


def test_record_entry(memory_trail):
    """Test recording an entry."""
    entry = memory_trail.record(
        event_type="activated",
        entity_id="architect",
        session_id="sess_1",
        details={"owner": "vscode-1"},
    )

    assert entry.id.startswith("aud_1_")
    assert entry.seq == 1
    assert entry.event_type == "activated"
    assert entry.entity_id == "architect"
    assert entry.entry_hash is not None
    assert entry.prev_hash is None


def test_hash_chain(memory_trail):
    """Test hash chain linking."""
    entry1 = memory_trail.record(event_type="registered", entity_id="pm")
    entry2 = memory_trail.record(event_type="activated", entity_id="pm")

    assert entry2.prev_hash == entry1.entry_hash


def test_chain_verification(memory_trail):
    """Test chain verification."""
    for i in range(10):
        memory_trail.record(event_type="registered", entity_id=f"agent-{i}")

    result = memory_trail.verify_chain()

    assert result.valid
    assert result.entries_checked == 10


def test_tampering_detected(memory_trail):
    for i in range(5):
        memory_trail.record(event_type="registered", entity_id=f"agent-{i}")

    memory_trail._entries[2].reason = "rewritten"
    result = memory_trail.verify_chain()

    assert not result.valid
    assert result.first_invalid == memory_trail._entries[2].id
    assert "entry_hash mismatch" in result.error


def test_deleted_entry_detected(memory_trail):
    for i in range(5):
        memory_trail.record(event_type="registered", entity_id=f"agent-{i}")

    del memory_trail._entries[1]
    result = memory_trail.verify_chain()

    assert not result.valid
    assert "prev_hash mismatch" in result.error


def test_query_filters(memory_trail):
    memory_trail.record(event_type="registered", entity_id="qa")
    memory_trail.record(event_type="activated", entity_id="qa")
    memory_trail.record(event_type="activated", entity_id="pm")

    assert len(memory_trail.query(entity_id="qa")) == 2
    assert [e.entity_id for e in memory_trail.query(event_type="activated")] == ["pm", "qa"]
    assert len(memory_trail.query(limit=1)) == 1


def test_attach_records_bus_events(memory_trail):
    bus = EventBus()
    unsubscribe = memory_trail.attach(bus)

    bus.emit(EventType.ACTIVATED, "architect", session_id="sess_9", owner="ide")
    bus.emit(EventType.CONFLICT, "architect-c", reason="lower specificity", conflicting_ids=["architect-b"])
    unsubscribe()
    bus.emit(EventType.DEACTIVATED, "architect")

    entries = memory_trail.query()
    assert [e.event_type for e in entries] == ["conflict", "activated"]
    assert entries[0].details == {"conflicting_ids": ["architect-b"]}
    assert entries[1].session_id == "sess_9"


def test_sqlite_chain_continues_after_reopen(tmp_path):
    path = str(tmp_path / "audit" / "audit.db")
    first = AuditTrail(storage="sqlite", path=path)
    first.record(event_type="registered", entity_id="qa")
    last = first.record(event_type="activated", entity_id="qa")
    first.close()

    second = AuditTrail(storage="sqlite", path=path)
    entry = second.record(event_type="deactivated", entity_id="qa")

    assert entry.prev_hash == last.entry_hash
    assert entry.seq == 3
    assert second.verify_chain().valid
    assert second.stats["entry_count"] == 3


def test_export(memory_trail):
    memory_trail.record(event_type="registered", entity_id="qa")
    memory_trail.record(event_type="activated", entity_id="qa")

    exported = json.loads(memory_trail.export("json"))
    assert [e["seq"] for e in exported] == [1, 2]

    lines = memory_trail.export("jsonl").splitlines()
    assert len(lines) == 2
    assert json.loads(lines[1])["event_type"] == "activated"

    with pytest.raises(ValueError):
        memory_trail.export("xml")


def test_unknown_storage():
    with pytest.raises(ValueError):
        AuditTrail(storage="mongodb")
