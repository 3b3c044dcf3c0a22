"""Tests for session snapshot storage."""

import pytest
from datetime import datetime, timedelta, timezone

from agentgate.activation.session import SessionSnapshot, SessionState
from agentgate.activation.storage import (
    MemorySessionStore,
    SQLiteSessionStore,
    create_session_store,
)
from agentgate.errors import StoreUnavailableError


def snapshot(session_id="sess_1", agent_id="architect", minutes=0, state=SessionState.ACTIVE):
    created = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc) + timedelta(minutes=minutes)
    return SessionSnapshot(
        session_id=session_id,
        agent_id=agent_id,
        owner_context="vscode-1",
        created_at=created,
        last_activity_at=created + timedelta(seconds=30),
        state=state,
        timeout_seconds=900.0,
        role_group="architect",
        expansion_pack_id="game-dev",
    )


@pytest.fixture(params=["memory", "sqlite"])
def session_store(request, tmp_path):
    if request.param == "memory":
        return MemorySessionStore()
    return SQLiteSessionStore(db_path=str(tmp_path / "state" / "sessions.db"))


def test_save_and_load(session_store):
    original = snapshot()
    session_store.save(original)

    loaded = session_store.load_all()

    assert loaded == [original]


def test_save_replaces_same_session(session_store):
    session_store.save(snapshot())
    session_store.save(snapshot(state=SessionState.IDLE))

    loaded = session_store.load_all()

    assert len(loaded) == 1
    assert loaded[0].state == SessionState.IDLE


def test_load_orders_by_creation(session_store):
    session_store.save(snapshot("sess_late", "qa", minutes=10))
    session_store.save(snapshot("sess_early", "pm", minutes=1))

    assert [s.session_id for s in session_store.load_all()] == ["sess_early", "sess_late"]


def test_delete(session_store):
    session_store.save(snapshot())

    assert session_store.delete("sess_1") is True
    assert session_store.delete("sess_1") is False
    assert session_store.load_all() == []


def test_memory_store_returns_copies():
    store = MemorySessionStore()
    store.save(snapshot())

    store.load_all()[0].state = SessionState.TERMINATED

    assert store.load_all()[0].state == SessionState.ACTIVE


def test_sqlite_store_survives_reopen(tmp_path):
    db_path = str(tmp_path / "sessions.db")
    SQLiteSessionStore(db_path).save(snapshot())

    reopened = SQLiteSessionStore(db_path)

    assert reopened.count() == 1
    assert reopened.load_all()[0].expansion_pack_id == "game-dev"


def test_sqlite_store_unavailable(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")

    store = SQLiteSessionStore(str(blocker / "sessions.db"))
    assert not store.available

    with pytest.raises(StoreUnavailableError):
        store.load_all()
    with pytest.raises(StoreUnavailableError):
        store.save(snapshot())


def test_sqlite_store_recovers_once_path_is_usable(tmp_path):
    blocker = tmp_path / "state"
    blocker.write_text("")
    store = SQLiteSessionStore(str(blocker / "sessions.db"))

    blocker.unlink()
    store.save(snapshot())

    assert store.available
    assert store.count() == 1


def test_snapshot_dict_roundtrip():
    original = snapshot()
    assert SessionSnapshot.from_dict(original.to_dict()) == original


def test_create_session_store(tmp_path):
    assert isinstance(create_session_store("memory"), MemorySessionStore)
    assert isinstance(
        create_session_store("sqlite", str(tmp_path / "s.db")),
        SQLiteSessionStore,
    )
    with pytest.raises(ValueError):
        create_session_store("redis")
