"""
Lifecycle Audit Trail

Records every registry and activation event in a hash-chained log.
Each entry is chained to the previous one, so any edit or deletion in the
middle of the log is detected by verify_chain().

Chain Structure:
    Entry N: { data, prev_hash: hash(Entry N-1), hash: hash(data + prev_hash) }
"""

import json
import hashlib
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, List, Any, Callable

from ..events import AgentEvent, EventBus

logger = logging.getLogger("agentgate.audit")


@dataclass
class AuditEntry:
    """A single entry in the audit chain."""
    id: str
    seq: int
    timestamp: datetime
    event_type: str
    entity_id: str
    reason: Optional[str] = None
    session_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    # Chain
    prev_hash: Optional[str] = None
    entry_hash: Optional[str] = None

    def compute_hash(self) -> str:
        """Compute hash of this entry."""
        data = {
            "id": self.id,
            "seq": self.seq,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "entity_id": self.entity_id,
            "reason": self.reason,
            "session_id": self.session_id,
            "details": self.details,
            "prev_hash": self.prev_hash,
        }
        json_str = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(json_str.encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "seq": self.seq,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "entity_id": self.entity_id,
            "reason": self.reason,
            "session_id": self.session_id,
            "details": self.details,
            "prev_hash": self.prev_hash,
            "entry_hash": self.entry_hash,
        }


@dataclass
class ChainVerification:
    """Verification result for the audit chain."""
    valid: bool
    entries_checked: int
    first_invalid: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "entries_checked": self.entries_checked,
            "first_invalid": self.first_invalid,
            "error": self.error,
        }


class AuditTrail:
    """
    Hash-chained audit log of lifecycle events.

    Storage backends:
    - sqlite (default): Local SQLite database
    - memory: In-memory (for testing)
    """

    def __init__(self, storage: str = "sqlite", path: str = "./.agentgate/audit.db"):
        if storage not in ("sqlite", "memory"):
            raise ValueError(f"Unknown audit storage: {storage}")
        self.storage = storage
        self.path = path
        self._last_hash: Optional[str] = None
        self._entry_count = 0
        self._lock = threading.Lock()
        self._entries: List[AuditEntry] = []

        if storage == "sqlite":
            self._init_sqlite()

    def _init_sqlite(self):
        """Initialize SQLite storage."""
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_entries (
                id TEXT PRIMARY KEY,
                seq INTEGER NOT NULL,
                timestamp TEXT NOT NULL,
                event_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                reason TEXT,
                session_id TEXT,
                details TEXT,
                prev_hash TEXT,
                entry_hash TEXT NOT NULL
            )
        """)
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_seq ON audit_entries(seq)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_entries(entity_id)")
        self._conn.commit()

        row = self._conn.execute(
            "SELECT entry_hash, seq FROM audit_entries ORDER BY seq DESC LIMIT 1"
        ).fetchone()
        if row:
            self._last_hash = row[0]
            self._entry_count = row[1]

    def attach(self, bus: EventBus) -> Callable[[], None]:
        """Subscribe to every event on the bus. Returns the unsubscribe function."""
        return bus.subscribe(self.record_event)

    def record_event(self, event: AgentEvent) -> AuditEntry:
        return self.record(
            event_type=event.type.value,
            entity_id=event.entity_id,
            reason=event.reason,
            session_id=event.session_id,
            details=event.details,
            timestamp=event.timestamp,
        )

    def record(
        self,
        event_type: str,
        entity_id: str,
        reason: str = None,
        session_id: str = None,
        details: Dict[str, Any] = None,
        timestamp: datetime = None,
    ) -> AuditEntry:
        """
        Append an event to the audit chain.

        Returns the created entry with computed hash.
        """
        with self._lock:
            self._entry_count += 1
            timestamp = timestamp or datetime.now(timezone.utc)
            entry = AuditEntry(
                id=f"aud_{self._entry_count}_{timestamp.strftime('%Y%m%d%H%M%S%f')}",
                seq=self._entry_count,
                timestamp=timestamp,
                event_type=event_type,
                entity_id=entity_id,
                reason=reason,
                session_id=session_id,
                details=json.loads(json.dumps(details or {}, default=str)),
                prev_hash=self._last_hash,
            )
            entry.entry_hash = entry.compute_hash()
            self._store_entry(entry)
            self._last_hash = entry.entry_hash
            return entry

    def _store_entry(self, entry: AuditEntry):
        if self.storage == "sqlite":
            self._conn.execute("""
                INSERT INTO audit_entries
                (id, seq, timestamp, event_type, entity_id, reason, session_id,
                 details, prev_hash, entry_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                entry.id,
                entry.seq,
                entry.timestamp.isoformat(),
                entry.event_type,
                entry.entity_id,
                entry.reason,
                entry.session_id,
                json.dumps(entry.details) if entry.details else None,
                entry.prev_hash,
                entry.entry_hash,
            ))
            self._conn.commit()
        else:
            self._entries.append(entry)

    def query(
        self,
        entity_id: str = None,
        event_type: str = None,
        since: datetime = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        """Query audit entries, newest first."""
        if self.storage == "sqlite":
            return self._query_sqlite(entity_id, event_type, since, limit)
        return self._query_memory(entity_id, event_type, since, limit)

    def _query_sqlite(self, entity_id, event_type, since, limit) -> List[AuditEntry]:
        query = "SELECT * FROM audit_entries WHERE 1=1"
        params: List[Any] = []

        if entity_id:
            query += " AND entity_id = ?"
            params.append(entity_id)
        if event_type:
            query += " AND event_type = ?"
            params.append(event_type)
        if since:
            query += " AND timestamp >= ?"
            params.append(since.isoformat())

        query += " ORDER BY seq DESC LIMIT ?"
        params.append(limit)

        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [
            AuditEntry(
                id=row[0],
                seq=row[1],
                timestamp=datetime.fromisoformat(row[2]),
                event_type=row[3],
                entity_id=row[4],
                reason=row[5],
                session_id=row[6],
                details=json.loads(row[7]) if row[7] else {},
                prev_hash=row[8],
                entry_hash=row[9],
            )
            for row in rows
        ]

    def _query_memory(self, entity_id, event_type, since, limit) -> List[AuditEntry]:
        entries = self._entries

        if entity_id:
            entries = [e for e in entries if e.entity_id == entity_id]
        if event_type:
            entries = [e for e in entries if e.event_type == event_type]
        if since:
            entries = [e for e in entries if e.timestamp >= since]

        return sorted(entries, key=lambda e: e.seq, reverse=True)[:limit]

    def verify_chain(self, limit: int = None) -> ChainVerification:
        """
        Verify the integrity of the audit chain.

        Returns verification result with first invalid entry if found.
        """
        entries = self.query(limit=limit or 100000)
        entries = sorted(entries, key=lambda e: e.seq)

        prev_hash = entries[0].prev_hash if entries and limit else None
        checked = 0

        for entry in entries:
            checked += 1

            if entry.prev_hash != prev_hash:
                return ChainVerification(
                    valid=False,
                    entries_checked=checked,
                    first_invalid=entry.id,
                    error=f"prev_hash mismatch at {entry.id}",
                )

            if entry.entry_hash != entry.compute_hash():
                return ChainVerification(
                    valid=False,
                    entries_checked=checked,
                    first_invalid=entry.id,
                    error=f"entry_hash mismatch at {entry.id}",
                )

            prev_hash = entry.entry_hash

        return ChainVerification(valid=True, entries_checked=checked)

    def export(self, format: str = "json") -> str:
        """Export the audit log, oldest first."""
        entries = sorted(self.query(limit=100000), key=lambda e: e.seq)

        if format == "json":
            return json.dumps([e.to_dict() for e in entries], indent=2)
        elif format == "jsonl":
            return "\n".join(json.dumps(e.to_dict()) for e in entries)
        else:
            raise ValueError(f"Unknown format: {format}")

    def close(self) -> None:
        if self.storage == "sqlite":
            with self._lock:
                self._conn.close()

    @property
    def stats(self) -> Dict[str, Any]:
        """Get audit trail statistics."""
        return {
            "storage": self.storage,
            "entry_count": self._entry_count,
            "last_hash": self._last_hash,
        }
