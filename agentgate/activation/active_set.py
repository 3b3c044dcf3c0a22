"""Live sessions indexed by agent id and by (role group, pack) slot."""

from typing import Optional, Dict, List, Tuple, Iterator

from .session import Session

Slot = Tuple[Optional[str], Optional[str]]


class ActiveSet:
    """Sessions in Active or Idle state. Callers hold the manager lock."""

    def __init__(self):
        self._by_agent: Dict[str, Session] = {}
        self._by_slot: Dict[Slot, Dict[str, Session]] = {}

    def add(self, session: Session) -> None:
        if session.agent_id in self._by_agent:
            raise ValueError(f"Agent {session.agent_id} already has a live session")
        self._by_agent[session.agent_id] = session
        self._by_slot.setdefault(session.slot, {})[session.agent_id] = session

    def remove(self, agent_id: str) -> Optional[Session]:
        session = self._by_agent.pop(agent_id, None)
        if session is None:
            return None
        bucket = self._by_slot.get(session.slot, {})
        bucket.pop(agent_id, None)
        if not bucket:
            self._by_slot.pop(session.slot, None)
        return session

    def get(self, agent_id: str) -> Optional[Session]:
        return self._by_agent.get(agent_id)

    def in_slot(self, role_group: Optional[str], expansion_pack_id: Optional[str]) -> List[Session]:
        return list(self._by_slot.get((role_group, expansion_pack_id), {}).values())

    def agent_ids(self) -> List[str]:
        return list(self._by_agent)

    def sessions(self) -> List[Session]:
        return sorted(self._by_agent.values(), key=lambda s: s.created_at)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._by_agent

    def __len__(self) -> int:
        return len(self._by_agent)

    def __iter__(self) -> Iterator[Session]:
        return iter(self.sessions())
