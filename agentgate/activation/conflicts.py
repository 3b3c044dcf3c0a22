"""
Activation Conflict Resolution

Decides whether a candidate agent may join the active set when other
agents already occupy its role slot.

Two agents compete when they share a role group, or when both belong to
the same expansion pack and their role groups are declared mutually
exclusive for packs (pm/po by default). Exempt role groups (dev) never
compete.

Specificity: +2 for a pack-scoped agent, +1 when the agent's role group
is one of the request's tags. The candidate must beat every incumbent
strictly; ties are reported, never guessed.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Iterable, FrozenSet

from ..agents.models import ActivationContext, AgentDescriptor
from .session import Session


@dataclass
class ConflictPolicy:
    exempt_role_groups: FrozenSet[str] = frozenset({"dev"})
    pack_exclusive_groups: List[FrozenSet[str]] = field(
        default_factory=lambda: [frozenset({"pm", "po"})]
    )

    @classmethod
    def from_lists(
        cls,
        exempt_role_groups: Iterable[str] = ("dev",),
        pack_exclusive_groups: Iterable[Iterable[str]] = (("pm", "po"),),
    ) -> "ConflictPolicy":
        return cls(
            exempt_role_groups=frozenset(exempt_role_groups),
            pack_exclusive_groups=[frozenset(g) for g in pack_exclusive_groups],
        )

    def competes(
        self,
        role_group: Optional[str],
        expansion_pack_id: Optional[str],
        other_role_group: Optional[str],
        other_pack_id: Optional[str],
    ) -> bool:
        """Whether two agents compete for the same slot."""
        if role_group is None or other_role_group is None:
            return False
        if role_group in self.exempt_role_groups or other_role_group in self.exempt_role_groups:
            return False
        if role_group == other_role_group:
            return True
        if expansion_pack_id and expansion_pack_id == other_pack_id:
            pair = {role_group, other_role_group}
            return any(pair <= group for group in self.pack_exclusive_groups)
        return False


def specificity_score(
    role_group: Optional[str],
    expansion_pack_id: Optional[str],
    context: ActivationContext,
) -> int:
    score = 0
    if expansion_pack_id:
        score += 2
    if role_group and role_group in context.tags:
        score += 1
    return score


@dataclass
class ConflictDecision:
    """Outcome of checking a candidate against the active set."""
    candidate_score: int = 0
    displace: List[Session] = field(default_factory=list)
    blocking: List[Session] = field(default_factory=list)
    tied: List[Session] = field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return not self.blocking and not self.tied

    @property
    def conflicting_ids(self) -> List[str]:
        return [s.agent_id for s in self.tied + self.blocking]


def resolve_conflicts(
    candidate: AgentDescriptor,
    context: ActivationContext,
    live_sessions: Iterable[Session],
    policy: ConflictPolicy,
) -> ConflictDecision:
    """
    Compare the candidate with every competing live session.

    Nothing is mutated here; the caller displaces incumbents only once the
    whole activation is known to succeed.
    """
    decision = ConflictDecision(
        candidate_score=specificity_score(candidate.role_group, candidate.expansion_pack_id, context)
    )
    for session in live_sessions:
        if session.agent_id == candidate.id:
            continue
        if not policy.competes(
            candidate.role_group, candidate.expansion_pack_id,
            session.role_group, session.expansion_pack_id,
        ):
            continue
        incumbent_score = specificity_score(session.role_group, session.expansion_pack_id, context)
        if decision.candidate_score > incumbent_score:
            decision.displace.append(session)
        elif decision.candidate_score == incumbent_score:
            decision.tied.append(session)
        else:
            decision.blocking.append(session)
    return decision
