"""
Participant references and display names.

A reference to a competitor is either still a bare id (`Unresolved`) or a
loaded Participant row (`Resolved`). Consumers resolve once after loading
with `resolve_refs` and never inspect the payload type themselves.

`resolve_display_name` is the single place a participant's name is derived.
Precedence:
    display_name -> name -> username -> "Player #<id>" / "Team #<id>"
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.orm.tournament import Participant, ParticipantKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Unresolved:
    id: int

    @property
    def display_name(self) -> str:
        return f"Participant #{self.id}"


@dataclass(frozen=True)
class Resolved:
    participant: Participant

    @property
    def id(self) -> int:
        return self.participant.id

    @property
    def display_name(self) -> str:
        return resolve_display_name(self.participant)


ParticipantRef = Union[Unresolved, Resolved]


def resolve_display_name(participant: Optional[Participant]) -> Optional[str]:
    if participant is None:
        return None

    for candidate in (participant.display_name, participant.name, participant.username):
        if candidate and candidate.strip():
            return candidate.strip()

    if participant.kind == ParticipantKind.TEAM.value:
        return f"Team #{participant.id}"
    return f"Player #{participant.id}"


async def load_participants(
    db: AsyncSession,
    tournament_id: int,
    participant_ids: Optional[Iterable[int]] = None,
    active_only: bool = True,
) -> List[Participant]:
    """Registration pool in seed order, optionally restricted to some ids."""
    query = select(Participant).where(Participant.tournament_id == tournament_id)
    if active_only:
        query = query.where(Participant.is_active.is_(True))
    if participant_ids is not None:
        ids = list(participant_ids)
        if not ids:
            return []
        query = query.where(Participant.id.in_(ids))
    query = query.order_by(Participant.seed_order, Participant.id)

    result = await db.execute(query)
    return list(result.scalars().all())


async def resolve_refs(
    db: AsyncSession,
    tournament_id: int,
    refs: Iterable[ParticipantRef],
) -> List[ParticipantRef]:
    """
    Resolve every Unresolved reference with one query.

    Ids that do not belong to the tournament stay Unresolved; order is kept.
    """
    refs = list(refs)
    missing = {ref.id for ref in refs if isinstance(ref, Unresolved)}
    if not missing:
        return refs

    loaded = {
        p.id: p
        for p in await load_participants(db, tournament_id, missing, active_only=False)
    }

    resolved: List[ParticipantRef] = []
    for ref in refs:
        if isinstance(ref, Unresolved) and ref.id in loaded:
            resolved.append(Resolved(loaded[ref.id]))
        else:
            resolved.append(ref)
    return resolved


async def display_names(
    db: AsyncSession,
    tournament_id: int,
    participant_ids: Iterable[int],
) -> Dict[int, str]:
    """Map participant id -> display name for every id given."""
    refs = await resolve_refs(db, tournament_id, [Unresolved(pid) for pid in set(participant_ids)])
    return {ref.id: ref.display_name for ref in refs}
