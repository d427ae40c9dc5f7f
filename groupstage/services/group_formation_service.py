"""
Group Formation Service

Partitions a participant pool into fixed-capacity groups for one round.

Core Principles:
- ZERO randomness: participants are chunked contiguously in pool order
- Labels are sequential: Group A..Z, then Group AA, AB, ...
- Regeneration replaces the round's groups, never accumulates them
- A participant sits in at most one group per round (unique constraint backed)
- Touches only Group/GroupMember rows; matches and results belong to other services
"""
import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.core.context import RequestContext
from groupstage.core.tournament_guard import (
    ensure_not_closed, ensure_round_in_range, tournament_transaction
)
from groupstage.errors import (
    ErrorCode, StateError, ValidationError, group_not_found, participant_not_found
)
from groupstage.orm.group import Group, GroupMember
from groupstage.orm.tournament import Participant, RoundSetting, Tournament
from groupstage.services.participants import load_participants

logger = logging.getLogger(__name__)

_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def group_label(index: int) -> str:
    """
    Pure function: 0-based index -> group name.

    Bijective base-26, so there is no gap between Z and AA:
        0 -> "Group A", 25 -> "Group Z", 26 -> "Group AA", 701 -> "Group ZZ"
    """
    if index < 0:
        raise ValueError(f"Group index must be >= 0, got {index}")

    letters = ""
    n = index + 1
    while n > 0:
        n, remainder = divmod(n - 1, 26)
        letters = _ALPHABET[remainder] + letters
    return f"Group {letters}"


def group_sort_key(name: str):
    """Stable label order: shorter suffixes first, then alphabetical (Z before AA)."""
    suffix = name[len("Group "):] if name.startswith("Group ") else name
    return (len(suffix), suffix)


def partition(pool: Sequence[int], capacity: int) -> List[List[int]]:
    """
    Pure function: contiguous chunks of `capacity`, in pool order.

    The number of chunks is always ceil(len(pool) / capacity); only the last
    chunk may be short.
    """
    if capacity < 1:
        raise ValidationError(
            f"Group capacity must be at least 1, got {capacity}",
            ErrorCode.INVALID_INPUT,
            {"capacity": capacity}
        )
    if not pool:
        raise StateError(
            "Cannot form groups from an empty participant pool",
            ErrorCode.INSUFFICIENT_PARTICIPANTS
        )

    seen = set()
    duplicates = []
    for pid in pool:
        if pid in seen:
            duplicates.append(pid)
        seen.add(pid)
    if duplicates:
        raise ValidationError(
            "A participant may appear only once in the pool",
            ErrorCode.DUPLICATE_TEAM,
            {"duplicates": duplicates}
        )

    num_groups = math.ceil(len(pool) / capacity)
    return [list(pool[i * capacity:(i + 1) * capacity]) for i in range(num_groups)]


class GroupFormationService:
    """Group aggregate writer for a tournament round."""

    @staticmethod
    async def get_round_groups(
        db: AsyncSession,
        tournament_id: int,
        round_number: int
    ) -> List[Group]:
        result = await db.execute(
            select(Group)
            .where(
                Group.tournament_id == tournament_id,
                Group.round == round_number
            )
            .order_by(Group.position, Group.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_groups_by_round(db: AsyncSession, tournament_id: int) -> Dict[int, List[Group]]:
        result = await db.execute(
            select(Group)
            .where(Group.tournament_id == tournament_id)
            .order_by(Group.round, Group.position, Group.id)
        )
        by_round: Dict[int, List[Group]] = {}
        for group in result.scalars().all():
            by_round.setdefault(group.round, []).append(group)
        return by_round

    @staticmethod
    async def get_group(
        db: AsyncSession,
        tournament_id: int,
        group_id: int,
        round_number: Optional[int] = None
    ) -> Group:
        query = select(Group).where(Group.id == group_id, Group.tournament_id == tournament_id)
        if round_number is not None:
            query = query.where(Group.round == round_number)
        result = await db.execute(query)
        group = result.scalar_one_or_none()
        if group is None:
            raise group_not_found(group_id)
        return group

    @staticmethod
    async def resolve_capacity(
        db: AsyncSession,
        tournament: Tournament,
        round_number: int
    ) -> int:
        """Saved round setting wins over the tournament's round-1 default."""
        result = await db.execute(
            select(RoundSetting).where(
                RoundSetting.tournament_id == tournament.id,
                RoundSetting.round == round_number
            )
        )
        setting = result.scalar_one_or_none()
        if setting is not None:
            return setting.teams_per_group
        return tournament.teams_per_group

    @staticmethod
    async def delete_round_groups(
        db: AsyncSession,
        tournament_id: int,
        round_number: int
    ) -> int:
        groups = await GroupFormationService.get_round_groups(db, tournament_id, round_number)
        for group in groups:
            await db.delete(group)
        await db.flush()
        return len(groups)

    @staticmethod
    async def write_groups(
        db: AsyncSession,
        tournament: Tournament,
        round_number: int,
        participant_ids: Sequence[int],
        capacity: int
    ) -> List[Group]:
        """
        Replace the round's groups with a fresh partition of `participant_ids`.

        Runs inside the caller's tournament transaction; never commits.
        Validation happens before the existing groups are removed.
        """
        chunks = partition(participant_ids, capacity)

        removed = await GroupFormationService.delete_round_groups(db, tournament.id, round_number)

        groups = []
        for position, chunk in enumerate(chunks):
            group = Group(
                tournament_id=tournament.id,
                round=round_number,
                name=group_label(position),
                position=position,
                capacity=capacity,
                members=[
                    GroupMember(
                        tournament_id=tournament.id,
                        round=round_number,
                        participant_id=pid,
                        seat=seat
                    )
                    for seat, pid in enumerate(chunk)
                ]
            )
            db.add(group)
            groups.append(group)

        await db.flush()

        logger.info(
            f"[GROUPS FORMED] tournament={tournament.id} round={round_number} "
            f"groups={len(groups)} participants={len(participant_ids)} "
            f"capacity={capacity} replaced={removed}"
        )
        return groups

    @staticmethod
    async def validate_pool(
        db: AsyncSession,
        tournament_id: int,
        participant_ids: Sequence[int]
    ) -> None:
        registered = {
            p.id for p in await load_participants(db, tournament_id, participant_ids)
        }
        for pid in participant_ids:
            if pid not in registered:
                raise participant_not_found(pid)

    @staticmethod
    async def prepare_pool(
        db: AsyncSession,
        tournament: Tournament,
        round_number: int,
        participant_ids: Optional[Sequence[int]],
        capacity: Optional[int]
    ) -> Tuple[List[int], int]:
        """
        Resolve the pool and capacity for a round and validate them.

        The registration pool is the default only for round 1; later rounds
        are fed from qualification.
        """
        if participant_ids is None:
            if round_number != 1:
                raise ValidationError(
                    "participantIds is required for rounds after the first",
                    ErrorCode.INVALID_INPUT,
                    {"round": round_number}
                )
            pool = [p.id for p in await load_participants(db, tournament.id)]
        else:
            pool = list(participant_ids)

        if capacity is None:
            capacity = await GroupFormationService.resolve_capacity(db, tournament, round_number)

        partition(pool, capacity)
        if participant_ids is not None:
            await GroupFormationService.validate_pool(db, tournament.id, pool)
        return pool, capacity

    @staticmethod
    async def form_groups(
        db: AsyncSession,
        tournament_id: int,
        round_number: int,
        ctx: Optional[RequestContext],
        participant_ids: Optional[Sequence[int]] = None,
        capacity: Optional[int] = None
    ) -> List[Group]:
        """
        Form (or regenerate) a round's groups as one serialized unit of work.

        Args:
            db: Database session
            tournament_id: Tournament id
            round_number: Round whose groups are replaced
            ctx: Caller; must be the host
            participant_ids: Pool in seed order; defaults to the registration
                pool, which only exists for round 1
            capacity: Group size; defaults to the round setting, then the
                tournament's teams_per_group

        Returns:
            The new groups in label order
        """
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            ensure_not_closed(tournament)
            ensure_round_in_range(tournament, round_number)

            pool, capacity = await GroupFormationService.prepare_pool(
                db, tournament, round_number, participant_ids, capacity
            )
            return await GroupFormationService.write_groups(
                db, tournament, round_number, pool, capacity
            )

    @staticmethod
    async def assign_participant(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        participant_id: int,
        group_id: Optional[int],
        round_number: int
    ) -> Optional[Group]:
        """
        Move one participant into `group_id`, or out of every group of the
        round when `group_id` is None.

        Returns:
            The target group, or None for a removal

        Raises:
            NotFoundError: participant or group unknown for this tournament/round
            StateError: CAPACITY_EXCEEDED when the target group is full
        """
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            ensure_not_closed(tournament)
            ensure_round_in_range(tournament, round_number)

            result = await db.execute(
                select(Participant).where(
                    Participant.id == participant_id,
                    Participant.tournament_id == tournament_id,
                    Participant.is_active.is_(True)
                )
            )
            if result.scalar_one_or_none() is None:
                raise participant_not_found(participant_id)

            target = None
            if group_id is not None:
                target = await GroupFormationService.get_group(db, tournament_id, group_id, round_number)

            result = await db.execute(
                select(GroupMember).where(
                    GroupMember.tournament_id == tournament_id,
                    GroupMember.round == round_number,
                    GroupMember.participant_id == participant_id
                )
            )
            current = result.scalar_one_or_none()
            previous_group_id = current.group_id if current is not None else None

            if target is not None and current is not None and current.group_id == target.id:
                return target

            if target is not None and target.is_full:
                logger.warning(
                    f"[GROUP FULL] tournament={tournament_id} group={target.id} "
                    f"participant={participant_id}"
                )
                raise StateError(
                    f"{target.name} is full ({target.capacity} participants)",
                    ErrorCode.CAPACITY_EXCEEDED,
                    {"groupId": target.id, "capacity": target.capacity}
                )

            if current is not None:
                previous_group = await db.get(Group, previous_group_id)
                if previous_group is not None and current in previous_group.members:
                    previous_group.members.remove(current)
                else:
                    await db.delete(current)
                await db.flush()

            if target is not None:
                next_seat = max((m.seat for m in target.members), default=-1) + 1
                target.members.append(
                    GroupMember(
                        tournament_id=tournament_id,
                        round=round_number,
                        participant_id=participant_id,
                        seat=next_seat
                    )
                )
                await db.flush()

            logger.info(
                f"[PARTICIPANT ASSIGNED] tournament={tournament_id} round={round_number} "
                f"participant={participant_id} from={previous_group_id} "
                f"to={target.id if target else None}"
            )
            return target
