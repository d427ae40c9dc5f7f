"""
Registration Service: the tournament's participant pool.

Solo tournaments register individual players; Duo and Squad tournaments
register teams of exactly 2 or 4 members (captain included). Registration is
capped by totalSlots and a user can hold one registration per tournament,
either as a player, a captain or a team member.

Seed order is registration order; round-1 group formation consumes the pool
in that order.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.core.context import RequestContext
from groupstage.core.tournament_guard import tournament_transaction
from groupstage.errors import ErrorCode, StateError, ValidationError, participant_not_found
from groupstage.orm.group import Group, GroupMember
from groupstage.orm.tournament import (
    FORMAT_TEAM_SIZE, Participant, ParticipantKind, Tournament, TournamentFormat, TournamentStatus
)
from groupstage.services.participants import load_participants

logger = logging.getLogger(__name__)

# Statuses in which players may join or leave on their own
SELF_SERVICE_STATES = {TournamentStatus.REGISTRATION_OPEN.value}

# Statuses in which the host may still edit the pool
HOST_EDIT_STATES = {TournamentStatus.UPCOMING.value, TournamentStatus.REGISTRATION_OPEN.value}


def _normalize_members(members: Optional[Sequence[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    normalized = []
    for member in members or []:
        user_id = member.get("userId") or member.get("user_id")
        if not user_id:
            raise ValidationError("Every team member needs a userId", ErrorCode.INVALID_INPUT)
        normalized.append({"userId": str(user_id), "username": member.get("username")})
    return normalized


class RegistrationService:
    """Join, leave and host-side registration."""

    @staticmethod
    async def _registered_user_ids(db: AsyncSession, tournament_id: int) -> Dict[str, int]:
        """Every user id already holding a registration -> participant id."""
        taken = {}
        for participant in await load_participants(db, tournament_id):
            if participant.user_id:
                taken[participant.user_id] = participant.id
            for member in participant.members or []:
                if member.get("userId"):
                    taken[str(member["userId"])] = participant.id
        return taken

    @staticmethod
    async def _register(
        db: AsyncSession,
        tournament: Tournament,
        user_id: Optional[str],
        username: Optional[str],
        name: Optional[str],
        display_name: Optional[str],
        members: Optional[Sequence[Dict[str, Any]]]
    ) -> Participant:
        team_size = FORMAT_TEAM_SIZE[TournamentFormat(tournament.format)]

        count = await db.execute(
            select(func.count(Participant.id)).where(
                Participant.tournament_id == tournament.id,
                Participant.is_active.is_(True)
            )
        )
        if (count.scalar() or 0) >= tournament.total_slots:
            raise StateError(
                f"Tournament is full ({tournament.total_slots} slots)",
                ErrorCode.TOURNAMENT_FULL,
                {"totalSlots": tournament.total_slots}
            )

        if team_size == 1:
            kind = ParticipantKind.PLAYER
            roster = []
        else:
            kind = ParticipantKind.TEAM
            if not name or not name.strip():
                raise ValidationError("A team name is required", ErrorCode.INVALID_INPUT)
            roster = _normalize_members(members)
            if user_id:
                roster = [{"userId": user_id, "username": username}] + [
                    m for m in roster if m["userId"] != user_id
                ]
            if len(roster) != team_size:
                raise ValidationError(
                    f"A {tournament.format} team needs exactly {team_size} members, got {len(roster)}",
                    ErrorCode.INVALID_INPUT,
                    {"expected": team_size, "got": len(roster)}
                )

        claimed = [m["userId"] for m in roster] or ([user_id] if user_id else [])
        if len(set(claimed)) != len(claimed):
            raise ValidationError("A user can appear only once in a team", ErrorCode.INVALID_INPUT)

        taken = await RegistrationService._registered_user_ids(db, tournament.id)
        clashes = [uid for uid in claimed if uid in taken]
        if clashes:
            raise StateError(
                "Already registered for this tournament",
                ErrorCode.ALREADY_REGISTERED,
                {"userIds": clashes}
            )

        last_seed = await db.execute(
            select(func.max(Participant.seed_order)).where(Participant.tournament_id == tournament.id)
        )
        participant = Participant(
            tournament_id=tournament.id,
            kind=kind.value,
            user_id=user_id,
            username=username,
            name=name.strip() if name else None,
            display_name=display_name,
            members=roster or None,
            seed_order=(last_seed.scalar() or 0) + 1,
            is_active=True,
        )
        db.add(participant)
        await db.flush()

        logger.info(
            f"[REGISTERED] tournament={tournament.id} participant={participant.id} "
            f"kind={kind.value} user={user_id}"
        )
        return participant

    @staticmethod
    async def join(
        db: AsyncSession,
        tournament_id: int,
        ctx: RequestContext,
        team_name: Optional[str] = None,
        members: Optional[Sequence[Dict[str, Any]]] = None,
        display_name: Optional[str] = None
    ) -> Participant:
        """Caller registers as a player (Solo) or as captain of a team (Duo/Squad)."""
        async with tournament_transaction(db, tournament_id, ctx, require_host=False) as tournament:
            if tournament.status not in SELF_SERVICE_STATES:
                raise StateError(
                    f"Registration is not open (status {tournament.status})",
                    ErrorCode.REGISTRATION_CLOSED,
                    {"status": tournament.status}
                )
            return await RegistrationService._register(
                db, tournament, ctx.user_id, ctx.username, team_name, display_name, members
            )

    @staticmethod
    async def add_participant(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        user_id: Optional[str] = None,
        username: Optional[str] = None,
        name: Optional[str] = None,
        display_name: Optional[str] = None,
        members: Optional[Sequence[Dict[str, Any]]] = None
    ) -> Participant:
        """Host registers someone directly, also before registration opens."""
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            if tournament.status not in HOST_EDIT_STATES:
                raise StateError(
                    f"Participants cannot be added while the tournament is {tournament.status}",
                    ErrorCode.REGISTRATION_CLOSED,
                    {"status": tournament.status}
                )
            return await RegistrationService._register(
                db, tournament, user_id, username, name, display_name, members
            )

    @staticmethod
    async def leave(db: AsyncSession, tournament_id: int, ctx: RequestContext) -> int:
        """Caller withdraws their registration (player or captain). Returns the participant id."""
        async with tournament_transaction(db, tournament_id, ctx, require_host=False) as tournament:
            if tournament.status not in SELF_SERVICE_STATES:
                raise StateError(
                    f"Registration is not open (status {tournament.status})",
                    ErrorCode.REGISTRATION_CLOSED,
                    {"status": tournament.status}
                )

            result = await db.execute(
                select(Participant).where(
                    Participant.tournament_id == tournament_id,
                    Participant.user_id == ctx.user_id
                )
            )
            participant = result.scalar_one_or_none()
            if participant is None:
                raise participant_not_found(ctx.user_id)
            participant_id = participant.id

            seats = await db.execute(
                select(GroupMember).where(GroupMember.participant_id == participant_id)
            )
            for seat in seats.scalars().all():
                group = await db.get(Group, seat.group_id)
                if group is not None and seat in group.members:
                    group.members.remove(seat)
                else:
                    await db.delete(seat)

            await db.delete(participant)
            await db.flush()

            logger.info(f"[LEFT] tournament={tournament_id} participant={participant_id} user={ctx.user_id}")
            return participant_id

    @staticmethod
    async def list_participants(db: AsyncSession, tournament_id: int) -> List[Participant]:
        return await load_participants(db, tournament_id)
