"""
Tournament Lifecycle Service.

Status state machine:
    Upcoming -> RegistrationOpen -> Ongoing -> Completed
    any non-terminal status -> Cancelled

Completed is reached only through finalization. Completed and Cancelled are
terminal: every later mutation fails with TOURNAMENT_CLOSED. Transitions are
host-triggered; deadlines and start dates never fire on their own.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.core.context import RequestContext
from groupstage.core.tournament_guard import (
    ensure_not_closed, ensure_round_in_range, get_tournament, tournament_transaction
)
from groupstage.errors import ErrorCode, PersistenceError, StateError, ValidationError
from groupstage.orm.base import to_naive_utc, utcnow
from groupstage.orm.tournament import (
    Participant, RoundSetting, Tournament, TournamentFormat, TournamentStatus
)
from groupstage.services.group_formation_service import GroupFormationService

logger = logging.getLogger(__name__)


class LifecycleService:
    """
    Tournament creation and status transitions.
    """

    VALID_TRANSITIONS = {
        TournamentStatus.UPCOMING: [TournamentStatus.REGISTRATION_OPEN, TournamentStatus.CANCELLED],
        TournamentStatus.REGISTRATION_OPEN: [TournamentStatus.ONGOING, TournamentStatus.CANCELLED],
        TournamentStatus.ONGOING: [TournamentStatus.COMPLETED, TournamentStatus.CANCELLED],
        TournamentStatus.COMPLETED: [],  # Terminal state
        TournamentStatus.CANCELLED: [],  # Terminal state
    }

    @staticmethod
    def _is_valid_transition(current: TournamentStatus, new: TournamentStatus) -> bool:
        return new in LifecycleService.VALID_TRANSITIONS.get(current, [])

    @staticmethod
    async def create_tournament(
        db: AsyncSession,
        ctx: RequestContext,
        name: str,
        format: str = TournamentFormat.SOLO.value,
        total_rounds: int = 1,
        total_slots: int = 100,
        teams_per_group: int = 4,
        game: Optional[str] = None,
        registration_deadline: Optional[datetime] = None,
        start_date: Optional[datetime] = None
    ) -> Tournament:
        """
        Create a tournament hosted by the caller.

        Raises:
            ValidationError: blank name, unknown format, or a count below 1
        """
        if not name or not name.strip():
            raise ValidationError("Tournament name is required", ErrorCode.INVALID_INPUT)
        try:
            tournament_format = TournamentFormat(format)
        except ValueError:
            raise ValidationError(
                f"Unknown format '{format}'",
                ErrorCode.INVALID_INPUT,
                {"allowed": [f.value for f in TournamentFormat]}
            )
        for label, value in (
            ("totalRounds", total_rounds),
            ("totalSlots", total_slots),
            ("teamsPerGroup", teams_per_group),
        ):
            if value is None or value < 1:
                raise ValidationError(
                    f"{label} must be at least 1",
                    ErrorCode.INVALID_INPUT,
                    {label: value}
                )

        tournament = Tournament(
            name=name.strip(),
            game=game,
            host_id=ctx.user_id,
            format=tournament_format.value,
            status=TournamentStatus.UPCOMING.value,
            total_rounds=total_rounds,
            current_round=1,
            total_slots=total_slots,
            teams_per_group=teams_per_group,
            registration_deadline=to_naive_utc(registration_deadline),
            start_date=to_naive_utc(start_date),
        )
        db.add(tournament)
        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"[PERSISTENCE] create tournament: {type(e).__name__}: {e}")
            raise PersistenceError() from e

        logger.info(
            f"[TOURNAMENT CREATED] id={tournament.id} host={ctx.user_id} "
            f"format={tournament.format} rounds={total_rounds}"
        )
        return tournament

    @staticmethod
    async def _transition(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        new_status: TournamentStatus
    ) -> Tournament:
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            if new_status != TournamentStatus.CANCELLED:
                ensure_not_closed(tournament)

            current = TournamentStatus(tournament.status)
            if not LifecycleService._is_valid_transition(current, new_status):
                logger.warning(
                    f"[TRANSITION REJECTED] tournament={tournament_id} "
                    f"{current.value} -> {new_status.value}"
                )
                code = (
                    ErrorCode.TOURNAMENT_CLOSED
                    if tournament.is_closed else ErrorCode.STATE_TRANSITION_INVALID
                )
                raise StateError(
                    f"Cannot change status from {current.value} to {new_status.value}",
                    code,
                    {"from": current.value, "to": new_status.value}
                )

            now = utcnow()
            if new_status == TournamentStatus.ONGOING:
                count = await db.execute(
                    select(func.count(Participant.id)).where(
                        Participant.tournament_id == tournament_id,
                        Participant.is_active.is_(True)
                    )
                )
                if (count.scalar() or 0) < 1:
                    raise StateError(
                        "Cannot start a tournament without participants",
                        ErrorCode.INSUFFICIENT_PARTICIPANTS
                    )
                tournament.current_round = 1
                tournament.started_at = now
            elif new_status == TournamentStatus.CANCELLED:
                tournament.cancelled_at = now

            tournament.status = new_status.value
            await db.flush()

            logger.info(
                f"[STATUS CHANGED] tournament={tournament_id} {current.value} -> {new_status.value}"
            )
            return tournament

    @staticmethod
    async def open_registration(db: AsyncSession, tournament_id: int, ctx: Optional[RequestContext]) -> Tournament:
        return await LifecycleService._transition(
            db, tournament_id, ctx, TournamentStatus.REGISTRATION_OPEN
        )

    @staticmethod
    async def start_tournament(db: AsyncSession, tournament_id: int, ctx: Optional[RequestContext]) -> Tournament:
        return await LifecycleService._transition(db, tournament_id, ctx, TournamentStatus.ONGOING)

    @staticmethod
    async def cancel_tournament(db: AsyncSession, tournament_id: int, ctx: Optional[RequestContext]) -> Tournament:
        return await LifecycleService._transition(db, tournament_id, ctx, TournamentStatus.CANCELLED)

    @staticmethod
    async def get_round_settings(
        db: AsyncSession,
        tournament_id: int
    ) -> Dict[int, RoundSetting]:
        result = await db.execute(
            select(RoundSetting)
            .where(RoundSetting.tournament_id == tournament_id)
            .order_by(RoundSetting.round)
        )
        return {s.round: s for s in result.scalars().all()}

    @staticmethod
    async def update_round_settings(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        round_number: int,
        teams_per_group: int,
        round_name: Optional[str] = None,
        total_slots: Optional[int] = None
    ) -> RoundSetting:
        """Upsert a round's name and group capacity; round 1 also updates the tournament default."""
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            ensure_not_closed(tournament)
            ensure_round_in_range(tournament, round_number)
            if teams_per_group is None or teams_per_group < 1:
                raise ValidationError(
                    "teamsPerGroup must be at least 1",
                    ErrorCode.INVALID_INPUT,
                    {"teamsPerGroup": teams_per_group}
                )
            if total_slots is not None and total_slots < 1:
                raise ValidationError(
                    "totalSlots must be at least 1",
                    ErrorCode.INVALID_INPUT,
                    {"totalSlots": total_slots}
                )

            settings_by_round = await LifecycleService.get_round_settings(db, tournament_id)
            setting = settings_by_round.get(round_number)
            if setting is None:
                setting = RoundSetting(tournament_id=tournament_id, round=round_number)
                db.add(setting)

            setting.round_name = round_name or setting.round_name or f"Round {round_number}"
            setting.teams_per_group = teams_per_group
            setting.total_slots = total_slots
            setting.updated_at = utcnow()

            if round_number == 1:
                tournament.teams_per_group = teams_per_group

            await db.flush()
            logger.info(
                f"[ROUND SETTINGS] tournament={tournament_id} round={round_number} "
                f"teamsPerGroup={teams_per_group}"
            )
            return setting

    @staticmethod
    async def get_overview(db: AsyncSession, tournament_id: int) -> Dict[str, Any]:
        """Tournament with its round settings and groups per round."""
        tournament = await get_tournament(db, tournament_id)
        groups_by_round = await GroupFormationService.get_groups_by_round(db, tournament_id)
        round_settings = await LifecycleService.get_round_settings(db, tournament_id)

        data = tournament.to_dict()
        data["roundSettings"] = [s.to_dict() for s in round_settings.values()]
        data["rounds"] = [
            {
                "round": round_number,
                "roundName": (
                    round_settings[round_number].round_name
                    if round_number in round_settings else f"Round {round_number}"
                ),
                "groups": [g.to_dict() for g in groups_by_round.get(round_number, [])],
            }
            for round_number in range(1, tournament.total_rounds + 1)
        ]
        return data
