"""
Round Scheduler: match time-slots inside a round's groups.

Purely temporal bookkeeping: a group-stage match is a slot for the whole
group (no team1/team2), with a time, venue and description. Nothing here
reads or writes results or qualification.

Match status machine:
    Scheduled -> InProgress -> Completed
    Scheduled | InProgress -> Cancelled

Scheduled times are advisory; no timer ever moves a match on its own.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.config.settings import settings
from groupstage.core.context import RequestContext
from groupstage.core.tournament_guard import (
    ensure_not_closed, ensure_round_in_range, tournament_transaction
)
from groupstage.errors import ErrorCode, StateError, ValidationError, match_not_found
from groupstage.orm.base import to_naive_utc, utcnow
from groupstage.orm.group import Group
from groupstage.orm.match import Match, MatchStatus
from groupstage.services.group_formation_service import GroupFormationService

logger = logging.getLogger(__name__)


@dataclass
class MatchSlot:
    """Per-match details supplied at creation; every field is optional."""
    scheduled_time: Optional[datetime] = None
    venue: Optional[str] = None
    description: Optional[str] = None
    duration_minutes: Optional[int] = None


class RoundScheduler:
    """Creates, edits and deletes match slots for a tournament round."""

    VALID_TRANSITIONS = {
        MatchStatus.SCHEDULED: [MatchStatus.IN_PROGRESS, MatchStatus.CANCELLED],
        MatchStatus.IN_PROGRESS: [MatchStatus.COMPLETED, MatchStatus.CANCELLED],
        MatchStatus.COMPLETED: [],
        MatchStatus.CANCELLED: [],
    }

    @staticmethod
    def _is_valid_transition(current: str, new: MatchStatus) -> bool:
        return new in RoundScheduler.VALID_TRANSITIONS.get(MatchStatus(current), [])

    @staticmethod
    def default_scheduled_time() -> Optional[datetime]:
        """None unless SCHEDULE_DEFAULT_TIME=now."""
        if settings.schedule_defaults_to_now():
            return utcnow()
        return None

    @staticmethod
    async def list_matches(
        db: AsyncSession,
        tournament_id: int,
        round_number: Optional[int] = None,
        group_id: Optional[int] = None
    ) -> List[Match]:
        query = select(Match).where(Match.tournament_id == tournament_id)
        if round_number is not None:
            query = query.where(Match.round == round_number)
        if group_id is not None:
            query = query.where(Match.group_id == group_id)
        query = query.order_by(Match.round, Match.group_id, Match.match_number, Match.id)

        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def get_match(db: AsyncSession, tournament_id: int, match_id: int) -> Match:
        result = await db.execute(
            select(Match).where(Match.id == match_id, Match.tournament_id == tournament_id)
        )
        match = result.scalar_one_or_none()
        if match is None:
            raise match_not_found(match_id)
        return match

    @staticmethod
    async def build_matches(
        db: AsyncSession,
        group: Group,
        count: int,
        slots: Sequence[MatchSlot]
    ) -> List[Match]:
        """Append `count` slots to `group`; runs inside the caller's transaction."""
        result = await db.execute(
            select(func.max(Match.match_number)).where(
                Match.tournament_id == group.tournament_id,
                Match.round == group.round,
                Match.group_id == group.id
            )
        )
        last_number = result.scalar() or 0

        matches = []
        for index in range(count):
            slot = slots[index] if index < len(slots) else MatchSlot()
            number = last_number + index + 1

            duration = slot.duration_minutes
            if duration is None:
                duration = settings.SCHEDULE_DEFAULT_DURATION_MINUTES
            if duration < 1:
                raise ValidationError(
                    f"Match duration must be positive, got {duration}",
                    ErrorCode.INVALID_INPUT,
                    {"matchIndex": index}
                )

            scheduled_time = to_naive_utc(slot.scheduled_time)
            if scheduled_time is None:
                scheduled_time = RoundScheduler.default_scheduled_time()

            match = Match(
                tournament_id=group.tournament_id,
                round=group.round,
                group_id=group.id,
                match_number=number,
                scheduled_time=scheduled_time,
                duration_minutes=duration,
                venue=slot.venue or settings.SCHEDULE_DEFAULT_VENUE,
                description=slot.description or f"Round {group.round} - {group.name} - Match {number}",
                status=MatchStatus.SCHEDULED.value,
            )
            db.add(match)
            matches.append(match)

        await db.flush()
        return matches

    @staticmethod
    async def create_matches(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        round_number: int,
        group_id: int,
        count: Optional[int] = None,
        slots: Optional[Sequence[MatchSlot]] = None
    ) -> List[Match]:
        """
        Create match slots for one group of a round.

        `count` defaults to the number of slot details given; missing details
        fall back to the configured venue/duration and time policy.
        """
        slots = list(slots or [])
        if count is None:
            count = len(slots)

        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            if count < 1:
                raise ValidationError("At least one match is required", ErrorCode.INVALID_INPUT)
            if len(slots) > count:
                raise ValidationError(
                    f"Got {len(slots)} match details for {count} matches",
                    ErrorCode.INVALID_INPUT,
                    {"count": count, "details": len(slots)}
                )
            ensure_not_closed(tournament)
            ensure_round_in_range(tournament, round_number)
            group = await GroupFormationService.get_group(db, tournament_id, group_id, round_number)

            matches = await RoundScheduler.build_matches(db, group, count, slots)

            logger.info(
                f"[SCHEDULE CREATED] tournament={tournament_id} round={round_number} "
                f"group={group.name} matches={len(matches)}"
            )
            return matches

    @staticmethod
    async def update_match(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        match_id: int,
        scheduled_time: Optional[datetime] = None,
        venue: Optional[str] = None,
        description: Optional[str] = None,
        duration_minutes: Optional[int] = None
    ) -> Match:
        """Edit a slot's schedule fields; fields left as None are unchanged."""
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            ensure_not_closed(tournament)
            match = await RoundScheduler.get_match(db, tournament_id, match_id)

            if match.status in (MatchStatus.COMPLETED.value, MatchStatus.CANCELLED.value):
                raise StateError(
                    f"Match {match_id} is {match.status} and can no longer be rescheduled",
                    ErrorCode.STATE_TRANSITION_INVALID,
                    {"status": match.status}
                )

            if duration_minutes is not None and duration_minutes < 1:
                raise ValidationError(
                    f"Match duration must be positive, got {duration_minutes}",
                    ErrorCode.INVALID_INPUT
                )

            if scheduled_time is not None:
                match.scheduled_time = to_naive_utc(scheduled_time)
            if venue is not None:
                match.venue = venue
            if description is not None:
                match.description = description
            if duration_minutes is not None:
                match.duration_minutes = duration_minutes
            match.updated_at = utcnow()

            await db.flush()
            logger.info(f"[MATCH UPDATED] tournament={tournament_id} match={match_id}")
            return match

    @staticmethod
    async def delete_match(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        match_id: int
    ) -> None:
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            ensure_not_closed(tournament)
            match = await RoundScheduler.get_match(db, tournament_id, match_id)
            await db.delete(match)
            await db.flush()
            logger.info(f"[MATCH DELETED] tournament={tournament_id} match={match_id}")

    @staticmethod
    async def purge_round_matches(
        db: AsyncSession,
        tournament_id: int,
        round_number: int
    ) -> int:
        """Remove every match of a round; runs inside the caller's transaction."""
        matches = await RoundScheduler.list_matches(db, tournament_id, round_number)
        for match in matches:
            await db.delete(match)
        await db.flush()
        return len(matches)

    @staticmethod
    async def delete_matches_for_round(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        round_number: int
    ) -> int:
        """All-or-nothing removal of a round's schedule. Returns the number deleted."""
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            ensure_not_closed(tournament)
            ensure_round_in_range(tournament, round_number)
            deleted = await RoundScheduler.purge_round_matches(db, tournament_id, round_number)
            logger.info(
                f"[SCHEDULE DELETED] tournament={tournament_id} round={round_number} matches={deleted}"
            )
            return deleted

    @staticmethod
    async def _transition(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        match_id: int,
        new_status: MatchStatus,
        team1_score: Optional[int] = None,
        team2_score: Optional[int] = None
    ) -> Match:
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            for label, score in (("team1Score", team1_score), ("team2Score", team2_score)):
                if score is not None and score < 0:
                    raise ValidationError(
                        f"{label} cannot be negative",
                        ErrorCode.NEGATIVE_STAT,
                        {label: score}
                    )
            ensure_not_closed(tournament)
            match = await RoundScheduler.get_match(db, tournament_id, match_id)

            if not RoundScheduler._is_valid_transition(match.status, new_status):
                logger.warning(
                    f"[MATCH TRANSITION REJECTED] match={match_id} {match.status} -> {new_status.value}"
                )
                raise StateError(
                    f"Cannot move match {match_id} from {match.status} to {new_status.value}",
                    ErrorCode.STATE_TRANSITION_INVALID,
                    {"from": match.status, "to": new_status.value}
                )

            now = utcnow()
            match.status = new_status.value
            if new_status == MatchStatus.IN_PROGRESS:
                match.started_at = now
            elif new_status == MatchStatus.COMPLETED:
                match.completed_at = now
                match.team1_score = team1_score
                match.team2_score = team2_score
            match.updated_at = now

            await db.flush()
            logger.info(
                f"[MATCH {new_status.value.upper()}] tournament={tournament_id} match={match_id}"
            )
            return match

    @staticmethod
    async def start_match(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        match_id: int
    ) -> Match:
        return await RoundScheduler._transition(
            db, tournament_id, ctx, match_id, MatchStatus.IN_PROGRESS
        )

    @staticmethod
    async def record_match_result(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        match_id: int,
        team1_score: Optional[int],
        team2_score: Optional[int]
    ) -> Match:
        return await RoundScheduler._transition(
            db, tournament_id, ctx, match_id, MatchStatus.COMPLETED, team1_score, team2_score
        )

    @staticmethod
    async def cancel_match(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        match_id: int
    ) -> Match:
        return await RoundScheduler._transition(
            db, tournament_id, ctx, match_id, MatchStatus.CANCELLED
        )
