"""
Results Ledger: per-group team statistics and deterministic ranking.

One GroupResult per (tournament, round, group name). A later submission for
the same key replaces the stored row wholesale.

Ranking:
    totalPoints = finishPoints + positionPoints
    order by (totalPoints desc, wins desc, input order)
    ranks are dense 1..N with no ties

The `qualified` flag is `rank <= criteria` outside the final round. In the
final round it stays False; placements are assigned at finalization.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.config.settings import settings
from groupstage.core.context import RequestContext
from groupstage.core.tournament_guard import (
    ensure_not_closed, ensure_round_in_range, tournament_transaction
)
from groupstage.errors import ErrorCode, NotFoundError, ValidationError
from groupstage.orm.base import utcnow
from groupstage.orm.group import Group
from groupstage.orm.results import GroupResult, QualificationOverride, TeamResult
from groupstage.orm.tournament import QualificationSetting, Tournament
from groupstage.services.group_formation_service import GroupFormationService, group_sort_key

logger = logging.getLogger(__name__)


@dataclass
class TeamStats:
    team_id: int
    wins: int = 0
    finish_points: int = 0
    position_points: int = 0

    @property
    def total_points(self) -> int:
        return self.finish_points + self.position_points


@dataclass
class RankedTeam:
    stats: TeamStats
    rank: int
    input_order: int


def validate_stats(teams: Sequence[TeamStats]) -> None:
    if not teams:
        raise ValidationError("A group result needs at least one team", ErrorCode.INVALID_INPUT)

    seen = set()
    for index, team in enumerate(teams):
        for field_name in ("wins", "finish_points", "position_points"):
            value = getattr(team, field_name)
            if value is None or value < 0:
                raise ValidationError(
                    f"{field_name} cannot be negative (team {team.team_id})",
                    ErrorCode.NEGATIVE_STAT,
                    {"teamId": team.team_id, "field": field_name, "value": value, "index": index}
                )
        if team.team_id in seen:
            raise ValidationError(
                f"Team {team.team_id} appears more than once",
                ErrorCode.DUPLICATE_TEAM,
                {"teamId": team.team_id}
            )
        seen.add(team.team_id)


def rank_teams(teams: Sequence[TeamStats]) -> List[RankedTeam]:
    """
    Pure function: stable ranking by (totalPoints desc, wins desc, input order).

    >>> [r.stats.team_id for r in rank_teams([TeamStats(1, 1, 5, 4), TeamStats(2, 3, 5, 4)])]
    [2, 1]
    """
    ordered = sorted(
        enumerate(teams),
        key=lambda item: (-item[1].total_points, -item[1].wins, item[0])
    )
    return [
        RankedTeam(stats=team, rank=position + 1, input_order=index)
        for position, (index, team) in enumerate(ordered)
    ]


def overall_standings(results: Sequence[GroupResult]) -> List[Dict[str, Any]]:
    """
    Every team of a round in one list.

    Order: totalPoints desc, wins desc, group label order, in-group rank.
    """
    ordered_groups = sorted(results, key=lambda r: group_sort_key(r.group_name))
    entries = []
    for group_index, group_result in enumerate(ordered_groups):
        for team in group_result.teams:
            entries.append((group_index, group_result, team))

    entries.sort(key=lambda e: (-e[2].total_points, -e[2].wins, e[0], e[2].rank))
    return [
        {
            "position": position + 1,
            "teamId": team.team_id,
            "groupName": group_result.group_name,
            "groupRank": team.rank,
            "wins": team.wins,
            "totalPoints": team.total_points,
            "qualified": team.qualified,
            "placement": team.placement,
        }
        for position, (_, group_result, team) in enumerate(entries)
    ]


class ResultsLedger:
    """Writer and reader of GroupResult aggregates."""

    @staticmethod
    async def get_round_results(
        db: AsyncSession,
        tournament_id: int,
        round_number: int
    ) -> List[GroupResult]:
        """Round results in group label order."""
        result = await db.execute(
            select(GroupResult).where(
                GroupResult.tournament_id == tournament_id,
                GroupResult.round == round_number
            )
        )
        return sorted(result.scalars().all(), key=lambda r: group_sort_key(r.group_name))

    @staticmethod
    async def get_group_result(
        db: AsyncSession,
        tournament_id: int,
        round_number: int,
        group_name: Optional[str] = None,
        group_id: Optional[int] = None
    ) -> Optional[GroupResult]:
        if group_name is None and group_id is None:
            return None
        query = select(GroupResult).where(
            GroupResult.tournament_id == tournament_id,
            GroupResult.round == round_number
        )
        if group_name is not None:
            query = query.where(GroupResult.group_name == group_name)
        else:
            query = query.where(GroupResult.group_id == group_id)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def resolve_criteria(
        db: AsyncSession,
        tournament: Tournament,
        round_number: int
    ) -> Optional[int]:
        """Teams-per-group cutoff for a round; None in the final round."""
        if round_number >= tournament.total_rounds:
            return None

        result = await db.execute(
            select(QualificationSetting).where(
                QualificationSetting.tournament_id == tournament.id,
                QualificationSetting.round == round_number
            )
        )
        setting = result.scalar_one_or_none()
        if setting is not None:
            return setting.teams_per_group
        return settings.DEFAULT_TEAMS_PER_GROUP_TO_QUALIFY

    @staticmethod
    async def get_overrides(
        db: AsyncSession,
        tournament_id: int,
        round_number: int
    ) -> Dict[int, bool]:
        result = await db.execute(
            select(QualificationOverride).where(
                QualificationOverride.tournament_id == tournament_id,
                QualificationOverride.round == round_number
            )
        )
        return {o.team_id: o.qualified for o in result.scalars().all()}

    @staticmethod
    async def _find_group(
        db: AsyncSession,
        tournament_id: int,
        round_number: int,
        group_id: Optional[int],
        group_name: Optional[str]
    ) -> Group:
        if group_id is not None:
            group = await GroupFormationService.get_group(db, tournament_id, group_id, round_number)
            if group_name and group_name != group.name:
                raise ValidationError(
                    f"groupName '{group_name}' does not match group {group_id} ('{group.name}')",
                    ErrorCode.INVALID_INPUT,
                    {"groupId": group_id, "groupName": group_name}
                )
            return group

        if not group_name:
            raise ValidationError("groupId or groupName is required", ErrorCode.INVALID_INPUT)

        result = await db.execute(
            select(Group).where(
                Group.tournament_id == tournament_id,
                Group.round == round_number,
                Group.name == group_name
            )
        )
        group = result.scalar_one_or_none()
        if group is None:
            raise NotFoundError("Group", group_name, ErrorCode.GROUP_NOT_FOUND)
        return group

    @staticmethod
    async def submit_group_result(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        round_number: int,
        teams: Sequence[TeamStats],
        group_name: Optional[str] = None,
        group_id: Optional[int] = None
    ) -> GroupResult:
        """
        Record (or replace) one group's result for a round.

        Every team must be a member of that group in that round.

        Raises:
            ValidationError: negative stats, duplicate or foreign teams, empty list
            NotFoundError: unknown group or participant
            StateError: tournament closed
        """
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            ensure_not_closed(tournament)
            ensure_round_in_range(tournament, round_number)
            validate_stats(teams)

            group = await ResultsLedger._find_group(
                db, tournament_id, round_number, group_id, group_name
            )

            members = set(group.participant_ids)
            for team in teams:
                if team.team_id not in members:
                    raise ValidationError(
                        f"Team {team.team_id} is not in {group.name} for round {round_number}",
                        ErrorCode.INVALID_INPUT,
                        {"teamId": team.team_id, "groupName": group.name}
                    )

            criteria = await ResultsLedger.resolve_criteria(db, tournament, round_number)
            overrides = {}
            if criteria is not None:
                overrides = await ResultsLedger.get_overrides(db, tournament_id, round_number)

            existing = await ResultsLedger.get_group_result(db, tournament_id, round_number, group.name)
            if existing is not None:
                await db.delete(existing)
                await db.flush()

            ranked = rank_teams(teams)
            group_result = GroupResult(
                tournament_id=tournament_id,
                round=round_number,
                group_id=group.id,
                group_name=group.name,
                criteria=criteria,
                submitted_by=ctx.user_id if ctx else None,
                submitted_at=utcnow(),
                teams=[
                    TeamResult(
                        team_id=r.stats.team_id,
                        wins=r.stats.wins,
                        finish_points=r.stats.finish_points,
                        position_points=r.stats.position_points,
                        total_points=r.stats.total_points,
                        rank=r.rank,
                        qualified=(
                            criteria is not None
                            and overrides.get(r.stats.team_id, r.rank <= criteria)
                        ),
                        input_order=r.input_order,
                    )
                    for r in ranked
                ]
            )
            group_result.replaced = existing is not None
            db.add(group_result)
            await db.flush()

            logger.info(
                f"[RESULT SUBMITTED] tournament={tournament_id} round={round_number} "
                f"group={group.name} teams={len(teams)} replaced={existing is not None}"
            )
            return group_result

    @staticmethod
    async def purge_round_results(
        db: AsyncSession,
        tournament_id: int,
        round_number: int
    ) -> int:
        """Remove every group result of a round; runs inside the caller's transaction."""
        results = await ResultsLedger.get_round_results(db, tournament_id, round_number)
        for group_result in results:
            await db.delete(group_result)
        await db.flush()
        return len(results)
