"""
Qualification Engine

Given a round's GroupResults and a policy, computes the ordered list of teams
that proceed.

Selection:
- groups are visited in label order (Group A, B, ..., Z, AA, ...)
- inside a group the first `teamsPerGroupToQualify` ranked teams are taken
- host overrides force a team in or out without re-ranking anyone else
- the output keeps group order, then in-group rank order

Preview and summary queries recompute on demand and never write. Only the
"proceed" actions (qualify, next-round) store a QualificationRecord.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.config.settings import settings
from groupstage.core.context import RequestContext
from groupstage.core.tournament_guard import (
    ensure_not_closed, ensure_round_in_range, get_tournament, tournament_transaction
)
from groupstage.errors import ConfigurationError, ErrorCode, StateError, ValidationError
from groupstage.orm.base import utcnow
from groupstage.orm.results import (
    GroupResult, QualificationOverride, QualificationRecord, QualificationSource
)
from groupstage.orm.tournament import QualificationSetting, Tournament
from groupstage.services.group_formation_service import group_sort_key
from groupstage.services.results_ledger_service import ResultsLedger, overall_standings

logger = logging.getLogger(__name__)


@dataclass
class QualificationPolicy:
    teams_per_group_to_qualify: int
    next_round_teams_per_group: int

    def validate(self) -> "QualificationPolicy":
        problems = {}
        if self.teams_per_group_to_qualify is None or self.teams_per_group_to_qualify < 1:
            problems["teamsPerGroup"] = self.teams_per_group_to_qualify
        if self.next_round_teams_per_group is None or self.next_round_teams_per_group < 1:
            problems["nextRoundTeamsPerGroup"] = self.next_round_teams_per_group
        if problems:
            raise ConfigurationError(
                "Qualification policy values must be at least 1",
                details=problems
            )
        return self


@dataclass
class QualificationOutcome:
    round: int
    policy: QualificationPolicy
    qualified_team_ids: List[int] = field(default_factory=list)
    groups: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_qualified(self) -> int:
        return len(self.qualified_team_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round": self.round,
            "qualifiedTeams": list(self.qualified_team_ids),
            "totalQualified": self.total_qualified,
            "teamsPerGroup": self.policy.teams_per_group_to_qualify,
            "nextRoundTeamsPerGroup": self.policy.next_round_teams_per_group,
            "groups": self.groups,
        }


def select_qualifiers(
    results: Sequence[GroupResult],
    teams_per_group: int,
    overrides: Optional[Dict[int, bool]] = None
) -> QualificationOutcome:
    """
    Pure function over loaded GroupResults.

    Without overrides each group contributes exactly
    min(teams_per_group, group size) teams.
    """
    overrides = overrides or {}
    outcome = QualificationOutcome(
        round=results[0].round if results else 0,
        policy=QualificationPolicy(teams_per_group, 0),
    )

    for group_result in sorted(results, key=lambda r: group_sort_key(r.group_name)):
        picked = []
        for team in sorted(group_result.teams, key=lambda t: t.rank):
            if overrides.get(team.team_id, team.rank <= teams_per_group):
                picked.append(team.team_id)
        outcome.qualified_team_ids.extend(picked)
        outcome.groups.append({
            "groupName": group_result.group_name,
            "qualifiedTeams": picked,
            "teamCount": len(group_result.teams),
        })
    return outcome


class QualificationEngine:
    """Qualification policy, overrides, preview and snapshots."""

    @staticmethod
    async def get_settings(
        db: AsyncSession,
        tournament_id: int,
        round_number: int
    ) -> Optional[QualificationSetting]:
        result = await db.execute(
            select(QualificationSetting).where(
                QualificationSetting.tournament_id == tournament_id,
                QualificationSetting.round == round_number
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def resolve_policy(
        db: AsyncSession,
        tournament_id: int,
        round_number: int,
        teams_per_group: Optional[int] = None,
        next_round_teams_per_group: Optional[int] = None
    ) -> QualificationPolicy:
        """Explicit values win over the saved setting, which wins over the defaults."""
        saved = await QualificationEngine.get_settings(db, tournament_id, round_number)
        if teams_per_group is None:
            teams_per_group = (
                saved.teams_per_group if saved else settings.DEFAULT_TEAMS_PER_GROUP_TO_QUALIFY
            )
        if next_round_teams_per_group is None:
            next_round_teams_per_group = (
                saved.next_round_teams_per_group if saved
                else settings.DEFAULT_NEXT_ROUND_TEAMS_PER_GROUP
            )
        return QualificationPolicy(teams_per_group, next_round_teams_per_group).validate()

    @staticmethod
    async def compute_qualifiers(
        db: AsyncSession,
        tournament_id: int,
        round_number: int,
        policy: QualificationPolicy
    ) -> QualificationOutcome:
        """Read-only: recompute the qualified list for a round."""
        policy.validate()
        results = await ResultsLedger.get_round_results(db, tournament_id, round_number)
        overrides = await ResultsLedger.get_overrides(db, tournament_id, round_number)

        outcome = select_qualifiers(results, policy.teams_per_group_to_qualify, overrides)
        outcome.round = round_number
        outcome.policy = policy
        return outcome

    @staticmethod
    async def latest_record(
        db: AsyncSession,
        tournament_id: int,
        round_number: int
    ) -> Optional[QualificationRecord]:
        result = await db.execute(
            select(QualificationRecord)
            .where(
                QualificationRecord.tournament_id == tournament_id,
                QualificationRecord.round == round_number
            )
            .order_by(QualificationRecord.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def qualification_summary(
        db: AsyncSession,
        tournament_id: int,
        round_number: int
    ) -> Dict[str, Any]:
        """
        Preview for the host: recomputed outcome plus what is already stored.

        The final round qualifies nobody. Its summary carries an empty
        qualified list and a `podiumPreview` of the top three team ids instead.
        """
        tournament = await get_tournament(db, tournament_id)
        ensure_round_in_range(tournament, round_number)
        is_final = round_number >= tournament.total_rounds

        policy = await QualificationEngine.resolve_policy(db, tournament_id, round_number)
        saved = await QualificationEngine.get_settings(db, tournament_id, round_number)
        record = await QualificationEngine.latest_record(db, tournament_id, round_number)
        overrides = await ResultsLedger.get_overrides(db, tournament_id, round_number)

        if is_final:
            results = await ResultsLedger.get_round_results(db, tournament_id, round_number)
            outcome = QualificationOutcome(round=round_number, policy=policy)
            podium = [entry["teamId"] for entry in overall_standings(results)[:3]]
        else:
            outcome = await QualificationEngine.compute_qualifiers(
                db, tournament_id, round_number, policy
            )
            podium = None

        summary = outcome.to_dict()
        summary.update({
            "isFinalRound": is_final,
            "podiumPreview": podium,
            "settings": saved.to_dict() if saved else None,
            "overrides": [{"teamId": k, "qualified": v} for k, v in sorted(overrides.items())],
            "latestRecord": record.to_dict() if record else None,
        })
        return summary

    @staticmethod
    async def purge_round_qualification(
        db: AsyncSession,
        tournament_id: int,
        round_number: int
    ) -> Dict[str, int]:
        """Remove a round's qualification records and overrides; runs inside the caller's transaction."""
        records = await db.execute(
            select(QualificationRecord).where(
                QualificationRecord.tournament_id == tournament_id,
                QualificationRecord.round == round_number
            )
        )
        records = records.scalars().all()
        overrides = await db.execute(
            select(QualificationOverride).where(
                QualificationOverride.tournament_id == tournament_id,
                QualificationOverride.round == round_number
            )
        )
        overrides = overrides.scalars().all()

        for row in [*records, *overrides]:
            await db.delete(row)
        await db.flush()
        return {"records": len(records), "overrides": len(overrides)}

    @staticmethod
    def apply_flags(results: Sequence[GroupResult], qualified_ids: Sequence[int], criteria: int) -> None:
        wanted = set(qualified_ids)
        for group_result in results:
            group_result.criteria = criteria
            for team in group_result.teams:
                team.qualified = team.team_id in wanted

    @staticmethod
    async def save_settings(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        round_number: int,
        teams_per_group: int,
        next_round_teams_per_group: int
    ) -> QualificationSetting:
        """
        Upsert a round's qualification policy and re-derive the round's
        stored qualified flags from it.
        """
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            ensure_not_closed(tournament)
            ensure_round_in_range(tournament, round_number)
            policy = QualificationPolicy(teams_per_group, next_round_teams_per_group).validate()

            setting = await QualificationEngine.get_settings(db, tournament_id, round_number)
            if setting is None:
                setting = QualificationSetting(tournament_id=tournament_id, round=round_number)
                db.add(setting)
            setting.teams_per_group = policy.teams_per_group_to_qualify
            setting.next_round_teams_per_group = policy.next_round_teams_per_group
            setting.updated_at = utcnow()

            if round_number < tournament.total_rounds:
                outcome = await QualificationEngine.compute_qualifiers(
                    db, tournament_id, round_number, policy
                )
                results = await ResultsLedger.get_round_results(db, tournament_id, round_number)
                QualificationEngine.apply_flags(
                    results, outcome.qualified_team_ids, policy.teams_per_group_to_qualify
                )

            await db.flush()
            logger.info(
                f"[QUALIFICATION SETTINGS] tournament={tournament_id} round={round_number} "
                f"teamsPerGroup={policy.teams_per_group_to_qualify} "
                f"nextRoundTeamsPerGroup={policy.next_round_teams_per_group}"
            )
            return setting

    @staticmethod
    async def override_qualification(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        team_id: int,
        round_number: int,
        qualified: bool
    ) -> QualificationOverride:
        """Record a host correction and flip only that team's stored flag."""
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            ensure_not_closed(tournament)
            ensure_round_in_range(tournament, round_number)
            if round_number >= tournament.total_rounds:
                raise StateError(
                    "The final round has placements, not qualification",
                    ErrorCode.ALREADY_FINAL_ROUND,
                    {"round": round_number}
                )

            results = await ResultsLedger.get_round_results(db, tournament_id, round_number)
            team_result = None
            for group_result in results:
                for team in group_result.teams:
                    if team.team_id == team_id:
                        team_result = team
            if team_result is None:
                raise ValidationError(
                    f"Team {team_id} has no result in round {round_number}",
                    ErrorCode.INVALID_INPUT,
                    {"teamId": team_id, "round": round_number}
                )

            result = await db.execute(
                select(QualificationOverride).where(
                    QualificationOverride.tournament_id == tournament_id,
                    QualificationOverride.round == round_number,
                    QualificationOverride.team_id == team_id
                )
            )
            override = result.scalar_one_or_none()
            if override is None:
                override = QualificationOverride(
                    tournament_id=tournament_id, round=round_number, team_id=team_id
                )
                db.add(override)
            override.qualified = qualified
            override.created_by = ctx.user_id if ctx else None
            override.created_at = utcnow()

            team_result.qualified = qualified
            await db.flush()

            logger.info(
                f"[QUALIFICATION OVERRIDE] tournament={tournament_id} round={round_number} "
                f"team={team_id} qualified={qualified}"
            )
            return override

    @staticmethod
    async def write_record(
        db: AsyncSession,
        tournament: Tournament,
        round_number: int,
        qualified_team_ids: Sequence[int],
        criteria: int,
        next_round_teams_per_group: Optional[int],
        source: QualificationSource,
        ctx: Optional[RequestContext]
    ) -> QualificationRecord:
        """Append a snapshot and sync the round's flags; caller holds the transaction."""
        record = QualificationRecord(
            tournament_id=tournament.id,
            round=round_number,
            qualified_team_ids=list(qualified_team_ids),
            criteria=criteria,
            next_round_teams_per_group=next_round_teams_per_group,
            total_qualified=len(qualified_team_ids),
            source=source.value,
            created_by=ctx.user_id if ctx else None,
            qualified_at=utcnow(),
        )
        db.add(record)

        results = await ResultsLedger.get_round_results(db, tournament.id, round_number)
        QualificationEngine.apply_flags(results, qualified_team_ids, criteria)

        await db.flush()
        logger.info(
            f"[QUALIFIED] tournament={tournament.id} round={round_number} "
            f"teams={len(qualified_team_ids)} criteria={criteria} source={source.value}"
        )
        return record

    @staticmethod
    async def qualify(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        round_number: int,
        qualified_team_ids: Optional[Sequence[int]] = None,
        criteria: Optional[int] = None,
        next_round_teams_per_group: Optional[int] = None
    ) -> QualificationRecord:
        """
        Proceed action: store the qualified list for a round.

        With `qualified_team_ids` the host's list is stored as a manual record
        (every id must have a result in that round). Without it the engine
        computes the list from the policy.
        """
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            ensure_not_closed(tournament)
            ensure_round_in_range(tournament, round_number)
            if round_number >= tournament.total_rounds:
                raise StateError(
                    "The final round has placements, not qualification",
                    ErrorCode.ALREADY_FINAL_ROUND,
                    {"round": round_number}
                )

            policy = await QualificationEngine.resolve_policy(
                db, tournament_id, round_number, criteria, next_round_teams_per_group
            )

            if qualified_team_ids is not None:
                ids = list(qualified_team_ids)
                results = await ResultsLedger.get_round_results(db, tournament_id, round_number)
                known = {t.team_id for r in results for t in r.teams}
                unknown = [tid for tid in ids if tid not in known]
                if unknown:
                    raise ValidationError(
                        f"Teams without a result in round {round_number}: {unknown}",
                        ErrorCode.INVALID_INPUT,
                        {"teamIds": unknown}
                    )
                if len(set(ids)) != len(ids):
                    raise ValidationError(
                        "A team may be qualified only once",
                        ErrorCode.DUPLICATE_TEAM
                    )
                source = QualificationSource.MANUAL
            else:
                outcome = await QualificationEngine.compute_qualifiers(
                    db, tournament_id, round_number, policy
                )
                ids = outcome.qualified_team_ids
                source = QualificationSource.COMPUTED

            if not ids:
                raise StateError(
                    f"No teams qualify from round {round_number}",
                    ErrorCode.NO_QUALIFIED_TEAMS,
                    {"round": round_number}
                )

            return await QualificationEngine.write_record(
                db, tournament, round_number, ids,
                policy.teams_per_group_to_qualify,
                policy.next_round_teams_per_group,
                source, ctx
            )
