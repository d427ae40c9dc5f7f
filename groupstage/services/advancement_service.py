"""
Advancement Orchestrator

Turns a round's qualified teams into the next round's groups, and closes the
tournament after its final round.

advance_round(fromRound):
    1. fromRound must not be the final round       (ALREADY_FINAL_ROUND)
    2. fromRound is the current round, or the one just advanced from (redo)
    3. qualified list = latest manual record when no explicit policy is
       given, otherwise a fresh computation stored as a computed record
    4. the next round's matches, results, records and overrides are purged,
       its groups replaced by contiguous chunks of nextRoundTeamsPerGroup
    5. currentRound = fromRound + 1

Re-invoking for the same fromRound replaces the next round's groups; it
never adds to them.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.core.context import RequestContext
from groupstage.core.tournament_guard import (
    ensure_not_closed, ensure_round_in_range, tournament_transaction
)
from groupstage.errors import ErrorCode, StateError
from groupstage.orm.base import utcnow
from groupstage.orm.group import Group
from groupstage.orm.results import FinalPlacement, QualificationRecord, QualificationSource
from groupstage.orm.tournament import RoundSetting, Tournament, TournamentStatus
from groupstage.services.group_formation_service import GroupFormationService
from groupstage.services.qualification_service import QualificationEngine
from groupstage.services.results_ledger_service import ResultsLedger, overall_standings
from groupstage.services.round_schedule_service import RoundScheduler

logger = logging.getLogger(__name__)

PLACEMENT_ORDER = [FinalPlacement.WINNER, FinalPlacement.RUNNER_UP, FinalPlacement.THIRD_PLACE]


@dataclass
class RoundAdvance:
    from_round: int
    round: int
    groups: List[Group]
    record: QualificationRecord
    teams_per_group: int

    @property
    def qualified_count(self) -> int:
        return self.record.total_qualified


def ensure_ongoing(tournament: Tournament, action: str) -> None:
    if tournament.status != TournamentStatus.ONGOING.value:
        raise StateError(
            f"Cannot {action} while the tournament is {tournament.status}",
            ErrorCode.STATE_TRANSITION_INVALID,
            {"status": tournament.status}
        )


class AdvancementOrchestrator:
    """Round-to-round progression and finalization."""

    @staticmethod
    async def reset_round(db: AsyncSession, tournament_id: int, round_number: int) -> Dict[str, int]:
        """
        Drop a round's matches, results and qualification state ahead of
        regenerating its groups. Records and overrides refer to the old group
        makeup, so they go with the results.
        """
        purged = {
            "matches": await RoundScheduler.purge_round_matches(db, tournament_id, round_number),
            "results": await ResultsLedger.purge_round_results(db, tournament_id, round_number),
        }
        purged.update(
            await QualificationEngine.purge_round_qualification(db, tournament_id, round_number)
        )
        return purged

    @staticmethod
    async def upsert_round_capacity(
        db: AsyncSession,
        tournament: Tournament,
        round_number: int,
        teams_per_group: int
    ) -> RoundSetting:
        result = await db.execute(
            select(RoundSetting).where(
                RoundSetting.tournament_id == tournament.id,
                RoundSetting.round == round_number
            )
        )
        setting = result.scalar_one_or_none()
        if setting is None:
            setting = RoundSetting(
                tournament_id=tournament.id,
                round=round_number,
                round_name=f"Round {round_number}",
            )
            db.add(setting)
        setting.teams_per_group = teams_per_group
        setting.updated_at = utcnow()
        return setting

    @staticmethod
    async def regenerate_round(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        round_number: int,
        participant_ids: Optional[Sequence[int]] = None,
        capacity: Optional[int] = None
    ) -> List[Group]:
        """
        Host "assign groups" action: purge the round's schedule, results and
        qualification state, then replace its groups.

        Only the current round can be regenerated; earlier rounds are history.
        """
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            ensure_not_closed(tournament)
            ensure_round_in_range(tournament, round_number)
            if round_number != tournament.current_round:
                raise StateError(
                    f"Only the current round ({tournament.current_round}) can be regenerated",
                    ErrorCode.ROUND_OUT_OF_SEQUENCE,
                    {"round": round_number, "currentRound": tournament.current_round}
                )

            pool, capacity = await GroupFormationService.prepare_pool(
                db, tournament, round_number, participant_ids, capacity
            )

            purged = await AdvancementOrchestrator.reset_round(db, tournament_id, round_number)
            groups = await GroupFormationService.write_groups(
                db, tournament, round_number, pool, capacity
            )
            logger.info(
                f"[ROUND REGENERATED] tournament={tournament_id} round={round_number} "
                f"purgedMatches={purged['matches']} purgedResults={purged['results']} "
                f"purgedRecords={purged['records']} purgedOverrides={purged['overrides']}"
            )
            return groups

    @staticmethod
    async def advance_round(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext],
        from_round: int,
        next_round_teams_per_group: Optional[int] = None,
        teams_per_group_to_qualify: Optional[int] = None
    ) -> RoundAdvance:
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            ensure_not_closed(tournament)
            ensure_round_in_range(tournament, from_round)

            if from_round == tournament.total_rounds:
                logger.warning(
                    f"[ADVANCE REJECTED] tournament={tournament_id} round={from_round} is final"
                )
                raise StateError(
                    f"Round {from_round} is the final round",
                    ErrorCode.ALREADY_FINAL_ROUND,
                    {"round": from_round, "totalRounds": tournament.total_rounds}
                )

            ensure_ongoing(tournament, "advance rounds")

            if from_round not in (tournament.current_round, tournament.current_round - 1):
                raise StateError(
                    f"Cannot advance from round {from_round} while round "
                    f"{tournament.current_round} is current",
                    ErrorCode.ROUND_OUT_OF_SEQUENCE,
                    {"round": from_round, "currentRound": tournament.current_round}
                )

            explicit_policy = (
                next_round_teams_per_group is not None or teams_per_group_to_qualify is not None
            )
            latest = await QualificationEngine.latest_record(db, tournament_id, from_round)

            if (
                not explicit_policy
                and latest is not None
                and latest.source == QualificationSource.MANUAL.value
            ):
                qualified_ids = list(latest.qualified_team_ids or [])
                next_size = latest.next_round_teams_per_group
                if next_size is None:
                    policy = await QualificationEngine.resolve_policy(db, tournament_id, from_round)
                    next_size = policy.next_round_teams_per_group
                record = latest
            else:
                policy = await QualificationEngine.resolve_policy(
                    db, tournament_id, from_round,
                    teams_per_group_to_qualify, next_round_teams_per_group
                )
                outcome = await QualificationEngine.compute_qualifiers(
                    db, tournament_id, from_round, policy
                )
                qualified_ids = outcome.qualified_team_ids
                next_size = policy.next_round_teams_per_group
                record = None

            if not qualified_ids:
                logger.warning(
                    f"[ADVANCE REJECTED] tournament={tournament_id} round={from_round} no qualifiers"
                )
                raise StateError(
                    f"No teams qualified from round {from_round}",
                    ErrorCode.NO_QUALIFIED_TEAMS,
                    {"round": from_round}
                )

            if record is None:
                record = await QualificationEngine.write_record(
                    db, tournament, from_round, qualified_ids,
                    policy.teams_per_group_to_qualify, next_size,
                    QualificationSource.COMPUTED, ctx
                )

            next_round = from_round + 1
            await AdvancementOrchestrator.reset_round(db, tournament_id, next_round)
            groups = await GroupFormationService.write_groups(
                db, tournament, next_round, qualified_ids, next_size
            )
            await AdvancementOrchestrator.upsert_round_capacity(db, tournament, next_round, next_size)

            tournament.current_round = next_round
            await db.flush()

            logger.info(
                f"[ROUND ADVANCED] tournament={tournament_id} {from_round} -> {next_round} "
                f"qualified={len(qualified_ids)} groups={len(groups)} teamsPerGroup={next_size}"
            )
            return RoundAdvance(
                from_round=from_round,
                round=next_round,
                groups=groups,
                record=record,
                teams_per_group=next_size,
            )

    @staticmethod
    async def finalize_tournament(
        db: AsyncSession,
        tournament_id: int,
        ctx: Optional[RequestContext]
    ) -> Dict[str, Any]:
        """
        Assign Winner / Runner-up / Third place from the final round and
        complete the tournament.

        Uses the aggregated final-round standings, so a single final group
        maps ranks 1/2/3 directly.
        """
        async with tournament_transaction(db, tournament_id, ctx) as tournament:
            ensure_not_closed(tournament)
            ensure_ongoing(tournament, "finalize")

            if not tournament.is_final_round:
                raise StateError(
                    f"Round {tournament.current_round} of {tournament.total_rounds} is not the final round",
                    ErrorCode.NOT_FINAL_ROUND,
                    {"currentRound": tournament.current_round, "totalRounds": tournament.total_rounds}
                )

            final_round = tournament.total_rounds
            results = await ResultsLedger.get_round_results(db, tournament_id, final_round)
            if not results:
                raise StateError(
                    f"No results recorded for final round {final_round}",
                    ErrorCode.RESULTS_MISSING,
                    {"round": final_round}
                )

            standings = overall_standings(results)
            podium = [entry["teamId"] for entry in standings[:len(PLACEMENT_ORDER)]]
            placement_by_team = {
                team_id: placement.value for team_id, placement in zip(podium, PLACEMENT_ORDER)
            }

            for group_result in results:
                for team in group_result.teams:
                    team.qualified = False
                    team.placement = placement_by_team.get(team.team_id)

            tournament.winner_id = podium[0] if len(podium) > 0 else None
            tournament.runner_up_id = podium[1] if len(podium) > 1 else None
            tournament.third_place_id = podium[2] if len(podium) > 2 else None
            tournament.status = TournamentStatus.COMPLETED.value
            tournament.completed_at = utcnow()
            await db.flush()

            logger.info(
                f"[TOURNAMENT FINALIZED] tournament={tournament_id} winner={tournament.winner_id} "
                f"runnerUp={tournament.runner_up_id} thirdPlace={tournament.third_place_id}"
            )
            return {
                "tournament": tournament,
                "winner": tournament.winner_id,
                "runnerUp": tournament.runner_up_id,
                "thirdPlace": tournament.third_place_id,
                "standings": overall_standings(results),
            }
