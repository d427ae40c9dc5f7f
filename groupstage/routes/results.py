"""
Results, Qualification and Advancement API Routes.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.core.context import RequestContext
from groupstage.core.tournament_guard import ensure_round_in_range, get_tournament
from groupstage.database import get_db
from groupstage.errors import ErrorCode, ValidationError
from groupstage.rbac import get_current_user
from groupstage.schemas.progression import (
    GroupResultRequest, NextRoundRequest, QualificationOverrideRequest,
    QualificationSettingsRequest, QualifyRequest
)
from groupstage.services.advancement_service import AdvancementOrchestrator, RoundAdvance
from groupstage.services.participants import display_names
from groupstage.services.qualification_service import QualificationEngine
from groupstage.services.results_ledger_service import (
    ResultsLedger, TeamStats, overall_standings
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tournaments", tags=["results"])


async def _advance_payload(db: AsyncSession, tournament_id: int, advance: RoundAdvance):
    member_ids = [pid for g in advance.groups for pid in g.participant_ids]
    names = await display_names(db, tournament_id, member_ids)
    groups = []
    for group in advance.groups:
        data = group.to_dict()
        data["participantNames"] = [names.get(pid) for pid in group.participant_ids]
        groups.append(data)
    return {
        "success": True,
        "fromRound": advance.from_round,
        "currentRound": advance.round,
        "qualifiedCount": advance.qualified_count,
        "teamsPerGroup": advance.teams_per_group,
        "numberOfGroups": len(groups),
        "groups": groups,
        "qualification": advance.record.to_dict(),
    }


# =============================================================================
# Results
# =============================================================================

@router.post("/{tournament_id}/results")
async def submit_results(
    tournament_id: int,
    request: GroupResultRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    """
    Submit one group's statistics for a round.

    201 for a first submission, 200 when it replaces an earlier one.
    """
    group_name = request.group_name or None
    group_result = await ResultsLedger.submit_group_result(
        db, tournament_id, current_user,
        round_number=request.round,
        teams=[
            TeamStats(
                team_id=t.team_id,
                wins=t.wins,
                finish_points=t.finish_points,
                position_points=t.position_points,
            )
            for t in request.teams
        ],
        group_name=group_name,
        group_id=request.group_id,
    )
    response.status_code = status.HTTP_200_OK if group_result.replaced else status.HTTP_201_CREATED

    names = await display_names(db, tournament_id, [t.team_id for t in group_result.teams])
    return {"success": True, "result": group_result.to_dict(names)}


@router.get("/{tournament_id}/results/{round_number}")
async def get_round_results(
    tournament_id: int,
    round_number: int,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    tournament = await get_tournament(db, tournament_id)
    ensure_round_in_range(tournament, round_number)

    results = await ResultsLedger.get_round_results(db, tournament_id, round_number)
    names = await display_names(
        db, tournament_id, [t.team_id for r in results for t in r.teams]
    )
    standings = overall_standings(results)
    for entry in standings:
        entry["teamName"] = names.get(entry["teamId"])

    return {
        "success": True,
        "round": round_number,
        "isFinalRound": round_number >= tournament.total_rounds,
        "roundResults": [r.to_dict(names) for r in results],
        "overallStandings": standings,
    }


# =============================================================================
# Qualification
# =============================================================================

@router.get("/{tournament_id}/qualification-summary")
async def qualification_summary(
    tournament_id: int,
    round: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    """Read-only preview of who would qualify under the current policy."""
    if round is None:
        round = (await get_tournament(db, tournament_id)).current_round
    summary = await QualificationEngine.qualification_summary(db, tournament_id, round)
    names = await display_names(db, tournament_id, summary["qualifiedTeams"])
    summary["qualifiedTeamNames"] = [names.get(tid) for tid in summary["qualifiedTeams"]]
    return {"success": True, "summary": summary}


@router.get("/{tournament_id}/qualification-settings")
async def get_qualification_settings(
    tournament_id: int,
    round: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    tournament = await get_tournament(db, tournament_id)
    round_number = round or tournament.current_round
    saved = await QualificationEngine.get_settings(db, tournament_id, round_number)
    policy = await QualificationEngine.resolve_policy(db, tournament_id, round_number)
    return {
        "success": True,
        "round": round_number,
        "saved": saved is not None,
        "teamsPerGroup": policy.teams_per_group_to_qualify,
        "nextRoundTeamsPerGroup": policy.next_round_teams_per_group,
    }


@router.post("/{tournament_id}/qualification-settings")
async def save_qualification_settings(
    tournament_id: int,
    request: QualificationSettingsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    setting = await QualificationEngine.save_settings(
        db, tournament_id, current_user,
        round_number=request.round,
        teams_per_group=request.teams_per_group,
        next_round_teams_per_group=request.next_round_teams_per_group,
    )
    return {"success": True, "settings": setting.to_dict()}


@router.post("/{tournament_id}/qualification-override")
async def override_qualification(
    tournament_id: int,
    request: QualificationOverrideRequest,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    override = await QualificationEngine.override_qualification(
        db, tournament_id, current_user,
        team_id=request.team_id,
        round_number=request.round,
        qualified=request.qualified,
    )
    return {"success": True, "override": override.to_dict()}


@router.post("/{tournament_id}/qualify")
async def qualify(
    tournament_id: int,
    request: QualifyRequest,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    """
    Store the round's qualified teams.

    With `qualifiedTeams` the host's list is kept as-is; without it the list
    is computed from `qualificationCriteria` or the saved policy.
    """
    record = await QualificationEngine.qualify(
        db, tournament_id, current_user,
        round_number=request.round,
        qualified_team_ids=request.qualified_teams,
        criteria=request.qualification_criteria,
        next_round_teams_per_group=request.next_round_teams_per_group,
    )
    return {"success": True, "qualification": record.to_dict()}


# =============================================================================
# Advancement
# =============================================================================

async def _advance(
    db: AsyncSession,
    tournament_id: int,
    current_user: RequestContext,
    request: NextRoundRequest,
    from_round: Optional[int]
):
    if from_round is None:
        from_round = request.current_round
    if from_round is None:
        from_round = (await get_tournament(db, tournament_id)).current_round
    if request.next_round is not None and request.next_round != from_round + 1:
        raise ValidationError(
            f"nextRound must be {from_round + 1}, got {request.next_round}",
            ErrorCode.INVALID_INPUT,
            {"currentRound": from_round, "nextRound": request.next_round}
        )

    advance = await AdvancementOrchestrator.advance_round(
        db, tournament_id, current_user,
        from_round=from_round,
        next_round_teams_per_group=request.teams_per_group,
        teams_per_group_to_qualify=request.qualification_criteria,
    )
    return await _advance_payload(db, tournament_id, advance)


@router.post("/{tournament_id}/next-round")
async def next_round(
    tournament_id: int,
    request: Optional[NextRoundRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    """Advance from `currentRound` (default: the tournament's current round)."""
    return await _advance(db, tournament_id, current_user, request or NextRoundRequest(), None)


@router.post("/{tournament_id}/auto-assign-round-2")
async def auto_assign_round_2(
    tournament_id: int,
    request: Optional[NextRoundRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    """Advance from round 1 into round 2."""
    return await _advance(db, tournament_id, current_user, request or NextRoundRequest(), 1)


@router.post("/{tournament_id}/finalize")
async def finalize_tournament(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    outcome = await AdvancementOrchestrator.finalize_tournament(db, tournament_id, current_user)
    names = await display_names(db, tournament_id, [e["teamId"] for e in outcome["standings"]])
    for entry in outcome["standings"]:
        entry["teamName"] = names.get(entry["teamId"])

    return {
        "success": True,
        "tournament": outcome["tournament"].to_dict(),
        "winner": outcome["winner"],
        "runnerUp": outcome["runnerUp"],
        "thirdPlace": outcome["thirdPlace"],
        "standings": outcome["standings"],
    }
