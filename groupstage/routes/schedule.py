"""
Schedule API Routes.

Match slots per round and group, plus the match status transitions.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.core.context import RequestContext
from groupstage.core.tournament_guard import get_tournament
from groupstage.database import get_db
from groupstage.rbac import get_current_user
from groupstage.schemas.progression import (
    MatchResultRequest, MatchUpdateRequest, ScheduleCreateRequest, StartMatchRequest
)
from groupstage.services.round_schedule_service import MatchSlot, RoundScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tournaments", tags=["schedule"])


@router.get("/{tournament_id}/schedule")
async def get_schedule(
    tournament_id: int,
    round: Optional[int] = Query(None, ge=1),
    group_id: Optional[int] = Query(None, alias="groupId"),
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    await get_tournament(db, tournament_id)
    matches = await RoundScheduler.list_matches(db, tournament_id, round, group_id)
    return {"success": True, "round": round, "matches": [m.to_dict() for m in matches]}


@router.post("/{tournament_id}/schedule", status_code=status.HTTP_201_CREATED)
async def create_schedule(
    tournament_id: int,
    request: ScheduleCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    matches = await RoundScheduler.create_matches(
        db, tournament_id, current_user,
        round_number=request.round,
        group_id=request.group_id,
        count=request.count,
        slots=[
            MatchSlot(
                scheduled_time=m.scheduled_time,
                venue=m.venue,
                description=m.description,
                duration_minutes=m.duration_minutes,
            )
            for m in request.matches
        ],
    )
    return {"success": True, "matches": [m.to_dict() for m in matches]}


@router.delete("/{tournament_id}/schedule/round/{round_number}")
async def delete_round_schedule(
    tournament_id: int,
    round_number: int,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    deleted = await RoundScheduler.delete_matches_for_round(db, tournament_id, current_user, round_number)
    return {"success": True, "round": round_number, "deleted": deleted}


@router.put("/{tournament_id}/schedule/{match_id}")
async def update_match(
    tournament_id: int,
    match_id: int,
    request: MatchUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    match = await RoundScheduler.update_match(
        db, tournament_id, current_user, match_id,
        scheduled_time=request.scheduled_time,
        venue=request.venue,
        description=request.description,
        duration_minutes=request.duration_minutes,
    )
    return {"success": True, "match": match.to_dict()}


@router.delete("/{tournament_id}/schedule/{match_id}")
async def delete_match(
    tournament_id: int,
    match_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    await RoundScheduler.delete_match(db, tournament_id, current_user, match_id)
    return {"success": True, "matchId": match_id}


@router.post("/{tournament_id}/start-match")
async def start_match(
    tournament_id: int,
    request: StartMatchRequest,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    match = await RoundScheduler.start_match(db, tournament_id, current_user, request.match_id)
    return {"success": True, "match": match.to_dict()}


@router.post("/{tournament_id}/matches/{match_id}/result")
async def record_match_result(
    tournament_id: int,
    match_id: int,
    request: MatchResultRequest,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    match = await RoundScheduler.record_match_result(
        db, tournament_id, current_user, match_id,
        team1_score=request.team1_score,
        team2_score=request.team2_score,
    )
    return {"success": True, "match": match.to_dict()}


@router.post("/{tournament_id}/matches/{match_id}/cancel")
async def cancel_match(
    tournament_id: int,
    match_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    match = await RoundScheduler.cancel_match(db, tournament_id, current_user, match_id)
    return {"success": True, "match": match.to_dict()}
