"""
Tournament API Routes.

Creation, lookup, status transitions, registration pool and round settings.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.core.context import RequestContext
from groupstage.core.tournament_guard import get_tournament as load_tournament
from groupstage.database import get_db
from groupstage.rbac import get_current_user
from groupstage.schemas.progression import (
    JoinRequest, ParticipantCreate, RoundSettingsRequest, TournamentCreate
)
from groupstage.services.lifecycle_service import LifecycleService
from groupstage.services.registration_service import RegistrationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tournaments", tags=["tournaments"])


# =============================================================================
# Tournament
# =============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_tournament(
    request: TournamentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    """Create a tournament. The caller becomes its host."""
    tournament = await LifecycleService.create_tournament(
        db, current_user,
        name=request.name,
        format=request.format,
        total_rounds=request.total_rounds,
        total_slots=request.total_slots,
        teams_per_group=request.teams_per_group,
        game=request.game,
        registration_deadline=request.registration_deadline,
        start_date=request.start_date,
    )
    return {"success": True, "tournament": tournament.to_dict()}


@router.get("/{tournament_id}")
async def get_tournament(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    """Tournament with round settings and groups per round."""
    return {"success": True, "tournament": await LifecycleService.get_overview(db, tournament_id)}


@router.post("/{tournament_id}/open-registration")
async def open_registration(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    tournament = await LifecycleService.open_registration(db, tournament_id, current_user)
    return {"success": True, "tournament": tournament.to_dict()}


@router.post("/{tournament_id}/start")
async def start_tournament(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    tournament = await LifecycleService.start_tournament(db, tournament_id, current_user)
    return {"success": True, "tournament": tournament.to_dict()}


@router.put("/{tournament_id}/cancel")
async def cancel_tournament(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    tournament = await LifecycleService.cancel_tournament(db, tournament_id, current_user)
    return {"success": True, "tournament": tournament.to_dict()}


# =============================================================================
# Registration
# =============================================================================

@router.get("/{tournament_id}/participants")
async def list_participants(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    await load_tournament(db, tournament_id)
    participants = await RegistrationService.list_participants(db, tournament_id)
    return {
        "success": True,
        "participants": [p.to_dict() for p in participants],
        "total": len(participants),
    }


@router.post("/{tournament_id}/join", status_code=status.HTTP_201_CREATED)
async def join_tournament(
    tournament_id: int,
    request: Optional[JoinRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    request = request or JoinRequest()
    participant = await RegistrationService.join(
        db, tournament_id, current_user,
        team_name=request.team_name,
        members=[m.model_dump(by_alias=True) for m in request.members],
        display_name=request.display_name,
    )
    return {"success": True, "participant": participant.to_dict()}


@router.post("/{tournament_id}/leave")
async def leave_tournament(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    participant_id = await RegistrationService.leave(db, tournament_id, current_user)
    return {"success": True, "participantId": participant_id}


@router.post("/{tournament_id}/participants", status_code=status.HTTP_201_CREATED)
async def add_participant(
    tournament_id: int,
    request: ParticipantCreate,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    """Host registers a player or team directly."""
    participant = await RegistrationService.add_participant(
        db, tournament_id, current_user,
        user_id=request.user_id,
        username=request.username,
        name=request.name,
        display_name=request.display_name,
        members=[m.model_dump(by_alias=True) for m in request.members],
    )
    return {"success": True, "participant": participant.to_dict()}


# =============================================================================
# Round settings
# =============================================================================

@router.put("/{tournament_id}/round-settings")
async def update_round_settings(
    tournament_id: int,
    request: RoundSettingsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    setting = await LifecycleService.update_round_settings(
        db, tournament_id, current_user,
        round_number=request.round,
        teams_per_group=request.teams_per_group,
        round_name=request.round_name,
        total_slots=request.total_slots,
    )
    return {"success": True, "roundSettings": setting.to_dict()}
