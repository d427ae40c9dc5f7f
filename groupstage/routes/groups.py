"""
Group API Routes.

Round group formation, regeneration and single-participant reassignment.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.core.context import RequestContext
from groupstage.core.tournament_guard import get_tournament
from groupstage.database import get_db
from groupstage.rbac import get_current_user
from groupstage.schemas.progression import AssignGroupsRequest, AssignParticipantRequest
from groupstage.services.advancement_service import AdvancementOrchestrator
from groupstage.services.group_formation_service import GroupFormationService
from groupstage.services.participants import display_names

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tournaments", tags=["groups"])


async def _groups_payload(db: AsyncSession, tournament_id: int, groups):
    names = await display_names(
        db, tournament_id, [pid for g in groups for pid in g.participant_ids]
    )
    payload = []
    for group in groups:
        data = group.to_dict()
        data["participantNames"] = [names.get(pid) for pid in group.participant_ids]
        payload.append(data)
    return payload


@router.get("/{tournament_id}/groups")
async def list_groups(
    tournament_id: int,
    round: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    tournament = await get_tournament(db, tournament_id)
    round_number = round or tournament.current_round
    groups = await GroupFormationService.get_round_groups(db, tournament_id, round_number)
    return {
        "success": True,
        "round": round_number,
        "groups": await _groups_payload(db, tournament_id, groups),
    }


@router.post("/{tournament_id}/assign-groups")
async def assign_groups(
    tournament_id: int,
    request: Optional[AssignGroupsRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    """
    Form or regenerate the current round's groups.

    Replaces any existing groups of that round and clears its schedule and
    results. Without `participantIds`, round 1 uses the registration pool.
    """
    request = request or AssignGroupsRequest()
    groups = await AdvancementOrchestrator.regenerate_round(
        db, tournament_id, current_user,
        round_number=request.round,
        participant_ids=request.participant_ids,
        capacity=request.teams_per_group,
    )
    return {
        "success": True,
        "round": request.round,
        "numberOfGroups": len(groups),
        "groups": await _groups_payload(db, tournament_id, groups),
    }


@router.post("/{tournament_id}/recreate-groups")
async def recreate_groups(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    """Regenerate round-1 groups from the registration pool with the saved capacity."""
    groups = await AdvancementOrchestrator.regenerate_round(
        db, tournament_id, current_user, round_number=1
    )
    return {
        "success": True,
        "round": 1,
        "numberOfGroups": len(groups),
        "groups": await _groups_payload(db, tournament_id, groups),
    }


@router.post("/{tournament_id}/assign-participant")
async def assign_participant(
    tournament_id: int,
    request: AssignParticipantRequest,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    """Move one participant into a group, or out of every group with groupId ""."""
    group = await GroupFormationService.assign_participant(
        db, tournament_id, current_user,
        participant_id=request.participant_id,
        group_id=request.group_id,
        round_number=request.round,
    )
    groups = await GroupFormationService.get_round_groups(db, tournament_id, request.round)
    return {
        "success": True,
        "participantId": request.participant_id,
        "groupId": group.id if group else None,
        "round": request.round,
        "groups": await _groups_payload(db, tournament_id, groups),
    }
