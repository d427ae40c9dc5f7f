"""
Broadcast API Routes.

Host announcements to one group or to every group of a round. A delivery
failure in one group is reported in `failed` and does not stop the others.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.core.context import RequestContext
from groupstage.database import get_db
from groupstage.rbac import get_current_user
from groupstage.schemas.progression import BroadcastRequest, GroupMessageRequest
from groupstage.services.broadcast_service import BroadcastService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tournaments", tags=["broadcast"])


@router.post("/{tournament_id}/group-message")
async def send_group_message(
    tournament_id: int,
    request: GroupMessageRequest,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    report = await BroadcastService.send_group_message(
        db, tournament_id, current_user,
        group_id=request.group_id,
        text=request.message,
        round_number=request.round,
    )
    return report.to_dict()


@router.post("/{tournament_id}/broadcast")
async def broadcast_to_round(
    tournament_id: int,
    request: BroadcastRequest,
    db: AsyncSession = Depends(get_db),
    current_user: RequestContext = Depends(get_current_user)
):
    report = await BroadcastService.broadcast_to_round(
        db, tournament_id, current_user,
        text=request.message,
        round_number=request.round,
    )
    return report.to_dict()
