"""
Builders shared by the test modules.
"""
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.core.context import RequestContext
from groupstage.rbac import create_access_token
from groupstage.services.lifecycle_service import LifecycleService
from groupstage.services.registration_service import RegistrationService
from groupstage.services.results_ledger_service import TeamStats

HOST = RequestContext(user_id="host-1", username="host")
STRANGER = RequestContext(user_id="user-99", username="stranger")


def auth_headers(ctx: RequestContext) -> dict:
    token = create_access_token({"sub": ctx.user_id, "username": ctx.username})
    return {"Authorization": f"Bearer {token}"}


async def make_tournament(
    db: AsyncSession,
    participants: int = 0,
    total_rounds: int = 2,
    teams_per_group: int = 4,
    start: bool = True,
    host: RequestContext = HOST
):
    """
    Tournament with `participants` Solo players registered by the host.

    Returns (tournament, participant ids in seed order). With `start` the
    tournament is Ongoing in round 1.
    """
    tournament = await LifecycleService.create_tournament(
        db, host,
        name="Weekend Cup",
        format="Solo",
        total_rounds=total_rounds,
        total_slots=max(participants, 1) * 2,
        teams_per_group=teams_per_group,
    )
    await LifecycleService.open_registration(db, tournament.id, host)

    ids: List[int] = []
    for i in range(participants):
        participant = await RegistrationService.add_participant(
            db, tournament.id, host,
            user_id=f"player-{i + 1}",
            username=f"player{i + 1}",
        )
        ids.append(participant.id)

    if start and participants:
        tournament = await LifecycleService.start_tournament(db, tournament.id, host)
    return tournament, ids


def stats_for(team_ids: List[int], points: Optional[List[int]] = None) -> List[TeamStats]:
    """TeamStats with strictly descending points in the given order."""
    points = points or [100 - 10 * i for i in range(len(team_ids))]
    return [
        TeamStats(team_id=tid, wins=0, finish_points=p, position_points=0)
        for tid, p in zip(team_ids, points)
    ]
