"""
Tournament Guard: per-tournament mutation serialization and host checks.

Every operation that mutates a Tournament aggregate runs inside
`tournament_transaction`:
- an in-process asyncio.Lock keyed by tournament id serializes writers
- the tournament row is re-read with SELECT ... FOR UPDATE
- the host check runs before the caller sees the aggregate
- the commit happens before the lock is released
- the tournament `version` column turns lost updates from other processes
  into a PersistenceError instead of a silent overwrite

Reads never enter this path.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.core.context import RequestContext
from groupstage.errors import (
    APIError, AuthorizationError, ErrorCode, PersistenceError, StateError, ValidationError,
    tournament_not_found
)
from groupstage.orm.base import utcnow
from groupstage.orm.tournament import Tournament

logger = logging.getLogger(__name__)

# Tournament id -> lock serializing its mutations within this process
_tournament_locks: Dict[int, asyncio.Lock] = {}


def lock_for(tournament_id: int) -> asyncio.Lock:
    lock = _tournament_locks.get(tournament_id)
    if lock is None:
        lock = asyncio.Lock()
        _tournament_locks[tournament_id] = lock
    return lock


async def get_tournament(
    db: AsyncSession,
    tournament_id: int,
    lock: bool = False
) -> Tournament:
    """
    Load a tournament or raise NotFoundError.

    Args:
        db: Database session
        tournament_id: Tournament id
        lock: Whether to use FOR UPDATE locking (also refreshes the identity map)
    """
    query = select(Tournament).where(Tournament.id == tournament_id)

    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)

    result = await db.execute(query)
    tournament = result.scalar_one_or_none()
    if tournament is None:
        raise tournament_not_found(tournament_id)
    return tournament


def ensure_host(tournament: Tournament, ctx: Optional[RequestContext]) -> None:
    if ctx is None or tournament.host_id != ctx.user_id:
        logger.warning(
            f"[NOT HOST] tournament={tournament.id} caller={ctx.user_id if ctx else None}"
        )
        raise AuthorizationError()


def ensure_not_closed(tournament: Tournament) -> None:
    if tournament.is_closed:
        raise StateError(
            f"Tournament {tournament.id} is {tournament.status}",
            ErrorCode.TOURNAMENT_CLOSED,
            {"status": tournament.status}
        )


def ensure_round_in_range(tournament: Tournament, round_number: int) -> None:
    if round_number < 1 or round_number > tournament.total_rounds:
        raise ValidationError(
            f"Round must be between 1 and {tournament.total_rounds}, got {round_number}",
            details={"round": round_number, "totalRounds": tournament.total_rounds}
        )


@asynccontextmanager
async def tournament_transaction(
    db: AsyncSession,
    tournament_id: int,
    ctx: Optional[RequestContext],
    require_host: bool = True
) -> AsyncIterator[Tournament]:
    """
    Serialized, all-or-nothing unit of work on one tournament.

    Yields the locked Tournament. Commits when the block exits normally,
    rolls back on any exception. Storage failures surface as PersistenceError.
    """
    async with lock_for(tournament_id):
        try:
            tournament = await get_tournament(db, tournament_id, lock=True)
            if require_host:
                ensure_host(tournament, ctx)

            yield tournament

            tournament.updated_at = utcnow()
            await db.commit()
        except APIError:
            await db.rollback()
            raise
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"[PERSISTENCE] tournament={tournament_id}: {type(e).__name__}: {e}")
            raise PersistenceError() from e
        except BaseException:
            await db.rollback()
            raise
