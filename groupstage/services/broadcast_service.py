"""
Group Broadcast: fan-out of host announcements to group channels.

Delivery is delegated to a MessagingAdapter (the external messaging
collaborator). The engine only produces the list of target channels; it never
stores message history itself.

Each group is delivered independently: a failure on one channel is recorded
in the BroadcastReport and the remaining groups are still attempted.

Usage:
    from groupstage.services.broadcast_service import MessagingManager

    MessagingManager.set_adapter(MyChatAdapter(client))
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from groupstage.core.context import RequestContext
from groupstage.core.tournament_guard import ensure_host, ensure_round_in_range, get_tournament
from groupstage.errors import ErrorCode, ValidationError
from groupstage.orm.base import utcnow
from groupstage.orm.group import Group
from groupstage.services.group_formation_service import GroupFormationService

logger = logging.getLogger(__name__)


def group_channel(tournament_id: int, round_number: int, group_id: int) -> str:
    return f"tournament:{tournament_id}:round:{round_number}:group:{group_id}"


# =============================================================================
# Messaging Adapter Interface
# =============================================================================

class MessagingAdapter(ABC):
    """
    Delivery contract for announcement text.

    Implementations raise on failure; the fan-out turns that into a
    per-group entry of the report.
    """

    @abstractmethod
    async def deliver(self, channel: str, message: Dict[str, Any]) -> None:
        """
        Deliver one message to one channel.

        Args:
            channel: Channel name, see group_channel()
            message: Payload with at least "text" and "sender"
        """
        pass


class LocalMemoryMessagingAdapter(MessagingAdapter):
    """
    In-process outbox, the default adapter.

    Fine for development and single-worker deployments; messages are lost on
    restart and are not visible to other workers.
    """

    def __init__(self):
        self._outbox: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def deliver(self, channel: str, message: Dict[str, Any]) -> None:
        async with self._lock:
            self._outbox.setdefault(channel, []).append({
                **message,
                "_meta": {"delivered_at": utcnow().isoformat(), "node": "local"},
            })

    def get_messages(self, channel: str) -> List[Dict[str, Any]]:
        return list(self._outbox.get(channel, []))


class MessagingManager:
    """Process-wide holder of the messaging adapter."""

    _instance: Optional[MessagingAdapter] = None

    @classmethod
    def get_adapter(cls) -> MessagingAdapter:
        if cls._instance is None:
            cls._instance = LocalMemoryMessagingAdapter()
        return cls._instance

    @classmethod
    def set_adapter(cls, adapter: MessagingAdapter) -> None:
        cls._instance = adapter

    @classmethod
    def reset(cls) -> None:
        """Reset to default adapter (useful for testing)."""
        cls._instance = LocalMemoryMessagingAdapter()


# =============================================================================
# Fan-out
# =============================================================================

@dataclass
class BroadcastReport:
    round: int
    delivered: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.delivered) or not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "round": self.round,
            "delivered": self.delivered,
            "failed": self.failed,
        }


class BroadcastService:
    """Sends host announcements to one group or every group of a round."""

    @staticmethod
    async def _fan_out(
        tournament_id: int,
        round_number: int,
        groups: List[Group],
        text: str,
        ctx: RequestContext
    ) -> BroadcastReport:
        adapter = MessagingManager.get_adapter()
        report = BroadcastReport(round=round_number)

        for group in groups:
            channel = group_channel(tournament_id, round_number, group.id)
            payload = {
                "type": "announcement",
                "tournamentId": tournament_id,
                "round": round_number,
                "groupId": group.id,
                "groupName": group.name,
                "text": text,
                "sender": ctx.actor,
                "sentAt": utcnow().isoformat(),
            }
            try:
                await adapter.deliver(channel, payload)
            except Exception as e:
                logger.warning(
                    f"[BROADCAST FAILED] tournament={tournament_id} group={group.name}: "
                    f"{type(e).__name__}: {e}"
                )
                report.failed.append({
                    "groupId": group.id,
                    "group": group.name,
                    "error": str(e) or type(e).__name__,
                })
                continue
            report.delivered.append({"groupId": group.id, "group": group.name})

        logger.info(
            f"[BROADCAST] tournament={tournament_id} round={round_number} "
            f"delivered={len(report.delivered)} failed={len(report.failed)}"
        )
        return report

    @staticmethod
    def _validate_text(text: Optional[str]) -> str:
        if not text or not text.strip():
            raise ValidationError("Message text is required", ErrorCode.INVALID_INPUT)
        return text.strip()

    @staticmethod
    async def send_group_message(
        db: AsyncSession,
        tournament_id: int,
        ctx: RequestContext,
        group_id: int,
        text: str,
        round_number: Optional[int] = None
    ) -> BroadcastReport:
        tournament = await get_tournament(db, tournament_id)
        ensure_host(tournament, ctx)
        text = BroadcastService._validate_text(text)
        if round_number is None:
            round_number = tournament.current_round
        ensure_round_in_range(tournament, round_number)

        group = await GroupFormationService.get_group(db, tournament_id, group_id, round_number)
        return await BroadcastService._fan_out(tournament_id, round_number, [group], text, ctx)

    @staticmethod
    async def broadcast_to_round(
        db: AsyncSession,
        tournament_id: int,
        ctx: RequestContext,
        text: str,
        round_number: Optional[int] = None
    ) -> BroadcastReport:
        tournament = await get_tournament(db, tournament_id)
        ensure_host(tournament, ctx)
        text = BroadcastService._validate_text(text)
        if round_number is None:
            round_number = tournament.current_round
        ensure_round_in_range(tournament, round_number)

        groups = await GroupFormationService.get_round_groups(db, tournament_id, round_number)
        return await BroadcastService._fan_out(tournament_id, round_number, groups, text, ctx)
