"""
Group announcements through the messaging adapter.
"""
import pytest

from groupstage.errors import AuthorizationError, ErrorCode, NotFoundError, ValidationError
from groupstage.services.broadcast_service import (
    BroadcastService, LocalMemoryMessagingAdapter, MessagingAdapter, MessagingManager, group_channel
)
from groupstage.services.group_formation_service import GroupFormationService
from groupstage.tests.helpers import HOST, STRANGER, make_tournament


class FlakyAdapter(LocalMemoryMessagingAdapter):
    """Fails delivery to the listed group ids."""

    def __init__(self, failing_group_ids):
        super().__init__()
        self.failing_group_ids = set(failing_group_ids)

    async def deliver(self, channel, message):
        if message["groupId"] in self.failing_group_ids:
            raise ConnectionError("channel unavailable")
        await super().deliver(channel, message)


class DownAdapter(MessagingAdapter):
    async def deliver(self, channel, message):
        raise ConnectionError("messaging down")


@pytest.fixture
async def three_groups(db):
    tournament, _ = await make_tournament(db, participants=9, teams_per_group=3)
    groups = await GroupFormationService.form_groups(db, tournament.id, 1, HOST)
    return tournament.id, groups


class TestBroadcast:

    async def test_every_group_receives_announcement(self, db, three_groups):
        tournament_id, groups = three_groups

        report = await BroadcastService.broadcast_to_round(db, tournament_id, HOST, "  Lobby opens at 8  ")

        assert report.success is True
        assert [d["group"] for d in report.delivered] == ["Group A", "Group B", "Group C"]
        adapter = MessagingManager.get_adapter()
        for group in groups:
            messages = adapter.get_messages(group_channel(tournament_id, 1, group.id))
            assert len(messages) == 1
            assert messages[0]["text"] == "Lobby opens at 8"
            assert messages[0]["sender"] == HOST.username

    async def test_one_failure_does_not_stop_the_rest(self, db, three_groups):
        tournament_id, groups = three_groups
        MessagingManager.set_adapter(FlakyAdapter([groups[1].id]))

        report = await BroadcastService.broadcast_to_round(db, tournament_id, HOST, "Room code 1234")

        assert report.success is True
        assert [d["group"] for d in report.delivered] == ["Group A", "Group C"]
        assert report.failed == [
            {"groupId": groups[1].id, "group": "Group B", "error": "channel unavailable"}
        ]

    async def test_all_failed(self, db, three_groups):
        tournament_id, _ = three_groups
        MessagingManager.set_adapter(DownAdapter())

        report = await BroadcastService.broadcast_to_round(db, tournament_id, HOST, "Hello")

        assert report.success is False
        assert len(report.failed) == 3
        assert report.to_dict()["delivered"] == []

    async def test_round_without_groups(self, db, three_groups):
        tournament_id, _ = three_groups

        report = await BroadcastService.broadcast_to_round(db, tournament_id, HOST, "Hello", round_number=2)

        assert report.delivered == [] and report.failed == []
        assert report.success is True

    async def test_empty_text(self, db, three_groups):
        tournament_id, _ = three_groups

        with pytest.raises(ValidationError):
            await BroadcastService.broadcast_to_round(db, tournament_id, HOST, "   ")

    async def test_host_only(self, db, three_groups):
        tournament_id, _ = three_groups

        with pytest.raises(AuthorizationError):
            await BroadcastService.broadcast_to_round(db, tournament_id, STRANGER, "Hello")


class TestGroupMessage:

    async def test_single_group(self, db, three_groups):
        tournament_id, groups = three_groups

        report = await BroadcastService.send_group_message(
            db, tournament_id, HOST, group_id=groups[2].id, text="You are up next"
        )

        assert report.delivered == [{"groupId": groups[2].id, "group": "Group C"}]
        adapter = MessagingManager.get_adapter()
        assert adapter.get_messages(group_channel(tournament_id, 1, groups[0].id)) == []

    async def test_unknown_group(self, db, three_groups):
        tournament_id, _ = three_groups

        with pytest.raises(NotFoundError) as exc:
            await BroadcastService.send_group_message(db, tournament_id, HOST, group_id=999, text="Hi")
        assert exc.value.code == ErrorCode.GROUP_NOT_FOUND
