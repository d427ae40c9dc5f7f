"""
Round scheduling and the match status machine.
"""
from datetime import datetime, timezone

import pytest

from groupstage.config.settings import SCHEDULE_TIME_NOW, SCHEDULE_TIME_UNSET, Settings, settings
from groupstage.errors import AuthorizationError, ErrorCode, NotFoundError, StateError, ValidationError
from groupstage.orm.match import MatchStatus
from groupstage.services.group_formation_service import GroupFormationService
from groupstage.services.round_schedule_service import MatchSlot, RoundScheduler
from groupstage.tests.helpers import HOST, STRANGER, make_tournament


@pytest.fixture
async def grouped(db):
    tournament, ids = await make_tournament(db, participants=8, teams_per_group=4)
    groups = await GroupFormationService.form_groups(db, tournament.id, 1, HOST)
    return tournament, groups


class TestCreateMatches:

    async def test_defaults_fill_missing_details(self, db, grouped):
        tournament, groups = grouped

        matches = await RoundScheduler.create_matches(
            db, tournament.id, HOST, round_number=1, group_id=groups[0].id, count=2
        )

        assert [m.match_number for m in matches] == [1, 2]
        assert all(m.status == MatchStatus.SCHEDULED.value for m in matches)
        assert all(m.venue == settings.SCHEDULE_DEFAULT_VENUE for m in matches)
        assert all(m.duration_minutes == settings.SCHEDULE_DEFAULT_DURATION_MINUTES for m in matches)
        assert matches[0].description == "Round 1 - Group A - Match 1"

    async def test_time_left_unset_by_default(self, db, grouped, monkeypatch):
        tournament, groups = grouped
        monkeypatch.setattr(Settings, "SCHEDULE_DEFAULT_TIME", SCHEDULE_TIME_UNSET)

        matches = await RoundScheduler.create_matches(
            db, tournament.id, HOST, round_number=1, group_id=groups[0].id, count=1
        )

        assert matches[0].scheduled_time is None

    async def test_time_defaults_to_now_when_configured(self, db, grouped, monkeypatch):
        tournament, groups = grouped
        monkeypatch.setattr(Settings, "SCHEDULE_DEFAULT_TIME", SCHEDULE_TIME_NOW)

        matches = await RoundScheduler.create_matches(
            db, tournament.id, HOST, round_number=1, group_id=groups[0].id, count=1
        )

        assert matches[0].scheduled_time is not None

    async def test_explicit_slot_details(self, db, grouped):
        tournament, groups = grouped
        when = datetime(2026, 5, 1, 18, 0, tzinfo=timezone.utc)

        matches = await RoundScheduler.create_matches(
            db, tournament.id, HOST, round_number=1, group_id=groups[1].id,
            slots=[MatchSlot(scheduled_time=when, venue="Erangel", duration_minutes=45)]
        )

        assert len(matches) == 1
        assert matches[0].scheduled_time == datetime(2026, 5, 1, 18, 0)
        assert matches[0].venue == "Erangel"
        assert matches[0].duration_minutes == 45

    async def test_numbers_continue_per_group(self, db, grouped):
        tournament, groups = grouped

        await RoundScheduler.create_matches(db, tournament.id, HOST, 1, groups[0].id, count=2)
        more = await RoundScheduler.create_matches(db, tournament.id, HOST, 1, groups[0].id, count=1)
        other = await RoundScheduler.create_matches(db, tournament.id, HOST, 1, groups[1].id, count=1)

        assert more[0].match_number == 3
        assert other[0].match_number == 1

    async def test_zero_matches_rejected(self, db, grouped):
        tournament, groups = grouped

        with pytest.raises(ValidationError):
            await RoundScheduler.create_matches(db, tournament.id, HOST, 1, groups[0].id, count=0)

    async def test_non_positive_duration_rejected(self, db, grouped):
        tournament, groups = grouped
        tournament_id = tournament.id

        with pytest.raises(ValidationError):
            await RoundScheduler.create_matches(
                db, tournament_id, HOST, 1, groups[0].id,
                slots=[MatchSlot(duration_minutes=0)]
            )
        assert await RoundScheduler.list_matches(db, tournament_id, 1) == []

    async def test_group_must_belong_to_round(self, db, grouped):
        tournament, groups = grouped

        with pytest.raises(NotFoundError) as exc:
            await RoundScheduler.create_matches(db, tournament.id, HOST, 2, groups[0].id, count=1)
        assert exc.value.code == ErrorCode.GROUP_NOT_FOUND

    async def test_non_host_rejected(self, db, grouped):
        tournament, groups = grouped

        with pytest.raises(AuthorizationError):
            await RoundScheduler.create_matches(db, tournament.id, STRANGER, 1, groups[0].id, count=0)


class TestDeleteMatches:

    async def test_delete_round_schedule(self, db, grouped):
        tournament, groups = grouped
        for group in groups:
            await RoundScheduler.create_matches(db, tournament.id, HOST, 1, group.id, count=2)

        deleted = await RoundScheduler.delete_matches_for_round(db, tournament.id, HOST, 1)

        assert deleted == 4
        assert await RoundScheduler.list_matches(db, tournament.id, 1) == []

    async def test_delete_single_match(self, db, grouped):
        tournament, groups = grouped
        matches = await RoundScheduler.create_matches(db, tournament.id, HOST, 1, groups[0].id, count=2)

        await RoundScheduler.delete_match(db, tournament.id, HOST, matches[0].id)

        remaining = await RoundScheduler.list_matches(db, tournament.id, 1)
        assert [m.id for m in remaining] == [matches[1].id]

    async def test_delete_unknown_match(self, db, grouped):
        tournament, _ = grouped

        with pytest.raises(NotFoundError) as exc:
            await RoundScheduler.delete_match(db, tournament.id, HOST, 12345)
        assert exc.value.code == ErrorCode.MATCH_NOT_FOUND


class TestMatchTransitions:

    @pytest.fixture
    async def match(self, db, grouped):
        tournament, groups = grouped
        matches = await RoundScheduler.create_matches(db, tournament.id, HOST, 1, groups[0].id, count=1)
        return tournament, matches[0]

    async def test_full_lifecycle(self, db, match):
        tournament, m = match

        started = await RoundScheduler.start_match(db, tournament.id, HOST, m.id)
        assert started.status == MatchStatus.IN_PROGRESS.value
        assert started.started_at is not None

        done = await RoundScheduler.record_match_result(db, tournament.id, HOST, m.id, 3, 1)
        assert done.status == MatchStatus.COMPLETED.value
        assert (done.team1_score, done.team2_score) == (3, 1)

    async def test_cannot_complete_before_start(self, db, match):
        tournament, m = match

        with pytest.raises(StateError) as exc:
            await RoundScheduler.record_match_result(db, tournament.id, HOST, m.id, 1, 0)
        assert exc.value.code == ErrorCode.STATE_TRANSITION_INVALID

    async def test_negative_score_rejected(self, db, match):
        tournament, m = match
        await RoundScheduler.start_match(db, tournament.id, HOST, m.id)

        with pytest.raises(ValidationError) as exc:
            await RoundScheduler.record_match_result(db, tournament.id, HOST, m.id, -1, 0)
        assert exc.value.code == ErrorCode.NEGATIVE_STAT

    async def test_cancelled_match_is_terminal(self, db, match):
        tournament, m = match
        tournament_id, match_id = tournament.id, m.id
        await RoundScheduler.cancel_match(db, tournament_id, HOST, match_id)

        with pytest.raises(StateError):
            await RoundScheduler.start_match(db, tournament_id, HOST, match_id)
        with pytest.raises(StateError):
            await RoundScheduler.update_match(db, tournament_id, HOST, match_id, venue="Miramar")

    async def test_update_schedule_fields(self, db, match):
        tournament, m = match

        updated = await RoundScheduler.update_match(
            db, tournament.id, HOST, m.id, venue="Sanhok", duration_minutes=20
        )

        assert updated.venue == "Sanhok"
        assert updated.duration_minutes == 20
