"""
Tournament lifecycle transitions and registration.
"""
import pytest

from groupstage.core.context import RequestContext
from groupstage.errors import AuthorizationError, ErrorCode, NotFoundError, StateError, ValidationError
from groupstage.orm.tournament import ParticipantKind, TournamentStatus
from groupstage.services.group_formation_service import GroupFormationService
from groupstage.services.lifecycle_service import LifecycleService
from groupstage.services.registration_service import RegistrationService
from groupstage.tests.helpers import HOST, STRANGER, make_tournament

PLAYER = RequestContext(user_id="player-1", username="player1")


class TestCreateTournament:

    async def test_starts_upcoming_in_round_one(self, db):
        tournament = await LifecycleService.create_tournament(
            db, HOST, name="  Night Cup ", format="Squad", total_rounds=3, total_slots=16
        )

        assert tournament.name == "Night Cup"
        assert tournament.status == TournamentStatus.UPCOMING.value
        assert tournament.current_round == 1
        assert tournament.host_id == HOST.user_id

    @pytest.mark.parametrize("kwargs", [
        {"name": " "},
        {"name": "Cup", "format": "Trio"},
        {"name": "Cup", "total_rounds": 0},
        {"name": "Cup", "teams_per_group": 0},
    ])
    async def test_invalid_input(self, db, kwargs):
        with pytest.raises(ValidationError):
            await LifecycleService.create_tournament(db, HOST, **kwargs)


class TestTransitions:

    async def test_happy_path(self, db):
        tournament, _ = await make_tournament(db, participants=2)

        assert tournament.status == TournamentStatus.ONGOING.value
        assert tournament.started_at is not None

    async def test_cannot_skip_registration(self, db):
        tournament = await LifecycleService.create_tournament(db, HOST, name="Cup")
        tournament_id = tournament.id

        with pytest.raises(StateError) as exc:
            await LifecycleService.start_tournament(db, tournament_id, HOST)
        assert exc.value.code == ErrorCode.STATE_TRANSITION_INVALID

    async def test_start_needs_participants(self, db):
        tournament, _ = await make_tournament(db, participants=0, start=False)
        tournament_id = tournament.id

        with pytest.raises(StateError) as exc:
            await LifecycleService.start_tournament(db, tournament_id, HOST)
        assert exc.value.code == ErrorCode.INSUFFICIENT_PARTICIPANTS

    async def test_cancelled_is_closed(self, db):
        tournament, _ = await make_tournament(db, participants=2)
        tournament_id = tournament.id
        cancelled = await LifecycleService.cancel_tournament(db, tournament_id, HOST)
        assert cancelled.status == TournamentStatus.CANCELLED.value

        with pytest.raises(StateError) as exc:
            await GroupFormationService.form_groups(db, tournament_id, 1, HOST)
        assert exc.value.code == ErrorCode.TOURNAMENT_CLOSED

        with pytest.raises(StateError) as exc:
            await LifecycleService.cancel_tournament(db, tournament_id, HOST)
        assert exc.value.code == ErrorCode.TOURNAMENT_CLOSED

    async def test_only_host_transitions(self, db):
        tournament = await LifecycleService.create_tournament(db, HOST, name="Cup")
        tournament_id = tournament.id

        with pytest.raises(AuthorizationError) as exc:
            await LifecycleService.open_registration(db, tournament_id, STRANGER)
        assert exc.value.code == ErrorCode.NOT_HOST


class TestRoundSettings:

    async def test_round_one_updates_tournament_default(self, db):
        tournament, _ = await make_tournament(db, participants=2, total_rounds=2)
        tournament_id = tournament.id

        await LifecycleService.update_round_settings(
            db, tournament_id, HOST, 1, teams_per_group=6, round_name="Qualifiers"
        )
        await LifecycleService.update_round_settings(db, tournament_id, HOST, 2, teams_per_group=3)

        overview = await LifecycleService.get_overview(db, tournament_id)
        assert overview["teamsPerGroup"] == 6
        assert [r["roundName"] for r in overview["rounds"]] == ["Qualifiers", "Round 2"]
        assert [s["teamsPerGroup"] for s in overview["roundSettings"]] == [6, 3]

    async def test_capacity_below_one(self, db):
        tournament, _ = await make_tournament(db, participants=2)
        tournament_id = tournament.id

        with pytest.raises(ValidationError):
            await LifecycleService.update_round_settings(db, tournament_id, HOST, 1, teams_per_group=0)


class TestRegistration:

    @pytest.fixture
    async def open_solo(self, db):
        tournament, _ = await make_tournament(db, participants=0, start=False)
        return tournament.id

    async def test_join_as_player(self, db, open_solo):
        participant = await RegistrationService.join(db, open_solo, PLAYER)

        assert participant.kind == ParticipantKind.PLAYER.value
        assert participant.user_id == PLAYER.user_id
        assert participant.seed_order == 1

    async def test_join_twice(self, db, open_solo):
        await RegistrationService.join(db, open_solo, PLAYER)

        with pytest.raises(StateError) as exc:
            await RegistrationService.join(db, open_solo, PLAYER)
        assert exc.value.code == ErrorCode.ALREADY_REGISTERED

    async def test_join_needs_open_registration(self, db):
        tournament = await LifecycleService.create_tournament(db, HOST, name="Cup")
        tournament_id = tournament.id

        with pytest.raises(StateError) as exc:
            await RegistrationService.join(db, tournament_id, PLAYER)
        assert exc.value.code == ErrorCode.REGISTRATION_CLOSED

    async def test_host_may_add_before_opening(self, db):
        tournament = await LifecycleService.create_tournament(db, HOST, name="Cup")

        participant = await RegistrationService.add_participant(
            db, tournament.id, HOST, user_id="p-1", username="p1"
        )

        assert participant.tournament_id == tournament.id

    async def test_full_tournament(self, db):
        tournament = await LifecycleService.create_tournament(db, HOST, name="Cup", total_slots=1)
        tournament_id = tournament.id
        await LifecycleService.open_registration(db, tournament_id, HOST)
        await RegistrationService.join(db, tournament_id, PLAYER)

        with pytest.raises(StateError) as exc:
            await RegistrationService.join(db, tournament_id, STRANGER)
        assert exc.value.code == ErrorCode.TOURNAMENT_FULL

    async def test_duo_team_needs_two_members(self, db):
        tournament = await LifecycleService.create_tournament(db, HOST, name="Duo Cup", format="Duo")
        tournament_id = tournament.id
        await LifecycleService.open_registration(db, tournament_id, HOST)

        with pytest.raises(ValidationError):
            await RegistrationService.join(db, tournament_id, PLAYER, team_name="Solo Act")

        team = await RegistrationService.join(
            db, tournament_id, PLAYER, team_name="Twin Peaks",
            members=[{"userId": "mate-1", "username": "mate"}]
        )
        assert team.kind == ParticipantKind.TEAM.value
        assert [m["userId"] for m in team.members] == ["player-1", "mate-1"]

    async def test_team_member_cannot_register_again(self, db):
        tournament = await LifecycleService.create_tournament(db, HOST, name="Duo Cup", format="Duo")
        tournament_id = tournament.id
        await LifecycleService.open_registration(db, tournament_id, HOST)
        await RegistrationService.join(
            db, tournament_id, PLAYER, team_name="Twin Peaks", members=[{"userId": "mate-1"}]
        )

        with pytest.raises(StateError) as exc:
            await RegistrationService.join(
                db, tournament_id, RequestContext(user_id="mate-1", username="mate"),
                team_name="Other", members=[{"userId": "mate-2"}]
            )
        assert exc.value.code == ErrorCode.ALREADY_REGISTERED

    async def test_leave_frees_group_seat(self, db, open_solo):
        participant = await RegistrationService.join(db, open_solo, PLAYER)
        participant_id = participant.id
        await RegistrationService.add_participant(db, open_solo, HOST, user_id="p-2", username="p2")
        await GroupFormationService.form_groups(db, open_solo, 1, HOST)

        left = await RegistrationService.leave(db, open_solo, PLAYER)

        assert left == participant_id
        groups = await GroupFormationService.get_round_groups(db, open_solo, 1)
        assert all(participant_id not in g.participant_ids for g in groups)
        assert [p.user_id for p in await RegistrationService.list_participants(db, open_solo)] == ["p-2"]

    async def test_leave_when_not_registered(self, db, open_solo):
        with pytest.raises(NotFoundError) as exc:
            await RegistrationService.leave(db, open_solo, STRANGER)
        assert exc.value.code == ErrorCode.PARTICIPANT_NOT_FOUND
