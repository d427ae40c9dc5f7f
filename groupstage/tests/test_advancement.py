"""
Round advancement, regeneration and finalization.
"""
import math

import pytest
from sqlalchemy import func, select

from groupstage.errors import ErrorCode, StateError
from groupstage.orm.group import Group
from groupstage.orm.results import FinalPlacement, QualificationSource
from groupstage.orm.tournament import TournamentStatus
from groupstage.services.advancement_service import AdvancementOrchestrator
from groupstage.services.group_formation_service import GroupFormationService
from groupstage.services.lifecycle_service import LifecycleService
from groupstage.services.qualification_service import QualificationEngine
from groupstage.services.results_ledger_service import ResultsLedger
from groupstage.services.round_schedule_service import RoundScheduler
from groupstage.tests.helpers import HOST, make_tournament, stats_for
from groupstage.tests.test_qualification import play_round


@pytest.fixture
async def round_one_played(db):
    tournament, ids = await make_tournament(db, participants=16, teams_per_group=4, total_rounds=2)
    await GroupFormationService.form_groups(db, tournament.id, 1, HOST)
    groups = await play_round(db, tournament.id)
    return tournament.id, groups


class TestAdvanceRound:

    async def test_four_groups_into_two(self, db, round_one_played):
        tournament_id, groups = round_one_played
        await QualificationEngine.save_settings(db, tournament_id, HOST, 1, 2, 4)

        advance = await AdvancementOrchestrator.advance_round(db, tournament_id, HOST, from_round=1)

        assert advance.round == 2
        assert advance.qualified_count == 8
        assert len(advance.groups) == math.ceil(8 / 4) == 2
        assert [g.name for g in advance.groups] == ["Group A", "Group B"]
        assert all(g.round == 2 and g.capacity == 4 for g in advance.groups)
        expected = [pid for g in groups for pid in g.participant_ids[:2]]
        assert [pid for g in advance.groups for pid in g.participant_ids] == expected

        overview = await LifecycleService.get_overview(db, tournament_id)
        assert overview["currentRound"] == 2
        assert {"round": 2, "roundName": "Round 2", "teamsPerGroup": 4, "totalSlots": None} in (
            overview["roundSettings"]
        )

    async def test_group_count_is_ceiling(self, db, round_one_played):
        tournament_id, _ = round_one_played

        advance = await AdvancementOrchestrator.advance_round(
            db, tournament_id, HOST, from_round=1,
            teams_per_group_to_qualify=3, next_round_teams_per_group=5
        )

        assert advance.qualified_count == 12
        assert len(advance.groups) == math.ceil(12 / 5)
        assert [len(g.participant_ids) for g in advance.groups] == [5, 5, 2]

    async def test_repeat_advance_replaces_round_two(self, db, round_one_played):
        tournament_id, _ = round_one_played

        first = await AdvancementOrchestrator.advance_round(db, tournament_id, HOST, from_round=1)
        first_groups = [(g.name, list(g.participant_ids)) for g in first.groups]
        second = await AdvancementOrchestrator.advance_round(db, tournament_id, HOST, from_round=1)

        assert [(g.name, list(g.participant_ids)) for g in second.groups] == first_groups
        count = await db.execute(
            select(func.count(Group.id)).where(Group.tournament_id == tournament_id, Group.round == 2)
        )
        assert count.scalar() == len(first_groups)

    async def test_repeat_advance_drops_next_round_records(self, db):
        tournament, ids = await make_tournament(db, participants=16, teams_per_group=4, total_rounds=3)
        tournament_id = tournament.id
        await GroupFormationService.form_groups(db, tournament_id, 1, HOST)
        await play_round(db, tournament_id)
        await AdvancementOrchestrator.advance_round(db, tournament_id, HOST, from_round=1)
        round_two = await play_round(db, tournament_id, round_number=2)
        await QualificationEngine.qualify(
            db, tournament_id, HOST, 2, qualified_team_ids=[round_two[0].participant_ids[0]]
        )

        await AdvancementOrchestrator.advance_round(db, tournament_id, HOST, from_round=1)

        assert await QualificationEngine.latest_record(db, tournament_id, 2) is None
        with pytest.raises(StateError) as exc:
            await AdvancementOrchestrator.advance_round(db, tournament_id, HOST, from_round=2)
        assert exc.value.code == ErrorCode.NO_QUALIFIED_TEAMS

    async def test_manual_record_is_used_without_explicit_policy(self, db, round_one_played):
        tournament_id, groups = round_one_played
        picked = [groups[3].participant_ids[3], groups[0].participant_ids[0], groups[1].participant_ids[2]]
        await QualificationEngine.qualify(
            db, tournament_id, HOST, 1, qualified_team_ids=picked, next_round_teams_per_group=2
        )

        advance = await AdvancementOrchestrator.advance_round(db, tournament_id, HOST, from_round=1)

        assert advance.record.source == QualificationSource.MANUAL.value
        assert [pid for g in advance.groups for pid in g.participant_ids] == picked
        assert [len(g.participant_ids) for g in advance.groups] == [2, 1]

    async def test_explicit_policy_recomputes(self, db, round_one_played):
        tournament_id, groups = round_one_played
        await QualificationEngine.qualify(
            db, tournament_id, HOST, 1, qualified_team_ids=[groups[0].participant_ids[3]]
        )

        advance = await AdvancementOrchestrator.advance_round(
            db, tournament_id, HOST, from_round=1, teams_per_group_to_qualify=1
        )

        assert advance.record.source == QualificationSource.COMPUTED.value
        assert advance.qualified_count == 4

    async def test_final_round_cannot_advance(self, db):
        tournament, ids = await make_tournament(db, participants=4, total_rounds=1)
        tournament_id = tournament.id

        with pytest.raises(StateError) as exc:
            await AdvancementOrchestrator.advance_round(db, tournament_id, HOST, from_round=1)
        assert exc.value.code == ErrorCode.ALREADY_FINAL_ROUND

    async def test_no_results_no_qualifiers(self, db):
        tournament, ids = await make_tournament(db, participants=8, total_rounds=2)
        tournament_id = tournament.id
        await GroupFormationService.form_groups(db, tournament_id, 1, HOST)

        with pytest.raises(StateError) as exc:
            await AdvancementOrchestrator.advance_round(db, tournament_id, HOST, from_round=1)
        assert exc.value.code == ErrorCode.NO_QUALIFIED_TEAMS

        tournament = await LifecycleService.get_overview(db, tournament_id)
        assert tournament["currentRound"] == 1

    async def test_must_be_ongoing(self, db):
        tournament, ids = await make_tournament(db, participants=4, total_rounds=2, start=False)
        tournament_id = tournament.id

        with pytest.raises(StateError) as exc:
            await AdvancementOrchestrator.advance_round(db, tournament_id, HOST, from_round=1)
        assert exc.value.code == ErrorCode.STATE_TRANSITION_INVALID

    async def test_cannot_skip_ahead(self, db):
        tournament, ids = await make_tournament(db, participants=4, total_rounds=3)
        tournament_id = tournament.id

        with pytest.raises(StateError) as exc:
            await AdvancementOrchestrator.advance_round(db, tournament_id, HOST, from_round=2)
        assert exc.value.code == ErrorCode.ROUND_OUT_OF_SEQUENCE


class TestRegenerateRound:

    async def test_regeneration_purges_schedule_and_results(self, db, round_one_played):
        tournament_id, groups = round_one_played
        await RoundScheduler.create_matches(db, tournament_id, HOST, 1, groups[0].id, count=2)

        new_groups = await AdvancementOrchestrator.regenerate_round(
            db, tournament_id, HOST, round_number=1, capacity=8
        )

        assert len(new_groups) == 2
        assert await RoundScheduler.list_matches(db, tournament_id, 1) == []
        assert await ResultsLedger.get_round_results(db, tournament_id, 1) == []

    async def test_regeneration_drops_qualification_records(self, db, round_one_played):
        tournament_id, groups = round_one_played
        picked = [groups[0].participant_ids[0], groups[1].participant_ids[0]]
        await QualificationEngine.qualify(db, tournament_id, HOST, 1, qualified_team_ids=picked)

        await AdvancementOrchestrator.regenerate_round(db, tournament_id, HOST, round_number=1)

        assert await ResultsLedger.get_round_results(db, tournament_id, 1) == []
        assert await QualificationEngine.latest_record(db, tournament_id, 1) is None
        with pytest.raises(StateError) as exc:
            await AdvancementOrchestrator.advance_round(db, tournament_id, HOST, from_round=1)
        assert exc.value.code == ErrorCode.NO_QUALIFIED_TEAMS

    async def test_regeneration_drops_overrides(self, db, round_one_played):
        tournament_id, groups = round_one_played
        leader = groups[0].participant_ids[0]
        await QualificationEngine.override_qualification(db, tournament_id, HOST, leader, 1, False)

        await AdvancementOrchestrator.regenerate_round(db, tournament_id, HOST, round_number=1)
        assert await ResultsLedger.get_overrides(db, tournament_id, 1) == {}

        new_groups = await GroupFormationService.get_round_groups(db, tournament_id, 1)
        group_a = new_groups[0]
        assert group_a.participant_ids[0] == leader
        result = await ResultsLedger.submit_group_result(
            db, tournament_id, HOST, 1, stats_for(list(group_a.participant_ids)), group_name=group_a.name
        )

        assert (result.teams[0].team_id, result.teams[0].qualified) == (leader, True)

    async def test_only_current_round(self, db, round_one_played):
        tournament_id, groups = round_one_played
        pool = list(groups[0].participant_ids)

        with pytest.raises(StateError) as exc:
            await AdvancementOrchestrator.regenerate_round(
                db, tournament_id, HOST, round_number=2, participant_ids=pool
            )
        assert exc.value.code == ErrorCode.ROUND_OUT_OF_SEQUENCE


class TestFinalize:

    @pytest.fixture
    async def final_round_played(self, db, round_one_played):
        tournament_id, _ = round_one_played
        await QualificationEngine.save_settings(db, tournament_id, HOST, 1, 2, 4)
        advance = await AdvancementOrchestrator.advance_round(db, tournament_id, HOST, from_round=1)
        await play_round(db, tournament_id, round_number=2)
        return tournament_id, advance.groups

    async def test_podium_is_unique(self, db, final_round_played):
        tournament_id, final_groups = final_round_played

        outcome = await AdvancementOrchestrator.finalize_tournament(db, tournament_id, HOST)

        group_a, group_b = (list(g.participant_ids) for g in final_groups)
        assert outcome["winner"] == group_a[0]
        assert outcome["runnerUp"] == group_b[0]
        assert outcome["thirdPlace"] == group_a[1]
        assert outcome["tournament"].status == TournamentStatus.COMPLETED.value

        results = await ResultsLedger.get_round_results(db, tournament_id, 2)
        placements = [t.placement for r in results for t in r.teams if t.placement]
        assert sorted(placements) == sorted(p.value for p in FinalPlacement)
        assert not any(t.qualified for r in results for t in r.teams)

    async def test_completed_tournament_is_closed(self, db, final_round_played):
        tournament_id, _ = final_round_played
        await AdvancementOrchestrator.finalize_tournament(db, tournament_id, HOST)

        with pytest.raises(StateError) as exc:
            await ResultsLedger.submit_group_result(
                db, tournament_id, HOST, 2, stats_for([1]), group_name="Group A"
            )
        assert exc.value.code == ErrorCode.TOURNAMENT_CLOSED

    async def test_not_in_final_round(self, db, round_one_played):
        tournament_id, _ = round_one_played

        with pytest.raises(StateError) as exc:
            await AdvancementOrchestrator.finalize_tournament(db, tournament_id, HOST)
        assert exc.value.code == ErrorCode.NOT_FINAL_ROUND

    async def test_final_results_required(self, db):
        tournament, ids = await make_tournament(db, participants=4, total_rounds=1)
        tournament_id = tournament.id

        with pytest.raises(StateError) as exc:
            await AdvancementOrchestrator.finalize_tournament(db, tournament_id, HOST)
        assert exc.value.code == ErrorCode.RESULTS_MISSING
