"""
Results ledger: ranking, replacement and standings.
"""
import pytest
from sqlalchemy import func, select

from groupstage.errors import AuthorizationError, ErrorCode, NotFoundError, ValidationError
from groupstage.orm.results import GroupResult, TeamResult
from groupstage.services.group_formation_service import GroupFormationService
from groupstage.services.results_ledger_service import (
    ResultsLedger, TeamStats, overall_standings, rank_teams, validate_stats
)
from groupstage.tests.helpers import HOST, STRANGER, make_tournament, stats_for


class TestRanking:

    def test_wins_break_points_tie(self):
        a = TeamStats(team_id=1, wins=3, finish_points=5, position_points=4)
        b = TeamStats(team_id=2, wins=1, finish_points=6, position_points=3)

        ranked = rank_teams([b, a])

        assert [(r.stats.team_id, r.rank) for r in ranked] == [(1, 1), (2, 2)]

    def test_full_tie_keeps_input_order(self):
        teams = [TeamStats(team_id=tid, wins=2, finish_points=5) for tid in (7, 3, 9)]

        ranked = rank_teams(teams)

        assert [r.stats.team_id for r in ranked] == [7, 3, 9]
        assert [r.rank for r in ranked] == [1, 2, 3]

    def test_points_dominate_wins(self):
        ranked = rank_teams([
            TeamStats(team_id=1, wins=5, finish_points=1),
            TeamStats(team_id=2, wins=0, finish_points=2),
        ])
        assert ranked[0].stats.team_id == 2

    def test_total_is_sum_of_components(self):
        assert TeamStats(team_id=1, finish_points=7, position_points=5).total_points == 12


class TestValidateStats:

    def test_negative_stat(self):
        with pytest.raises(ValidationError) as exc:
            validate_stats([TeamStats(team_id=1, wins=-1)])
        assert exc.value.code == ErrorCode.NEGATIVE_STAT

    def test_duplicate_team(self):
        with pytest.raises(ValidationError) as exc:
            validate_stats([TeamStats(team_id=1), TeamStats(team_id=1)])
        assert exc.value.code == ErrorCode.DUPLICATE_TEAM

    def test_empty(self):
        with pytest.raises(ValidationError):
            validate_stats([])


@pytest.fixture
async def grouped(db):
    tournament, ids = await make_tournament(db, participants=8, teams_per_group=4, total_rounds=2)
    groups = await GroupFormationService.form_groups(db, tournament.id, 1, HOST)
    return tournament.id, groups


class TestSubmitGroupResult:

    async def test_resubmission_replaces(self, db, grouped):
        tournament_id, groups = grouped
        team_ids = groups[0].participant_ids

        first = await ResultsLedger.submit_group_result(
            db, tournament_id, HOST, 1, stats_for(team_ids), group_name="Group A"
        )
        assert first.replaced is False
        second = await ResultsLedger.submit_group_result(
            db, tournament_id, HOST, 1, stats_for(list(reversed(team_ids))), group_name="Group A"
        )
        assert second.replaced is True

        count = await db.execute(
            select(func.count(GroupResult.id)).where(
                GroupResult.tournament_id == tournament_id,
                GroupResult.round == 1,
                GroupResult.group_name == "Group A"
            )
        )
        assert count.scalar() == 1
        team_rows = await db.execute(select(func.count(TeamResult.id)))
        assert team_rows.scalar() == 4

        stored = await ResultsLedger.get_group_result(db, tournament_id, 1, "Group A")
        assert stored.id == second.id
        assert [t.team_id for t in stored.teams] == list(reversed(team_ids))

    async def test_ranks_and_qualified_flags(self, db, grouped):
        tournament_id, groups = grouped
        team_ids = groups[0].participant_ids

        result = await ResultsLedger.submit_group_result(
            db, tournament_id, HOST, 1, stats_for(team_ids), group_id=groups[0].id
        )

        assert [t.rank for t in result.teams] == [1, 2, 3, 4]
        assert [t.qualified for t in result.teams] == [True, True, False, False]
        assert result.criteria == 2
        for team in result.teams:
            assert team.total_points == team.finish_points + team.position_points

    async def test_final_round_sets_no_qualified_flags(self, db):
        tournament, ids = await make_tournament(db, participants=4, total_rounds=1)
        await GroupFormationService.form_groups(db, tournament.id, 1, HOST)

        result = await ResultsLedger.submit_group_result(
            db, tournament.id, HOST, 1, stats_for(ids), group_name="Group A"
        )

        assert result.criteria is None
        assert not any(t.qualified for t in result.teams)

    async def test_team_outside_group_rejected(self, db, grouped):
        tournament_id, groups = grouped
        foreign = groups[1].participant_ids[0]

        with pytest.raises(ValidationError):
            await ResultsLedger.submit_group_result(
                db, tournament_id, HOST, 1,
                stats_for(groups[0].participant_ids[:3] + [foreign]),
                group_name="Group A"
            )

    async def test_unknown_group_name(self, db, grouped):
        tournament_id, groups = grouped

        with pytest.raises(NotFoundError) as exc:
            await ResultsLedger.submit_group_result(
                db, tournament_id, HOST, 1, stats_for(groups[0].participant_ids),
                group_name="Group Q"
            )
        assert exc.value.code == ErrorCode.GROUP_NOT_FOUND

    async def test_mismatched_id_and_name(self, db, grouped):
        tournament_id, groups = grouped

        with pytest.raises(ValidationError):
            await ResultsLedger.submit_group_result(
                db, tournament_id, HOST, 1, stats_for(groups[0].participant_ids),
                group_id=groups[0].id, group_name="Group B"
            )

    async def test_negative_stat_writes_nothing(self, db, grouped):
        tournament_id, groups = grouped
        stats = stats_for(groups[0].participant_ids)
        stats[2].wins = -3

        with pytest.raises(ValidationError):
            await ResultsLedger.submit_group_result(
                db, tournament_id, HOST, 1, stats, group_name="Group A"
            )
        assert await ResultsLedger.get_round_results(db, tournament_id, 1) == []

    async def test_non_host_rejected(self, db, grouped):
        tournament_id, groups = grouped

        with pytest.raises(AuthorizationError):
            await ResultsLedger.submit_group_result(
                db, tournament_id, STRANGER, 1, [], group_name="Group A"
            )


class TestOverallStandings:

    async def test_aggregates_across_groups(self, db, grouped):
        tournament_id, groups = grouped
        a_ids = groups[0].participant_ids
        b_ids = groups[1].participant_ids

        await ResultsLedger.submit_group_result(
            db, tournament_id, HOST, 1, stats_for(a_ids, [40, 30, 20, 10]), group_name="Group A"
        )
        await ResultsLedger.submit_group_result(
            db, tournament_id, HOST, 1, stats_for(b_ids, [45, 30, 5, 1]), group_name="Group B"
        )

        results = await ResultsLedger.get_round_results(db, tournament_id, 1)
        standings = overall_standings(results)

        assert [r.group_name for r in results] == ["Group A", "Group B"]
        assert [s["teamId"] for s in standings[:3]] == [b_ids[0], a_ids[0], a_ids[1]]
        assert standings[2]["groupName"] == "Group A"
        assert standings[3]["teamId"] == b_ids[1]
        assert [s["position"] for s in standings] == list(range(1, 9))
