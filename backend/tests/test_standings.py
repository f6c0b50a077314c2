"""Standings: match snapshots, ranking order, scopes and manual overrides."""
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from poolplay.errors import InvalidInput
from poolplay.models.match import Match
from poolplay.models.scoreboard import Scoreboard
from poolplay.services.format_registry import DEFAULT_15_TEAM_FORMAT_ID
from poolplay.services.match_generation import generate_stage_matches
from poolplay.services.match_lifecycle import unfinalize_match
from poolplay.services.pool_assignment import apply_format, generate_stage_pools
from poolplay.services.standings import (
    StandingsEntry,
    compute_match_snapshot,
    compute_standings,
    rank_entries,
    set_standings_overrides,
)
from tests.factories import TEAM_B_SWEEP, finalize_stage, finalize_with, pool_members, stage_match_list

FIVE_COURTS = ["SRC-1", "SRC-2", "SRC-3", "SRC-4", "SRC-5"]


def _snapshot(sets):
    return compute_match_snapshot(Match(tournament_id=1, stage_key="poolPlay1", phase="phase1", team_a_id=10, team_b_id=20),
                                  Scoreboard(tournament_id=1, title="t", team_a_name="A", team_b_name="B", sets=sets))


@pytest.fixture
def played_phase_one(session: Session, make_tournament):
    """15-team tournament with every Pool Play 1 match finalized (team A sweeps)."""
    tournament = make_tournament(15, active_courts=FIVE_COURTS)
    apply_format(session, tournament.id, DEFAULT_15_TEAM_FORMAT_ID)
    generate_stage_pools(session, tournament.id, "poolPlay1")
    generate_stage_matches(session, tournament.id, "poolPlay1")
    finalize_stage(session, tournament.id, "poolPlay1")
    return tournament


# ============================================================================
# Snapshots
# ============================================================================


def test_snapshot_three_set_win():
    snapshot = _snapshot([{"a": 25, "b": 23}, {"a": 18, "b": 25}, {"a": 15, "b": 12}])
    assert snapshot["winner_team_id"] == 10
    assert snapshot["loser_team_id"] == 20
    assert (snapshot["sets_won_a"], snapshot["sets_won_b"], snapshot["sets_played"]) == (2, 1, 3)
    assert snapshot["points_for_a"] == 58
    assert snapshot["points_for_b"] == 60
    assert snapshot["points_against_a"] == 60
    assert [s["set_no"] for s in snapshot["set_scores"]] == [1, 2, 3]


def test_snapshot_team_b_sweep():
    snapshot = _snapshot([{"a": 10, "b": 25}, {"a": 12, "b": 25}])
    assert snapshot["winner_team_id"] == 20
    assert snapshot["sets_won_b"] == 2


@pytest.mark.parametrize(
    "sets",
    [
        [],
        [{"a": 25, "b": 20}],
        [{"a": 25, "b": 20}, {"a": 20, "b": 25}],
        [{"a": 25, "b": 20}, {"a": 25, "b": 25}],
        [{"a": 25, "b": 20}, {"a": 25, "b": 20}, {"a": 15, "b": 10}],
        [{"a": 25, "b": 20}, {"a": "x", "b": 25}],
        [{"a": 25, "b": 20}, {"a": -1, "b": 25}, {"a": 15, "b": 10}],
    ],
)
def test_snapshot_rejects_incomplete_or_invalid_sets(sets):
    with pytest.raises(InvalidInput):
        _snapshot(sets)


def test_snapshot_rejects_set_after_match_decided():
    # A took the first two sets, so a third set cannot count toward a 2-1 result
    with pytest.raises(InvalidInput) as exc_info:
        _snapshot([{"a": 25, "b": 20}, {"a": 25, "b": 18}, {"a": 10, "b": 15}])
    assert str(exc_info.value) == "Set 3 was played after the match was already decided"
    assert exc_info.value.field == "sets"


def test_snapshot_requires_scoreboard():
    match = Match(tournament_id=1, stage_key="poolPlay1", phase="phase1", team_a_id=1, team_b_id=2)
    with pytest.raises(InvalidInput):
        compute_match_snapshot(match, None)


# ============================================================================
# Ranking
# ============================================================================


def test_exact_ties_get_distinct_ranks_by_team_id():
    entries = [StandingsEntry(team_id=7, name="Seven"), StandingsEntry(team_id=3, name="Three")]
    ranked = rank_entries(entries)
    assert [(e.team_id, e.rank) for e in ranked] == [(3, 1), (7, 2)]


def test_override_breaks_exact_ties_only():
    leader = StandingsEntry(team_id=9, name="Nine", matches_won=2, matches_played=2)
    tied = [StandingsEntry(team_id=3, name="Three"), StandingsEntry(team_id=7, name="Seven")]
    ranked = rank_entries([leader] + tied, override_order=[7, 3, 9])
    assert [e.team_id for e in ranked] == [9, 7, 3]
    assert [e.rank for e in ranked] == [1, 2, 3]


def test_set_and_point_differential_order():
    a = StandingsEntry(team_id=1, name="A", matches_won=1, sets_won=2, sets_lost=1, points_for=60, points_against=58)
    b = StandingsEntry(team_id=2, name="B", matches_won=1, sets_won=2, sets_lost=0, points_for=50, points_against=40)
    c = StandingsEntry(team_id=3, name="C", matches_won=1, sets_won=2, sets_lost=1, points_for=70, points_against=60)
    assert [e.team_id for e in rank_entries([a, b, c])] == [2, 3, 1]


# ============================================================================
# Aggregation
# ============================================================================


def test_phase_standings_cover_every_team(session: Session, played_phase_one):
    tid = played_phase_one.id
    standings = compute_standings(session, tid, "phase1")

    assert standings["finalized_match_count"] == 15
    assert [entry["rank"] for entry in standings["overall"]] == list(range(1, 16))
    assert len(standings["pools"]) == 5

    members = pool_members(session, tid, "poolPlay1")
    pool_a = standings["pools"][0]
    assert pool_a["name"] == "A"
    # Team A sweeps every match, so pool position order is the finishing order
    assert [e["team_id"] for e in pool_a["teams"]] == members["A"]
    assert [e["matches_won"] for e in pool_a["teams"]] == [2, 1, 0]
    assert pool_a["teams"][0]["set_diff"] == 4


def test_cumulative_includes_teams_without_matches(session: Session, make_tournament):
    tournament = make_tournament(15, active_courts=FIVE_COURTS)
    apply_format(session, tournament.id, DEFAULT_15_TEAM_FORMAT_ID)
    standings = compute_standings(session, tournament.id, "cumulative")
    assert len(standings["overall"]) == 15
    assert standings["phases"] == ["phase1", "phase2"]
    assert all(entry["matches_played"] == 0 for entry in standings["overall"])


def test_unfinalize_then_refinalize_restores_standings(session: Session, played_phase_one):
    tid = played_phase_one.id
    before = compute_standings(session, tid, "cumulative")

    match = stage_match_list(session, tid, "poolPlay1")[0]
    unfinalize_match(session, tid, match.id)
    during = compute_standings(session, tid, "cumulative")
    assert during["finalized_match_count"] == 14
    assert during["overall"] != before["overall"]

    finalize_with(session, match)
    assert compute_standings(session, tid, "cumulative") == before


def test_result_flip_changes_ranking(session: Session, played_phase_one):
    tid = played_phase_one.id
    match = stage_match_list(session, tid, "poolPlay1")[0]
    unfinalize_match(session, tid, match.id)
    finalize_with(session, match, TEAM_B_SWEEP)

    standings = compute_standings(session, tid, "phase1")
    pool = next(p for p in standings["pools"] if p["pool_id"] == match.pool_id)
    team_b = next(e for e in pool["teams"] if e["team_id"] == match.team_b_id)
    assert team_b["matches_won"] >= 1


def test_unknown_scope_is_rejected(session: Session, played_phase_one):
    with pytest.raises(InvalidInput):
        compute_standings(session, played_phase_one.id, "playoffs")


# ============================================================================
# Overrides
# ============================================================================


def test_overall_override_must_be_permutation(session: Session, played_phase_one):
    with pytest.raises(InvalidInput):
        set_standings_overrides(session, played_phase_one.id, "cumulative", overall_order=[1, 2, 3])


def test_pool_override_reorders_exact_ties(session: Session, make_tournament):
    tournament = make_tournament(15, active_courts=FIVE_COURTS)
    apply_format(session, tournament.id, DEFAULT_15_TEAM_FORMAT_ID)
    generate_stage_pools(session, tournament.id, "poolPlay1")
    members = pool_members(session, tournament.id, "poolPlay1")
    reordered = list(reversed(members["B"]))

    set_standings_overrides(session, tournament.id, "phase1", pool_order={"B": reordered})

    standings = compute_standings(session, tournament.id, "phase1")
    pool_b = next(p for p in standings["pools"] if p["name"] == "B")
    assert [e["team_id"] for e in pool_b["teams"]] == reordered


def test_pool_override_for_unknown_pool(session: Session, played_phase_one):
    with pytest.raises(InvalidInput) as exc_info:
        set_standings_overrides(session, played_phase_one.id, "phase1", pool_order={"Z": [1, 2, 3]})
    assert exc_info.value.field == "pool_order.Z"


# ============================================================================
# API
# ============================================================================


def test_standings_endpoint(client: TestClient, played_phase_one):
    response = client.get(f"/api/tournaments/{played_phase_one.id}/standings", params={"phase": "phase1"})
    assert response.status_code == 200
    assert len(response.json()["overall"]) == 15

    response = client.get(f"/api/tournaments/{played_phase_one.id}/standings")
    assert response.json()["scope"] == "cumulative"

    response = client.get(f"/api/tournaments/{played_phase_one.id}/standings", params={"phase": "bogus"})
    assert response.status_code == 400
    assert response.json()["field"] == "phase"


def test_standings_overrides_endpoint(client: TestClient, session: Session, played_phase_one):
    tid = played_phase_one.id
    order = [entry["team_id"] for entry in compute_standings(session, tid, "cumulative")["overall"]]
    order.reverse()

    response = client.put(
        f"/api/tournaments/{tid}/standings-overrides", json={"phase": "cumulative", "overall_order": order}
    )
    assert response.status_code == 200
    assert response.json()["overrides"]["overall_order"] == order

    response = client.put(f"/api/tournaments/{tid}/standings-overrides", json={"phase": "cumulative"})
    assert response.status_code == 422


def test_standings_unknown_tournament(client: TestClient):
    response = client.get("/api/tournaments/999/standings")
    assert response.status_code == 404
