"""Match status transitions, finalize and unfinalize."""
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from poolplay.errors import InvalidInput, NotFound
from poolplay.models.scoreboard import Scoreboard
from poolplay.services.format_registry import DEFAULT_15_TEAM_FORMAT_ID
from poolplay.services.match_generation import generate_stage_matches
from poolplay.services.match_lifecycle import finalize_match, unfinalize_match, update_match_status
from poolplay.services.pool_assignment import apply_format, generate_stage_pools
from tests.factories import TEAM_A_SWEEP, stage_match_list

FIVE_COURTS = ["SRC-1", "SRC-2", "SRC-3", "SRC-4", "SRC-5"]


@pytest.fixture
def scheduled_match(session: Session, make_tournament):
    tournament = make_tournament(15, active_courts=FIVE_COURTS)
    apply_format(session, tournament.id, DEFAULT_15_TEAM_FORMAT_ID)
    generate_stage_pools(session, tournament.id, "poolPlay1")
    generate_stage_matches(session, tournament.id, "poolPlay1")
    return stage_match_list(session, tournament.id, "poolPlay1")[0]


def test_status_moves_forward(session: Session, scheduled_match):
    tid = scheduled_match.tournament_id
    live = update_match_status(session, tid, scheduled_match.id, "live")
    assert live.status == "live"
    assert live.started_at is not None

    ended = update_match_status(session, tid, scheduled_match.id, "ended")
    assert ended.status == "ended"
    assert ended.ended_at is not None

    with pytest.raises(InvalidInput):
        update_match_status(session, tid, scheduled_match.id, "live")


def test_status_rejects_final_and_unknown(session: Session, scheduled_match):
    tid = scheduled_match.tournament_id
    with pytest.raises(InvalidInput):
        update_match_status(session, tid, scheduled_match.id, "final")
    with pytest.raises(InvalidInput):
        update_match_status(session, tid, scheduled_match.id, "paused")


def test_finalize_requires_ended_unless_overridden(session: Session, scheduled_match):
    tid = scheduled_match.tournament_id
    with pytest.raises(InvalidInput):
        finalize_match(session, tid, scheduled_match.id, sets=TEAM_A_SWEEP)

    match, progression = finalize_match(session, tid, scheduled_match.id, sets=TEAM_A_SWEEP, override=True)
    assert match.status == "final"
    assert match.result["winner_team_id"] == match.team_a_id
    assert match.finalized_at is not None
    assert progression.created == [] and progression.updated == []

    with pytest.raises(InvalidInput):
        finalize_match(session, tid, scheduled_match.id, sets=TEAM_A_SWEEP, override=True)


def test_finalize_reads_scoreboard_sets(session: Session, scheduled_match):
    tid = scheduled_match.tournament_id
    scoreboard = session.get(Scoreboard, scheduled_match.scoreboard_id)
    scoreboard.sets = [{"a": 20, "b": 25}, {"a": 25, "b": 22}, {"a": 13, "b": 15}]
    session.add(scoreboard)
    session.commit()
    update_match_status(session, tid, scheduled_match.id, "ended")

    match, _ = finalize_match(session, tid, scheduled_match.id)
    assert match.result["winner_team_id"] == match.team_b_id
    assert match.result["sets_played"] == 3


def test_finalize_rejects_incomplete_scoreboard(session: Session, scheduled_match):
    tid = scheduled_match.tournament_id
    update_match_status(session, tid, scheduled_match.id, "ended")
    with pytest.raises(InvalidInput) as exc_info:
        finalize_match(session, tid, scheduled_match.id)
    assert exc_info.value.field == "sets"


def test_unfinalize_returns_match_to_ended(session: Session, scheduled_match):
    tid = scheduled_match.tournament_id
    with pytest.raises(InvalidInput):
        unfinalize_match(session, tid, scheduled_match.id)

    finalize_match(session, tid, scheduled_match.id, sets=TEAM_A_SWEEP, override=True)
    match, _ = unfinalize_match(session, tid, scheduled_match.id)
    assert match.status == "ended"
    assert match.result is None
    assert match.finalized_at is None


def test_match_from_other_tournament_is_not_found(session: Session, scheduled_match, make_tournament):
    other = make_tournament(3, name="Other Event")
    with pytest.raises(NotFound):
        update_match_status(session, other.id, scheduled_match.id, "live")


# ============================================================================
# API
# ============================================================================


def test_match_lifecycle_endpoints(client: TestClient, scheduled_match):
    base = f"/api/tournaments/{scheduled_match.tournament_id}/matches/{scheduled_match.id}"

    response = client.patch(f"{base}/status", json={"status": "live"})
    assert response.status_code == 200
    assert response.json()["status"] == "live"

    response = client.patch(f"{base}/status", json={"status": "ended"})
    assert response.status_code == 200

    response = client.post(f"{base}/finalize", json={"sets": [{"a": 25, "b": 21}, {"a": 25, "b": 19}]})
    assert response.status_code == 200
    body = response.json()
    assert body["match"]["status"] == "final"
    assert body["match"]["result"]["sets_won_a"] == 2
    assert body["created_matches"] == []

    response = client.post(f"{base}/finalize", json={})
    assert response.status_code == 400
    assert response.json()["code"] == "InvalidInput"

    response = client.post(f"{base}/unfinalize")
    assert response.status_code == 200
    assert response.json()["match"]["status"] == "ended"


def test_finalize_rejects_negative_points(client: TestClient, scheduled_match):
    base = f"/api/tournaments/{scheduled_match.tournament_id}/matches/{scheduled_match.id}"
    response = client.post(f"{base}/finalize", json={"sets": [{"a": -1, "b": 25}], "override": True})
    assert response.status_code == 422
