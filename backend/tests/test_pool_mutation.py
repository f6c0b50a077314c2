"""Two-pass pool writes keep every intermediate state valid."""
from typing import Dict, List

import pytest
from sqlmodel import Session, select

from poolplay.models.pool import Pool, PoolTeam
from poolplay.services.pool_mutation import (
    apply_pool_writes,
    changed_pools,
    has_cross_pool_move,
    plan_pool_writes,
)


def _replay(previous: Dict[str, List[int]], writes) -> List[Dict[str, List[int]]]:
    """Apply writes one at a time, returning every intermediate state."""
    state = {name: list(ids) for name, ids in previous.items()}
    states = []
    for write in writes:
        state[write.pool_name] = list(write.team_ids)
        states.append({name: list(ids) for name, ids in state.items()})
    return states


def _no_team_in_two_pools(state: Dict[str, List[int]]) -> bool:
    seen = [team_id for ids in state.values() for team_id in ids]
    return len(seen) == len(set(seen))


def test_no_change_no_writes():
    assert plan_pool_writes({"A": [1, 2], "B": [3, 4]}, {"A": [1, 2], "B": [3, 4]}) == []


def test_single_pool_reorder_is_one_pass():
    writes = plan_pool_writes({"A": [1, 2], "B": [3, 4]}, {"A": [2, 1], "B": [3, 4]})
    assert [(w.pool_name, w.team_ids, w.pass_no) for w in writes] == [("A", (2, 1), 1)]


def test_swap_between_pools_uses_two_passes():
    previous = {"A": [1, 2, 3], "B": [4, 5, 6]}
    desired = {"A": [1, 2, 6], "B": [4, 5, 3]}
    writes = plan_pool_writes(previous, desired)

    assert [(w.pool_name, w.team_ids, w.pass_no) for w in writes] == [
        ("A", (1, 2), 1),
        ("B", (4, 5), 1),
        ("A", (1, 2, 6), 2),
        ("B", (4, 5, 3), 2),
    ]
    states = _replay(previous, writes)
    assert all(_no_team_in_two_pools(s) for s in states)
    assert states[-1] == desired


@pytest.mark.parametrize(
    "previous,desired",
    [
        ({"A": [1, 2], "B": [3, 4], "C": [5, 6]}, {"A": [3, 2], "B": [5, 4], "C": [1, 6]}),
        ({"A": [1, 2, 3], "B": [4], "C": []}, {"A": [1], "B": [4, 2], "C": [3]}),
        ({"A": [1, 2], "B": [3, 4]}, {"A": [4, 3], "B": [2, 1]}),
    ],
)
def test_every_intermediate_state_has_unique_membership(previous, desired):
    states = _replay(previous, plan_pool_writes(previous, desired))
    assert all(_no_team_in_two_pools(s) for s in states)
    assert {k: v for k, v in states[-1].items()} == desired


def test_changed_pools_and_cross_pool_detection():
    previous = {"A": [1, 2], "B": [3, 4]}
    assert changed_pools(previous, {"A": [2, 1], "B": [3, 4]}) == ["A"]
    assert not has_cross_pool_move(previous, {"A": [2, 1], "B": [4, 3]})
    assert has_cross_pool_move(previous, {"A": [1, 3], "B": [2, 4]})


def test_two_changed_pools_without_moves_stay_single_pass():
    writes = plan_pool_writes({"A": [1, 2], "B": [3, 4]}, {"A": [2, 1], "B": [4, 3]})
    assert {w.pass_no for w in writes} == {1}


def test_apply_pool_writes_respects_unique_membership(session: Session, make_tournament):
    tournament = make_tournament(4)
    pools = {}
    for name in ("A", "B"):
        pool = Pool(tournament_id=tournament.id, stage_key="poolPlay1", phase="phase1", name=name, required_team_count=2)
        session.add(pool)
        pools[name] = pool
    session.commit()
    for pool in pools.values():
        session.refresh(pool)

    apply_pool_writes(session, pools, plan_pool_writes({}, {"A": [1, 2], "B": [3, 4]}))
    applied = apply_pool_writes(session, pools, plan_pool_writes({"A": [1, 2], "B": [3, 4]}, {"A": [1, 4], "B": [3, 2]}))
    assert applied == 4

    rows = session.exec(select(PoolTeam).order_by(PoolTeam.pool_id, PoolTeam.position)).all()
    by_pool = {}
    for row in rows:
        by_pool.setdefault(row.pool_id, []).append(row.team_id)
    assert by_pool == {pools["A"].id: [1, 4], pools["B"].id: [3, 2]}
