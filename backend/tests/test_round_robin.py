"""Round robin orders and referee wiring for a single pool."""
from itertools import combinations

import pytest

from poolplay.utils.round_robin import (
    POOL_TEMPLATES,
    assign_refs,
    circle_pairings,
    pool_round_robin,
    top_two_last,
)


@pytest.mark.parametrize("pool_size", [2, 3, 4, 5, 6, 7, 8])
def test_every_pair_plays_exactly_once(pool_size):
    order = pool_round_robin(pool_size)
    pairs = [tuple(sorted((a, b))) for a, b, _ in order]
    assert len(order) == pool_size * (pool_size - 1) // 2
    assert sorted(pairs) == sorted(combinations(range(pool_size), 2))


@pytest.mark.parametrize("pool_size", [3, 4, 5, 6, 7, 8])
def test_one_off_team_ref_per_match(pool_size):
    for a, b, ref in pool_round_robin(pool_size):
        assert ref is not None
        assert ref not in (a, b)
        assert 0 <= ref < pool_size


def test_two_team_pool_has_no_ref():
    assert pool_round_robin(2) == [(0, 1, None)]


def test_small_pools_use_fixed_orders():
    assert pool_round_robin(3) == POOL_TEMPLATES[3]
    assert pool_round_robin(4)[-1] == (0, 1, 3)


def test_degenerate_sizes_have_no_matches():
    assert pool_round_robin(0) == []
    assert pool_round_robin(1) == []


@pytest.mark.parametrize("pool_size", [5, 6, 7, 8])
def test_top_two_meet_in_last_round(pool_size):
    rounds = top_two_last(circle_pairings(pool_size))
    last_round = max(r for r, _, _ in rounds)
    assert (last_round, 0, 1) in rounds


def test_circle_pairings_odd_size_skips_phantom():
    pairings = circle_pairings(5)
    assert len(pairings) == 10
    # 5 teams -> 6 slots -> 5 rounds of two real matches
    assert {r for r, _, _ in pairings} == {1, 2, 3, 4, 5}
    assert all(b < 5 for _, _, b in pairings)


def test_assign_refs_prefers_least_used_idle_team():
    wired = assign_refs(4, [(0, 1), (2, 3), (0, 2)])
    # (0,1): idle 2,3 -> 2; (2,3): idle 0,1 -> 0; (0,2): idle 1,3 -> 1 (both unused, lower position)
    assert [ref for _, _, ref in wired] == [2, 0, 1]
