"""
Round robin order and referee wiring for one pool.

Pool sizes 3 and 4 use fixed orders where the off team refs each match.
Other sizes use the circle method with the top two positions meeting last
and referees picked among the non-playing teams with the fewest assignments.
All positions are 0-based pool positions (0 = first team in the pool).
"""

from collections import defaultdict
from typing import Dict, List, Optional, Tuple

# (team_a, team_b, ref)
Pairing = Tuple[int, int, Optional[int]]

POOL_TEMPLATES: Dict[int, List[Pairing]] = {
    2: [(0, 1, None)],
    3: [
        (0, 2, 1),
        (1, 2, 0),
        (0, 1, 2),
    ],
    4: [
        (0, 2, 1),
        (1, 3, 0),
        (0, 3, 2),
        (1, 2, 0),
        (2, 3, 1),
        (0, 1, 3),
    ],
}


def circle_pairings(pool_size: int) -> List[Tuple[int, int, int]]:
    """
    Circle-method pairings as (round, idx_a, idx_b) with idx_a < idx_b.
    Odd sizes get a phantom position whose opponent sits the round out.
    """
    if pool_size < 2:
        return []
    slots = pool_size + 1 if pool_size % 2 else pool_size
    phantom = pool_size if pool_size % 2 else -1
    positions = list(range(slots))

    result: List[Tuple[int, int, int]] = []
    for round_num in range(1, slots):
        for i in range(slots // 2):
            a, b = positions[i], positions[slots - 1 - i]
            if phantom in (a, b):
                continue
            result.append((round_num, min(a, b), max(a, b)))
        # Keep position 0 fixed, rotate the rest one step
        positions = [positions[0], positions[-1]] + positions[1:-1]
    return result


def top_two_last(pairings: List[Tuple[int, int, int]]) -> List[Tuple[int, int, int]]:
    """Swap whole rounds so the (0, 1) match is played in the last round."""
    rounds: Dict[int, List[Tuple[int, int, int]]] = defaultdict(list)
    for pairing in pairings:
        rounds[pairing[0]].append(pairing)
    if not rounds:
        return pairings

    last_round = max(rounds)
    top_round = next((r for r, items in rounds.items() if any((a, b) == (0, 1) for _, a, b in items)), None)
    if top_round is None or top_round == last_round:
        return pairings

    rounds[top_round], rounds[last_round] = rounds[last_round], rounds[top_round]
    return [(round_num, a, b) for round_num in sorted(rounds) for _, a, b in rounds[round_num]]


def assign_refs(pool_size: int, pairs: List[Tuple[int, int]]) -> List[Pairing]:
    """One ref per match: the idle team with the fewest assignments so far, pool order breaking ties."""
    counts = [0] * pool_size
    wired: List[Pairing] = []
    for a, b in pairs:
        idle = [p for p in range(pool_size) if p not in (a, b)]
        if not idle:
            wired.append((a, b, None))
            continue
        ref = min(idle, key=lambda p: (counts[p], p))
        counts[ref] += 1
        wired.append((a, b, ref))
    return wired


def pool_round_robin(pool_size: int) -> List[Pairing]:
    """Ordered (team_a, team_b, ref) for a full round robin: n(n-1)/2 matches."""
    if pool_size in POOL_TEMPLATES:
        return list(POOL_TEMPLATES[pool_size])
    if pool_size < 2:
        return []
    pairs = [(a, b) for _, a, b in top_two_last(circle_pairings(pool_size))]
    return assign_refs(pool_size, pairs)
