"""
Pool Mutation Planner

Pool membership rows carry a uniqueness constraint: a team may be recorded in
at most one pool of a stage. Rewriting several pools one at a time can break
that constraint mid-update (team T arrives in pool B before it leaves pool A),
so membership edits are planned as an ordered list of per-pool writes:

- Pass one: every changed pool that loses teams is written with only the
  teams it keeps
- Pass two: every changed pool is written with its final membership

The split is used only when more than one pool changed and at least one team
changes pools; otherwise a single pass of final memberships suffices. Writes
are flushed in plan order, so every intermediate database state has each team
in at most one pool. Standalone edits commit each write; a caller that must
pair the writes with other changes (pool regeneration deleting matches)
commits once at the end.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Sequence, Tuple

from sqlmodel import Session, select

from poolplay.models.pool import Pool, PoolTeam

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoolWrite:
    pool_name: str
    team_ids: Tuple[int, ...]
    pass_no: int


def changed_pools(previous: Mapping[str, Sequence[int]], desired: Mapping[str, Sequence[int]]) -> List[str]:
    names = sorted(set(previous) | set(desired))
    return [name for name in names if list(previous.get(name, ())) != list(desired.get(name, ()))]


def _owners(memberships: Mapping[str, Sequence[int]]) -> Dict[int, str]:
    owners: Dict[int, str] = {}
    for name in sorted(memberships):
        for team_id in memberships[name]:
            owners[team_id] = name
    return owners


def has_cross_pool_move(previous: Mapping[str, Sequence[int]], desired: Mapping[str, Sequence[int]]) -> bool:
    before = _owners(previous)
    after = _owners(desired)
    return any(team_id in after and after[team_id] != pool for team_id, pool in before.items())


def plan_pool_writes(previous: Mapping[str, Sequence[int]], desired: Mapping[str, Sequence[int]]) -> List[PoolWrite]:
    """
    Ordered write plan turning `previous` memberships into `desired`.

    Pools absent from `desired` are treated as emptied. Writes are ordered by
    pass, then pool name. Unchanged pools are never written.
    """
    changed = changed_pools(previous, desired)
    if not changed:
        return []

    writes: List[PoolWrite] = []
    two_pass = len(changed) > 1 and has_cross_pool_move(previous, desired)
    if two_pass:
        for name in changed:
            final = set(desired.get(name, ()))
            before = list(previous.get(name, ()))
            kept = tuple(team_id for team_id in before if team_id in final)
            if len(kept) < len(before):
                writes.append(PoolWrite(pool_name=name, team_ids=kept, pass_no=1))

    final_pass = 2 if two_pass else 1
    for name in changed:
        writes.append(PoolWrite(pool_name=name, team_ids=tuple(desired.get(name, ())), pass_no=final_pass))
    return writes


def write_pool_members(session: Session, pool: Pool, team_ids: Sequence[int], commit: bool = True) -> None:
    """Replace one pool's membership rows (ordered). Commits unless told not to."""
    existing = session.exec(select(PoolTeam).where(PoolTeam.pool_id == pool.id)).all()
    for row in existing:
        session.delete(row)
    session.flush()
    for position, team_id in enumerate(team_ids):
        session.add(
            PoolTeam(
                pool_id=pool.id,
                tournament_id=pool.tournament_id,
                stage_key=pool.stage_key,
                team_id=team_id,
                position=position,
            )
        )
    session.add(pool)
    if commit:
        session.commit()
    else:
        session.flush()


def apply_pool_writes(
    session: Session, pools_by_name: Mapping[str, Pool], writes: Sequence[PoolWrite], commit: bool = True
) -> int:
    """Persist a write plan in order, one commit (or flush) per write. Returns the number of writes applied."""
    for write in writes:
        pool = pools_by_name[write.pool_name]
        logger.debug("Pool %s pass %d -> %s", write.pool_name, write.pass_no, list(write.team_ids))
        write_pool_members(session, pool, write.team_ids, commit=commit)
    if writes:
        passes = max(w.pass_no for w in writes)
        logger.info("Applied %d pool writes in %d pass(es)", len(writes), passes)
    return len(writes)
