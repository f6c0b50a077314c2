"""
Tournament format catalogue.

Formats are declarative data: ordered stages (pool play, crossover, playoffs)
with pool shapes, canonical rank-to-pool mappings and bracket shapes. The
engine interprets them; adding a format is a data change here plus, for a
new bracket type, one handler in the bracket generator's handler table.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

STAGE_POOL_PLAY = "poolPlay"
STAGE_CROSSOVER = "crossover"
STAGE_PLAYOFFS = "playoffs"

BRACKET_SINGLE_ELIM = "singleElim"
BRACKET_SINGLE_ELIM_WITH_BYES = "singleElimWithByes"
BRACKET_FIVE_TEAM_OPS = "fiveTeamOps"

REF_POLICY_OFF_TEAM_SAME_POOL = "offTeamSamePool"

# Playoff slot rules: ("seed", 4) is seed 4 of the same bracket, ("seed", ("bronze", 1))
# seed 1 of another bracket, ("winner"|"loser", "<bracket match key>") an earlier result
SLOT_SEED = "seed"
SLOT_WINNER = "winner"
SLOT_LOSER = "loser"
SLOT_BYE = "bye"

CUMULATIVE_SCOPE = "cumulative"

DEFAULT_15_TEAM_FORMAT_ID = "odu_15_5courts_v1"


@dataclass(frozen=True)
class PoolShape:
    name: str
    size: int


@dataclass(frozen=True)
class BracketShape:
    name: str
    size: int
    seed_start: int  # first overall rank feeding this bracket (1-based)
    seed_end: int
    bracket_type: str

    @property
    def key(self) -> str:
        return self.name.strip().lower()

    @property
    def overall_ranks(self) -> List[int]:
        return list(range(self.seed_start, self.seed_end + 1))


@dataclass(frozen=True)
class StageDefinition:
    kind: str
    key: str
    display_name: str
    phase: str
    pools: Tuple[PoolShape, ...] = ()
    # Later pool stages: destination pool -> placement tokens ("A1" = rank 1 of pool A)
    mapping: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()
    source_stage: Optional[str] = None
    from_pools: Tuple[str, ...] = ()
    pairing: Optional[str] = None
    ref_policy: Optional[str] = None
    brackets: Tuple[BracketShape, ...] = ()
    # Pool stages: pool -> bound home court, used while that court is active
    home_courts: Tuple[Tuple[str, str], ...] = ()
    # Playoff stages: bracket match key -> referee slot rules replacing the bracket type's own
    playoff_refs: Tuple[Tuple[str, Tuple[Tuple[str, Any], ...]], ...] = ()

    def mapping_for(self, pool_name: str) -> Tuple[str, ...]:
        for name, tokens in self.mapping:
            if name == pool_name:
                return tokens
        return ()

    def pool_shape(self, pool_name: str) -> Optional[PoolShape]:
        for shape in self.pools:
            if shape.name == pool_name:
                return shape
        return None

    def home_court_for(self, pool_name: str) -> Optional[str]:
        for name, court in self.home_courts:
            if name == pool_name:
                return court
        return None

    def refs_for(self, match_key: str) -> Optional[Tuple[Tuple[str, Any], ...]]:
        for key, rules in self.playoff_refs:
            if key == match_key:
                return rules
        return None


@dataclass(frozen=True)
class FormatDefinition:
    id: str
    name: str
    description: str
    supported_team_counts: Tuple[int, ...]
    stages: Tuple[StageDefinition, ...]
    min_courts: Optional[int] = None
    max_courts: Optional[int] = None

    def stage(self, stage_key: str) -> Optional[StageDefinition]:
        for stage in self.stages:
            if stage.key == stage_key:
                return stage
        return None

    def stage_index(self, stage_key: str) -> int:
        for index, stage in enumerate(self.stages):
            if stage.key == stage_key:
                return index
        return -1

    def stages_before(self, stage_key: str) -> List[StageDefinition]:
        index = self.stage_index(stage_key)
        return list(self.stages[:index]) if index > 0 else []

    @property
    def first_stage(self) -> StageDefinition:
        return self.stages[0]

    def playoff_stage(self) -> Optional[StageDefinition]:
        for stage in self.stages:
            if stage.kind == STAGE_PLAYOFFS:
                return stage
        return None

    def non_playoff_phases(self) -> List[str]:
        phases: List[str] = []
        for stage in self.stages:
            if stage.kind != STAGE_PLAYOFFS and stage.phase not in phases:
                phases.append(stage.phase)
        return phases

    def accepts_court_count(self, court_count: int) -> bool:
        if self.min_courts is not None and court_count < self.min_courts:
            return False
        if self.max_courts is not None and court_count > self.max_courts:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        stages = []
        for stage in self.stages:
            entry: Dict[str, Any] = {
                "kind": stage.kind,
                "key": stage.key,
                "display_name": stage.display_name,
                "phase": stage.phase,
            }
            if stage.kind == STAGE_POOL_PLAY:
                entry["pools"] = [{"name": p.name, "size": p.size} for p in stage.pools]
                entry["ref_policy"] = stage.ref_policy
                if stage.home_courts:
                    entry["home_courts"] = dict(stage.home_courts)
                if stage.mapping:
                    entry["source_stage"] = stage.source_stage
                    entry["mapping"] = {name: list(tokens) for name, tokens in stage.mapping}
            elif stage.kind == STAGE_CROSSOVER:
                entry["source_stage"] = stage.source_stage
                entry["from_pools"] = list(stage.from_pools)
                entry["pairing"] = stage.pairing
            else:
                entry["brackets"] = [
                    {
                        "name": b.name,
                        "key": b.key,
                        "size": b.size,
                        "seed_range": [b.seed_start, b.seed_end],
                        "bracket_type": b.bracket_type,
                    }
                    for b in stage.brackets
                ]
                if stage.playoff_refs:
                    entry["playoff_refs"] = {key: [list(rule) for rule in rules] for key, rules in stage.playoff_refs}
            stages.append(entry)
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "supported_team_counts": list(self.supported_team_counts),
            "min_courts": self.min_courts,
            "max_courts": self.max_courts,
            "stages": stages,
        }


def _pools(names: str, size: int) -> Tuple[PoolShape, ...]:
    return tuple(PoolShape(name=name, size=size) for name in names)


def _pool_play_1(pools: Tuple[PoolShape, ...], home_courts: Tuple[Tuple[str, str], ...] = ()) -> StageDefinition:
    return StageDefinition(
        kind=STAGE_POOL_PLAY,
        key="poolPlay1",
        display_name="Pool Play 1",
        phase="phase1",
        pools=pools,
        ref_policy=REF_POLICY_OFF_TEAM_SAME_POOL,
        home_courts=home_courts,
    )


def _playoffs(*brackets: BracketShape, refs: Tuple = ()) -> StageDefinition:
    return StageDefinition(
        kind=STAGE_PLAYOFFS,
        key="playoffs",
        display_name="Playoffs",
        phase="playoffs",
        brackets=tuple(brackets),
        playoff_refs=refs,
    )


def _court_binding(pool_names: str, courts: Tuple[str, ...]) -> Tuple[Tuple[str, str], ...]:
    return tuple(zip(pool_names, courts))


ODU_COURTS = ("SRC-1", "SRC-2", "SRC-3", "VC-1", "VC-2")

# Round one referees are teams idle in the opening block; bronze 2v3 waits for
# the loser of bronze 4v5.
ODU_PLAYOFF_REFS = (
    ("gold:R1:4v5", ((SLOT_SEED, ("bronze", 1)),)),
    ("gold:R1:2v3", ((SLOT_SEED, ("silver", 1)),)),
    ("silver:R1:4v5", ((SLOT_SEED, ("bronze", 2)),)),
    ("silver:R1:2v3", ((SLOT_SEED, ("gold", 1)),)),
    ("bronze:R1:4v5", ((SLOT_SEED, ("bronze", 3)),)),
    ("bronze:R1:2v3", ((SLOT_LOSER, "bronze:R1:4v5"),)),
)


_BUILTIN_FORMATS: Tuple[FormatDefinition, ...] = (
    FormatDefinition(
        id="classic_12_3x4_gold8_silver4_v1",
        name="12 Teams: 3x4 Pools, Gold 8 + Silver 4",
        description="Three pools of four in Pool Play 1, then Gold 8-team and Silver 4-team single elimination brackets.",
        supported_team_counts=(12,),
        min_courts=3,
        stages=(
            _pool_play_1(_pools("ABC", 4)),
            _playoffs(
                BracketShape("Gold", 8, 1, 8, BRACKET_SINGLE_ELIM),
                BracketShape("Silver", 4, 9, 12, BRACKET_SINGLE_ELIM),
            ),
        ),
    ),
    FormatDefinition(
        id="classic_14_mixedpools_crossover_gold8_silver6_v1",
        name="14 Teams: Mixed Pools + Crossover, Gold 8 + Silver 6",
        description=(
            "Two 4-team pools and two 3-team pools, rank-to-rank crossover for 3-team pools, "
            "then Gold 8 and Silver 6 playoffs."
        ),
        supported_team_counts=(14,),
        min_courts=3,
        stages=(
            _pool_play_1(_pools("AB", 4) + _pools("CD", 3)),
            StageDefinition(
                kind=STAGE_CROSSOVER,
                key="crossover",
                display_name="Crossover",
                phase="crossover",
                source_stage="poolPlay1",
                from_pools=("C", "D"),
                pairing="rankToRank",
            ),
            _playoffs(
                BracketShape("Gold", 8, 1, 8, BRACKET_SINGLE_ELIM),
                BracketShape("Silver", 6, 9, 14, BRACKET_SINGLE_ELIM_WITH_BYES),
            ),
        ),
    ),
    FormatDefinition(
        id=DEFAULT_15_TEAM_FORMAT_ID,
        name="ODU 15-Team Classic",
        description=(
            "Pool Play 1 (A-E), Pool Play 2 (F-J) with rematch balancing, "
            "then Gold/Silver/Bronze 5-team ops brackets."
        ),
        supported_team_counts=(15,),
        min_courts=3,
        stages=(
            _pool_play_1(_pools("ABCDE", 3), _court_binding("ABCDE", ODU_COURTS)),
            StageDefinition(
                kind=STAGE_POOL_PLAY,
                key="poolPlay2",
                display_name="Pool Play 2",
                phase="phase2",
                pools=_pools("FGHIJ", 3),
                source_stage="poolPlay1",
                mapping=(
                    ("F", ("A1", "B2", "C3")),
                    ("G", ("B1", "C2", "D3")),
                    ("H", ("C1", "D2", "E3")),
                    ("I", ("D1", "E2", "A3")),
                    ("J", ("E1", "A2", "B3")),
                ),
                ref_policy=REF_POLICY_OFF_TEAM_SAME_POOL,
                home_courts=_court_binding("FGHIJ", ODU_COURTS),
            ),
            _playoffs(
                BracketShape("Gold", 5, 1, 5, BRACKET_FIVE_TEAM_OPS),
                BracketShape("Silver", 5, 6, 10, BRACKET_FIVE_TEAM_OPS),
                BracketShape("Bronze", 5, 11, 15, BRACKET_FIVE_TEAM_OPS),
                refs=ODU_PLAYOFF_REFS,
            ),
        ),
    ),
    FormatDefinition(
        id="classic_16_4x4_all16_v1",
        name="16 Teams: 4x4 Pools + 16-Team Playoffs",
        description="Four pools of four in Pool Play 1, then all teams advance to a 16-team single elimination bracket.",
        supported_team_counts=(16,),
        min_courts=3,
        stages=(
            _pool_play_1(_pools("ABCD", 4)),
            _playoffs(BracketShape("All", 16, 1, 16, BRACKET_SINGLE_ELIM)),
        ),
    ),
)

_FORMATS: Dict[str, FormatDefinition] = {}


def register_format(format_def: FormatDefinition) -> None:
    if format_def.id in _FORMATS:
        raise ValueError(f"Format {format_def.id} is already registered")
    if not format_def.stages:
        raise ValueError(f"Format {format_def.id} has no stages")
    _FORMATS[format_def.id] = format_def


for _format_def in _BUILTIN_FORMATS:
    register_format(_format_def)


def _positive_int(value: Any) -> Optional[int]:
    try:
        parsed = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    return parsed if parsed > 0 else None


def list_formats() -> List[FormatDefinition]:
    return list(_FORMATS.values())


def get_format(format_id: Optional[str]) -> Optional[FormatDefinition]:
    if not isinstance(format_id, str) or not format_id.strip():
        return None
    return _FORMATS.get(format_id.strip())


def suggest_formats(team_count: Any, court_count: Any) -> List[FormatDefinition]:
    """
    Formats that support exactly team_count teams and can run on court_count
    courts. A missing min/max court bound is unbounded on that side.
    Non-positive or non-numeric counts yield no suggestions.
    """
    teams = _positive_int(team_count)
    courts = _positive_int(court_count)
    if not teams or not courts:
        return []

    suggestions = [
        format_def
        for format_def in _FORMATS.values()
        if teams in format_def.supported_team_counts and format_def.accepts_court_count(courts)
    ]
    logger.debug("suggest_formats(teams=%s, courts=%s) -> %s", teams, courts, [f.id for f in suggestions])
    return suggestions
