"""
Bracket Generator

Playoff matches keyed by BracketMatchKey ("<bracket>:R<round>:<pairing>").

Each bracket type is a handler that expands a bracket shape into match
templates. A template names its key, round and the rule filling each side:
a bracket seed, the winner or loser of another template, or a bye. Matches
are created lazily: a template becomes a match only once both participants
resolve. Finalizing or unfinalizing a playoff match re-runs progression,
creating newly resolvable matches and re-pointing (and clearing) matches
whose participants changed.

Bracket types:
- singleElim: power-of-two bracket in standard fold order (1vN, N/2 line...)
- singleElimWithByes: padded to the next power of two; unmatched seeds get
  a bye match ("silver:R1:1vBYE") that is final immediately with no result
- fiveTeamOps: fixed 5-team shape (4v5, 2v3, 1 v W(4/5), final)

A playoff stage may name referee rules per match key (for instance seeds of
another bracket); those replace the bracket type's own referee rules.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from sqlmodel import Session

from poolplay.errors import AlreadyExists, InvalidInput, PrereqNotMet
from poolplay.models.match import Match
from poolplay.models.scoreboard import Scoreboard
from poolplay.models.team import Team
from poolplay.models.tournament import Tournament
from poolplay.services.format_registry import (
    BRACKET_FIVE_TEAM_OPS,
    BRACKET_SINGLE_ELIM,
    BRACKET_SINGLE_ELIM_WITH_BYES,
    CUMULATIVE_SCOPE,
    SLOT_BYE,
    SLOT_LOSER,
    SLOT_SEED,
    SLOT_WINNER,
    STAGE_PLAYOFFS,
    BracketShape,
    FormatDefinition,
    StageDefinition,
)
from poolplay.services.match_generation import first_free_block
from poolplay.services.pool_assignment import available_courts
from poolplay.services.scoreboards import create_match_scoreboard, reset_scoreboard
from poolplay.services.standings import overall_order_for_scope, phase_overrides
from poolplay.services.tournament_state import (
    delete_matches,
    is_finalized,
    list_teams,
    require_format,
    require_stage,
    require_tournament,
    stage_matches,
    tournament_matches,
)
from poolplay.utils.courts import facility_for_court
from poolplay.utils.tournament_lock import tournament_lock

logger = logging.getLogger(__name__)

SEED = SLOT_SEED
WINNER = SLOT_WINNER
LOSER = SLOT_LOSER
BYE = SLOT_BYE

# ("seed", 4) | ("seed", ("bronze", 1)) | ("winner", "gold:R1:4v5") | ("loser", "gold:R1:2v3") | ("bye", None)
SlotRule = Tuple[str, Any]


@dataclass(frozen=True)
class BracketMatchTemplate:
    key: str
    bracket: str
    round: int
    side_a: SlotRule
    side_b: SlotRule
    seed_a: Optional[int] = None
    seed_b: Optional[int] = None
    refs: Tuple[SlotRule, ...] = ()

    @property
    def bracket_round(self) -> str:
        return f"R{self.round}"

    @property
    def is_bye(self) -> bool:
        return self.side_a[0] == BYE or self.side_b[0] == BYE

    def source_keys(self) -> List[str]:
        rules = (self.side_a, self.side_b) + tuple(self.refs)
        return [value for kind, value in rules if kind in (WINNER, LOSER)]


@dataclass
class PlayoffsResult:
    matches: List[Match]
    seeds: Dict[str, List[int]]
    deleted_match_count: int = 0


@dataclass
class ProgressionResult:
    created: List[Match] = field(default_factory=list)
    updated: List[Match] = field(default_factory=list)


# ============================================================================
# Bracket type handlers
# ============================================================================


def bracket_lines(size: int) -> List[int]:
    """
    Seed lines in bracket position order for a power-of-two bracket.
    Consecutive pairs meet in round one if chalk holds:
      4 -> [1, 4, 2, 3]
      8 -> [1, 8, 4, 5, 2, 7, 3, 6]
    """
    order = [1, 2]
    while len(order) < size:
        total = len(order) * 2 + 1
        order = [line for seed in order for line in (seed, total - seed)]
    return order[:size] if size >= 2 else [1]


def _next_power_of_two(value: int) -> int:
    power = 1
    while power < value:
        power *= 2
    return power


def _elimination_templates(bracket: str, size: int, allow_byes: bool) -> List[BracketMatchTemplate]:
    slots = _next_power_of_two(size)
    if slots != size and not allow_byes:
        raise InvalidInput(f"Single elimination bracket {bracket} needs a power-of-two size, got {size}")

    def label(line: int) -> str:
        return str(line) if line <= size else "BYE"

    # Each entry: (rule filling the slot, best seed line that can reach it)
    entries: List[Tuple[SlotRule, int]] = [
        ((SEED, line) if line <= size else (BYE, None), line) for line in bracket_lines(slots)
    ]
    templates: List[BracketMatchTemplate] = []
    round_num = 1
    while len(entries) > 1:
        next_entries: List[Tuple[SlotRule, int]] = []
        for i in range(0, len(entries), 2):
            (rule_a, line_a), (rule_b, line_b) = entries[i], entries[i + 1]
            key = f"{bracket}:R{round_num}:{label(line_a)}v{label(line_b)}"
            templates.append(
                BracketMatchTemplate(
                    key=key,
                    bracket=bracket,
                    round=round_num,
                    side_a=rule_a,
                    side_b=rule_b,
                    seed_a=rule_a[1] if rule_a[0] == SEED else None,
                    seed_b=rule_b[1] if rule_b[0] == SEED else None,
                )
            )
            next_entries.append(((WINNER, key), min(line_a, line_b)))
        entries = next_entries
        round_num += 1
    return templates


def single_elim_templates(bracket: str, size: int) -> List[BracketMatchTemplate]:
    return _elimination_templates(bracket, size, allow_byes=False)


def single_elim_with_byes_templates(bracket: str, size: int) -> List[BracketMatchTemplate]:
    return _elimination_templates(bracket, size, allow_byes=True)


def five_team_ops_templates(bracket: str, size: int) -> List[BracketMatchTemplate]:
    if size != 5:
        raise InvalidInput(f"Five-team bracket {bracket} must have 5 teams, got {size}")
    r1_low = f"{bracket}:R1:4v5"
    r1_high = f"{bracket}:R1:2v3"
    r2 = f"{bracket}:R2:1vW45"
    return [
        BracketMatchTemplate(r1_low, bracket, 1, (SEED, 4), (SEED, 5), 4, 5, refs=((SEED, 1),)),
        BracketMatchTemplate(r1_high, bracket, 1, (SEED, 2), (SEED, 3), 2, 3, refs=((LOSER, r1_low),)),
        BracketMatchTemplate(r2, bracket, 2, (SEED, 1), (WINNER, r1_low), 1, None, refs=((LOSER, r1_high),)),
        BracketMatchTemplate(
            f"{bracket}:R3:final", bracket, 3, (WINNER, r2), (WINNER, r1_high), refs=((LOSER, r2),)
        ),
    ]


BRACKET_HANDLERS: Dict[str, Callable[[str, int], List[BracketMatchTemplate]]] = {
    BRACKET_SINGLE_ELIM: single_elim_templates,
    BRACKET_SINGLE_ELIM_WITH_BYES: single_elim_with_byes_templates,
    BRACKET_FIVE_TEAM_OPS: five_team_ops_templates,
}


def bracket_templates(shape: BracketShape) -> List[BracketMatchTemplate]:
    handler = BRACKET_HANDLERS.get(shape.bracket_type)
    if handler is None:
        raise InvalidInput(f"Unsupported bracket type {shape.bracket_type} for {shape.name}", field="bracket_type")
    return handler(shape.key, shape.size)


def stage_templates(stage: StageDefinition) -> List[BracketMatchTemplate]:
    """All templates of a playoff stage ordered by (round, bracket, key)."""
    bracket_order = {shape.key: index for index, shape in enumerate(stage.brackets)}
    templates = []
    for shape in stage.brackets:
        for template in bracket_templates(shape):
            refs = stage.refs_for(template.key)
            templates.append(template if refs is None else replace(template, refs=tuple(refs)))
    return sorted(templates, key=lambda t: (t.round, bracket_order[t.bracket], t.key))


# ============================================================================
# Participant resolution
# ============================================================================


def _outcome(match: Optional[Match], slot: str) -> Optional[int]:
    if match is None:
        return None
    if match.is_bye:
        return match.team_a_id if slot == WINNER else None
    if not is_finalized(match):
        return None
    return match.result.get("winner_team_id") if slot == WINNER else match.result.get("loser_team_id")


def resolve_slot(
    rule: SlotRule,
    seeds: Sequence[int],
    matches_by_key: Dict[str, Match],
    seeds_by_bracket: Optional[Dict[str, List[int]]] = None,
) -> Optional[int]:
    kind, value = rule
    if kind == SEED and isinstance(value, (tuple, list)):
        bracket, seed = value
        return resolve_slot((SEED, seed), (seeds_by_bracket or {}).get(bracket) or [], matches_by_key)
    if kind == SEED:
        return seeds[value - 1] if 0 < value <= len(seeds) else None
    if kind in (WINNER, LOSER):
        return _outcome(matches_by_key.get(value), kind)
    return None


# ============================================================================
# Scheduling
# ============================================================================


class BlockGrid:
    """Courts and teams already booked per round-block."""

    def __init__(self, matches: Sequence[Match]):
        self.courts: Dict[int, Set[str]] = {}
        self.teams: Dict[int, Set[int]] = {}
        for match in matches:
            if match.round_block is not None and match.court:
                self.book(match.round_block, match.court, self._match_teams(match))

    @staticmethod
    def _match_teams(match: Match) -> List[int]:
        teams = [match.team_a_id, match.team_b_id] + list(match.ref_team_ids or [])
        return [t for t in teams if t is not None]

    def book(self, block: int, court: str, teams: Sequence[int]) -> None:
        self.courts.setdefault(block, set()).add(court)
        self.teams.setdefault(block, set()).update(teams)

    def place(self, match: Match, courts: Sequence[str], earliest: int) -> Tuple[int, str]:
        teams = self._match_teams(match)
        block = earliest
        while True:
            busy_teams = self.teams.get(block, set())
            if not any(t in busy_teams for t in teams):
                for court in courts:
                    if court not in self.courts.get(block, set()):
                        self.book(block, court, teams)
                        return block, court
            block += 1


# ============================================================================
# Progression
# ============================================================================


def _template_title(template: BracketMatchTemplate) -> str:
    pairing = template.key.split(":", 2)[-1]
    return f"{template.bracket.title()} {template.bracket_round} {pairing}"


def _clear_result(match: Match) -> None:
    match.status = "scheduled"
    match.result = None
    match.started_at = None
    match.ended_at = None
    match.finalized_at = None


def sync_brackets(
    session: Session,
    tournament: Tournament,
    format_def: FormatDefinition,
    stage: StageDefinition,
) -> ProgressionResult:
    """
    Bring playoff matches in line with the bracket templates and current results.
    Caller holds the tournament lock and commits.
    """
    seeds_by_bracket: Dict[str, List[int]] = tournament.playoff_seeds or {}
    existing = stage_matches(session, tournament.id, stage.key)
    matches_by_key: Dict[str, Match] = {m.bracket_match_key: m for m in existing if m.bracket_match_key}
    teams_by_id = {t.id: t for t in list_teams(session, tournament.id)}
    scoring = (tournament.settings or {}).get("scoring")

    result = ProgressionResult()
    for template in stage_templates(stage):
        seeds = seeds_by_bracket.get(template.bracket) or []
        team_a = resolve_slot(template.side_a, seeds, matches_by_key)
        team_b = resolve_slot(template.side_b, seeds, matches_by_key)
        refs = [
            r
            for r in (resolve_slot(rule, seeds, matches_by_key, seeds_by_bracket) for rule in template.refs)
            if r is not None
        ]
        match = matches_by_key.get(template.key)

        if template.is_bye:
            if match is None and team_a is not None:
                match = Match(
                    tournament_id=tournament.id,
                    stage_key=stage.key,
                    phase=stage.phase,
                    team_a_id=team_a,
                    ref_team_ids=[],
                    status="final",
                    is_bye=True,
                    finalized_at=datetime.utcnow(),
                )
                _apply_template(match, template)
                session.add(match)
                matches_by_key[template.key] = match
                result.created.append(match)
            continue

        if match is None:
            if team_a is None or team_b is None:
                continue
            scoreboard = create_match_scoreboard(
                session,
                tournament.id,
                _template_title(template),
                teams_by_id.get(team_a),
                teams_by_id.get(team_b),
                scoring,
            )
            match = Match(
                tournament_id=tournament.id,
                stage_key=stage.key,
                phase=stage.phase,
                team_a_id=team_a,
                team_b_id=team_b,
                ref_team_ids=refs,
                scoreboard_id=scoreboard.id,
                status="scheduled",
            )
            _apply_template(match, template)
            session.add(match)
            matches_by_key[template.key] = match
            result.created.append(match)
            continue

        if (match.team_a_id, match.team_b_id) != (team_a, team_b):
            logger.info(
                "Playoff match %s participants changed (%s, %s) -> (%s, %s); clearing result",
                template.key,
                match.team_a_id,
                match.team_b_id,
                team_a,
                team_b,
            )
            match.team_a_id = team_a
            match.team_b_id = team_b
            _clear_result(match)
            scoreboard = session.get(Scoreboard, match.scoreboard_id) if match.scoreboard_id else None
            if scoreboard:
                reset_scoreboard(scoreboard, teams_by_id.get(team_a), teams_by_id.get(team_b))
                session.add(scoreboard)
            match.ref_team_ids = refs
            session.add(match)
            result.updated.append(match)
        elif list(match.ref_team_ids or []) != refs:
            match.ref_team_ids = refs
            session.add(match)
            result.updated.append(match)

    session.flush()
    _schedule_new_matches(session, tournament, format_def, stage, result.created, matches_by_key)
    return result


def _apply_template(match: Match, template: BracketMatchTemplate) -> None:
    match.bracket = template.bracket
    match.bracket_round = template.bracket_round
    match.round = template.round
    match.bracket_match_key = template.key
    match.seed_a = template.seed_a
    match.seed_b = template.seed_b


def _schedule_new_matches(
    session: Session,
    tournament: Tournament,
    format_def: FormatDefinition,
    stage: StageDefinition,
    created: Sequence[Match],
    matches_by_key: Dict[str, Match],
) -> None:
    to_place = [m for m in created if not m.is_bye]
    if not to_place:
        return
    courts = available_courts(tournament)
    if not courts:
        raise PrereqNotMet("At least one active court is required for playoff scheduling", missing=["active_courts"])

    templates = {t.key: t for t in stage_templates(stage)}
    start_block = first_free_block(session, tournament.id, format_def, stage.key)
    placing = {m.id for m in to_place}
    grid = BlockGrid([m for m in tournament_matches(session, tournament.id) if m.id not in placing])

    def depth(key: str) -> int:
        sources = [k for k in templates[key].source_keys() if k in templates]
        return 1 + max(depth(k) for k in sources) if sources else 0

    # Sources are placed before the matches waiting on their results
    for match in sorted(to_place, key=lambda m: depth(m.bracket_match_key)):
        source_blocks = [
            matches_by_key[key].round_block
            for key in templates[match.bracket_match_key].source_keys()
            if key in matches_by_key and matches_by_key[key].round_block is not None
        ]
        earliest = max([start_block] + [block + 1 for block in source_blocks])
        match.round_block, match.court = grid.place(match, courts, earliest)
        match.facility = facility_for_court(match.court, tournament.facilities)
        session.add(match)


# ============================================================================
# Operations
# ============================================================================


def playoff_seed_order(session: Session, tournament: Tournament, format_def: FormatDefinition) -> List[int]:
    """
    Team ids in overall seeding order for the playoffs.

    Raises:
        PrereqNotMet: a non-playoff stage is unfinished and no valid cumulative
            overall override exists
    """
    incomplete: List[str] = []
    for stage in format_def.stages:
        if stage.kind == STAGE_PLAYOFFS:
            continue
        matches = stage_matches(session, tournament.id, stage.key)
        finalized = sum(1 for m in matches if is_finalized(m))
        if not matches:
            incomplete.append(f"{stage.display_name} has no matches")
        elif finalized < len(matches):
            incomplete.append(f"{stage.display_name} has {finalized}/{len(matches)} finalized matches")

    if not incomplete:
        return overall_order_for_scope(session, tournament.id, CUMULATIVE_SCOPE)

    override = phase_overrides(tournament, CUMULATIVE_SCOPE).get("overall_order")
    team_ids = sorted(t.id for t in list_teams(session, tournament.id))
    if isinstance(override, list) and sorted(override) == team_ids:
        logger.info("Seeding playoffs for tournament %s from the cumulative override", tournament.id)
        return list(override)

    raise PrereqNotMet(
        "Pool play results are not final and no cumulative standings override exists",
        missing=incomplete + ["Missing valid cumulative overall_order override"],
    )


def generate_playoffs(session: Session, tournament_id: int, force: bool = False) -> PlayoffsResult:
    """
    Seed the brackets from cumulative standings and create every playoff
    match whose participants are known.

    Raises:
        NotFound: tournament or format missing, or format has no playoffs
        PrereqNotMet: standings not final-eligible, too few teams, no courts
        AlreadyExists: playoff matches exist and force is not set
    """
    with tournament_lock(tournament_id):
        tournament = require_tournament(session, tournament_id)
        format_def = require_format(tournament)
        stage = require_stage(format_def, "playoffs", kind=STAGE_PLAYOFFS)

        existing = stage_matches(session, tournament_id, stage.key)
        if existing and not force:
            raise AlreadyExists(
                f"{stage.display_name} already has {len(existing)} matches",
                existing={"stage_key": stage.key, "match_count": len(existing)},
            )

        order = playoff_seed_order(session, tournament, format_def)
        needed = max(shape.seed_end for shape in stage.brackets)
        if len(order) < needed:
            raise PrereqNotMet(
                f"Cumulative standings resolved {len(order)}/{needed} teams",
                missing=[f"Cumulative standings resolved {len(order)}/{needed} teams"],
            )
        seeds = {shape.key: [order[rank - 1] for rank in shape.overall_ranks] for shape in stage.brackets}
        stage_templates(stage)  # unsupported bracket shapes fail before any write

        try:
            deleted = delete_matches(session, existing) if existing else 0
            tournament.playoff_seeds = seeds
            session.add(tournament)
            session.flush()
            progression = sync_brackets(session, tournament, format_def, stage)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("Playoff generation for tournament %s failed; rolled back", tournament_id)
            raise

        for match in progression.created:
            session.refresh(match)
        logger.info(
            "Generated %d playoff matches for tournament %s across %d brackets (%d deleted)",
            len(progression.created),
            tournament_id,
            len(stage.brackets),
            deleted,
        )
        return PlayoffsResult(matches=progression.created, seeds=seeds, deleted_match_count=deleted)


def advance_playoffs(session: Session, tournament: Tournament) -> ProgressionResult:
    """Re-run bracket progression after a playoff result changed. Caller holds the lock and commits."""
    format_def = require_format(tournament)
    stage = format_def.playoff_stage()
    if stage is None or not tournament.playoff_seeds:
        return ProgressionResult()
    result = sync_brackets(session, tournament, format_def, stage)
    if result.created or result.updated:
        logger.info(
            "Playoff progression for tournament %s: %d created, %d updated",
            tournament.id,
            len(result.created),
            len(result.updated),
        )
    return result


def playoff_view(session: Session, tournament_id: int) -> Dict[str, Any]:
    """Brackets with seeds, created matches per round and still-pending keys."""
    tournament = require_tournament(session, tournament_id)
    format_def = require_format(tournament)
    stage = require_stage(format_def, "playoffs", kind=STAGE_PLAYOFFS)
    matches_by_key = {m.bracket_match_key: m for m in stage_matches(session, tournament_id, stage.key)}
    teams_by_id: Dict[int, Team] = {t.id: t for t in list_teams(session, tournament_id)}
    seeds_by_bracket = tournament.playoff_seeds or {}

    brackets = []
    for shape in stage.brackets:
        templates = bracket_templates(shape)
        rounds: Dict[str, List[Match]] = {}
        pending: List[str] = []
        for template in templates:
            match = matches_by_key.get(template.key)
            if match is None:
                pending.append(template.key)
            else:
                rounds.setdefault(template.bracket_round, []).append(match)
        seeds = seeds_by_bracket.get(shape.key) or []
        brackets.append(
            {
                "key": shape.key,
                "name": shape.name,
                "bracket_type": shape.bracket_type,
                "seeds": [
                    {
                        "seed": index + 1,
                        "overall_rank": shape.seed_start + index,
                        "team_id": team_id,
                        "name": teams_by_id[team_id].name if team_id in teams_by_id else None,
                    }
                    for index, team_id in enumerate(seeds)
                ],
                "rounds": rounds,
                "pending_match_keys": pending,
            }
        )
    return {"tournament_id": tournament_id, "brackets": brackets}
