"""
Match lifecycle: scheduled -> live -> ended -> final.

Status only moves forward, except unfinalize which returns a final match to
"ended" and clears its result. Finalizing derives the result snapshot from
the linked scoreboard's completed sets. Any result change on a playoff match
re-runs bracket progression.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlmodel import Session

from poolplay.errors import InvalidInput, NotFound
from poolplay.models.match import Match
from poolplay.models.scoreboard import Scoreboard
from poolplay.services.bracket_generation import ProgressionResult, advance_playoffs
from poolplay.services.standings import compute_match_snapshot
from poolplay.services.tournament_state import require_tournament
from poolplay.utils.tournament_lock import tournament_lock

logger = logging.getLogger(__name__)

STATUS_SCHEDULED = "scheduled"
STATUS_LIVE = "live"
STATUS_ENDED = "ended"
STATUS_FINAL = "final"

_STATUS_ORDER = {STATUS_SCHEDULED: 0, STATUS_LIVE: 1, STATUS_ENDED: 2}


def require_match(session: Session, tournament_id: int, match_id: int) -> Match:
    match = session.get(Match, match_id)
    if not match or match.tournament_id != tournament_id:
        raise NotFound("Match", match_id)
    return match


def update_match_status(session: Session, tournament_id: int, match_id: int, status: str) -> Match:
    """
    Move a match forward to "live" or "ended".

    Raises:
        NotFound: match missing
        InvalidInput: unknown status, backwards move, bye, or a final match
    """
    with tournament_lock(tournament_id):
        match = require_match(session, tournament_id, match_id)
        if status not in (STATUS_LIVE, STATUS_ENDED):
            raise InvalidInput(f"Status must be '{STATUS_LIVE}' or '{STATUS_ENDED}'; use finalize for results", field="status")
        if match.is_bye:
            raise InvalidInput("Bye matches have no live status", field="status")
        if match.status == STATUS_FINAL:
            raise InvalidInput("Match is final; unfinalize it first", field="status")
        if _STATUS_ORDER[status] < _STATUS_ORDER.get(match.status, 0):
            raise InvalidInput(f"Cannot move match from '{match.status}' back to '{status}'", field="status")

        now = datetime.utcnow()
        if status == STATUS_LIVE and match.started_at is None:
            match.started_at = now
        if status == STATUS_ENDED:
            match.started_at = match.started_at or now
            match.ended_at = now
        match.status = status
        session.add(match)
        session.commit()
        session.refresh(match)
        return match


def finalize_match(
    session: Session,
    tournament_id: int,
    match_id: int,
    sets: Optional[List[Dict[str, Any]]] = None,
    override: bool = False,
) -> Tuple[Match, ProgressionResult]:
    """
    Record the result of an ended match.

    If `sets` is given it becomes the scoreboard's completed set history
    first. `override` allows finalizing a match that has not reached "ended".

    Raises:
        NotFound: match missing
        InvalidInput: already final, not ended, bye, or scores that are not a
            completed best-of-3 outcome
    """
    with tournament_lock(tournament_id):
        tournament = require_tournament(session, tournament_id)
        match = require_match(session, tournament_id, match_id)
        if match.is_bye:
            raise InvalidInput("Bye matches advance automatically", field="match_id")
        if match.status == STATUS_FINAL:
            raise InvalidInput("Match is already final; unfinalize it first", field="status")
        if match.status != STATUS_ENDED and not override:
            raise InvalidInput(f"Match must be ended before it is finalized (status is '{match.status}')", field="status")

        scoreboard = session.get(Scoreboard, match.scoreboard_id) if match.scoreboard_id else None
        if sets is not None and scoreboard is not None:
            scoreboard.sets = [dict(s) for s in sets]
        snapshot = compute_match_snapshot(match, scoreboard)

        now = datetime.utcnow()
        match.result = snapshot
        match.status = STATUS_FINAL
        match.ended_at = match.ended_at or now
        match.finalized_at = now
        if scoreboard is not None:
            session.add(scoreboard)
        session.add(match)
        session.flush()

        progression = ProgressionResult()
        if match.bracket_match_key:
            progression = advance_playoffs(session, tournament)
        session.commit()
        session.refresh(match)
        logger.info("Finalized match %s (winner %s)", match.id, snapshot["winner_team_id"])
        return match, progression


def unfinalize_match(session: Session, tournament_id: int, match_id: int) -> Tuple[Match, ProgressionResult]:
    """
    Revert a final match to "ended" and clear its result.

    Raises:
        NotFound: match missing
        InvalidInput: match is not final, or is a bye
    """
    with tournament_lock(tournament_id):
        tournament = require_tournament(session, tournament_id)
        match = require_match(session, tournament_id, match_id)
        if match.is_bye:
            raise InvalidInput("Bye matches cannot be unfinalized", field="match_id")
        if match.status != STATUS_FINAL:
            raise InvalidInput("Only final matches can be unfinalized", field="status")

        match.result = None
        match.status = STATUS_ENDED
        match.finalized_at = None
        session.add(match)
        session.flush()

        progression = ProgressionResult()
        if match.bracket_match_key:
            progression = advance_playoffs(session, tournament)
        session.commit()
        session.refresh(match)
        logger.info("Unfinalized match %s", match.id)
        return match, progression
