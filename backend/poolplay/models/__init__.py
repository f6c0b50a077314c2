from poolplay.models.match import Match
from poolplay.models.pool import Pool, PoolTeam
from poolplay.models.scoreboard import Scoreboard
from poolplay.models.team import Team
from poolplay.models.tournament import Tournament

__all__ = [
    "Tournament",
    "Team",
    "Pool",
    "PoolTeam",
    "Match",
    "Scoreboard",
]
