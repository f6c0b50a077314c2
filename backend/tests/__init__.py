# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from poolplay.models.match import Match  # noqa: F401
from poolplay.models.pool import Pool, PoolTeam  # noqa: F401
from poolplay.models.scoreboard import Scoreboard  # noqa: F401
from poolplay.models.team import Team  # noqa: F401
from poolplay.models.tournament import Tournament  # noqa: F401
