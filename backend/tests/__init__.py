# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from app.models.group_draw import GroupDraw  # noqa: F401
from app.models.match import Match  # noqa: F401
from app.models.match_correction import MatchCorrection  # noqa: F401
from app.models.stage import Stage  # noqa: F401
from app.models.stage_group_team import StageGroupTeam  # noqa: F401
from app.models.team import Team  # noqa: F401
from app.models.team_availability import TeamAvailability  # noqa: F401
from app.models.tournament import Tournament  # noqa: F401
