from app.models.group_draw import GroupDraw
from app.models.match import Match
from app.models.match_correction import MatchCorrection
from app.models.stage import Stage
from app.models.stage_group_team import StageGroupTeam
from app.models.team import Team
from app.models.team_availability import TeamAvailability
from app.models.tournament import Tournament

__all__ = [
    "Tournament",
    "Team",
    "Stage",
    "StageGroupTeam",
    "GroupDraw",
    "Match",
    "MatchCorrection",
    "TeamAvailability",
]
