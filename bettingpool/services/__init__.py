from .gateway import SQLAlchemyGateway
from .retroactive_points import RetroactivePointsService
from .round_lock import RoundLockGuard
from .scoring_service import RoundScoringService
from .standings_service import StandingsService
from .submission_service import BetSubmissionService

__all__ = [
    "SQLAlchemyGateway",
    "RoundLockGuard",
    "BetSubmissionService",
    "RoundScoringService",
    "RetroactivePointsService",
    "StandingsService",
]
