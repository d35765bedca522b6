from bettingpool import db  # noqa: F401 - imported for model imports

from .admin_action import AdminAction
from .bet import Bet
from .betting_round import BettingRound, RoundStatus, is_allowed_transition
from .competition import Competition
from .fixture import Fixture, Prediction
from .season import Season
from .season_winner import SeasonWinner
from .user import User

__all__ = [
    "User",
    "Competition",
    "Season",
    "BettingRound",
    "RoundStatus",
    "Fixture",
    "Prediction",
    "Bet",
    "SeasonWinner",
    "AdminAction",
    "is_allowed_transition",
]
