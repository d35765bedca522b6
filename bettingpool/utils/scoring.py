"""
Scoring for individual bets.

For aggregated statistics and standings, see
bettingpool.services.standings_service.
"""

from bettingpool.models import Prediction

MAX_POINTS_PER_FIXTURE = 1


def calculate_bet_score(prediction, result):
    """
    Calculate score for a single prediction.

    Returns:
        1 for a correct 1/X/2 outcome
        0 for an incorrect one
    """
    if Prediction.normalize(prediction) == Prediction.normalize(result):
        return 1
    return 0


def clamp_points(points):
    """Keep points within [0, MAX_POINTS_PER_FIXTURE]"""
    return max(0, min(MAX_POINTS_PER_FIXTURE, int(points)))


class ScoringStrategy:
    """Interface of the pluggable scoring formula"""

    def score(self, bet, result):
        raise NotImplementedError


class OutcomeScoringStrategy(ScoringStrategy):
    """One point for the correct match outcome"""

    def score(self, bet, result):
        if result is None:
            return 0
        return calculate_bet_score(bet.prediction, result)
