"""Decides whether a betting round still accepts bets"""

import logging

from bettingpool.models import RoundStatus
from bettingpool.utils.timezone_utils import ensure_utc, get_utc_time

logger = logging.getLogger(__name__)


class RoundLockGuard:
    """
    A round locks at the kickoff of its first fixture, or as soon as it has
    left the open state.
    """

    def __init__(self, gateway, clock=get_utc_time):
        self.gateway = gateway
        self.clock = clock

    def earliest_kickoff(self, betting_round):
        """Stored earliest kickoff, else the minimum over the round's fixtures"""
        kickoff = betting_round.earliest_fixture_kickoff
        if kickoff is None:
            fixtures = self.gateway.get_fixtures_for_round(betting_round.id)
            kickoffs = [f.kickoff for f in fixtures if f.kickoff is not None]
            kickoff = min(kickoffs) if kickoffs else None
        return ensure_utc(kickoff)

    def is_locked(self, betting_round):
        if betting_round.status != RoundStatus.OPEN.value:
            return True

        kickoff = self.earliest_kickoff(betting_round)
        if kickoff is None:
            logger.warning(
                f"Round {betting_round.id} has no kickoff time yet, treating it as open"
            )
            return False

        return ensure_utc(self.clock()) >= kickoff

    def seconds_until_lock(self, betting_round):
        """Seconds left to bet; None when the kickoff is unknown"""
        if betting_round.status != RoundStatus.OPEN.value:
            return 0

        kickoff = self.earliest_kickoff(betting_round)
        if kickoff is None:
            return None

        remaining = (kickoff - ensure_utc(self.clock())).total_seconds()
        return max(0, int(remaining))
