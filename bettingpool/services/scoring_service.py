"""
Round scoring: apply final results, award points per bet and mark the round
scored. Only scored rounds take part in retroactive backfill.
"""

import logging
from dataclasses import asdict, dataclass, field

from bettingpool.exceptions import BettingPoolError, NotFoundError, ValidationError
from bettingpool.models import Fixture, Prediction, RoundStatus
from bettingpool.services.round_lock import RoundLockGuard
from bettingpool.utils.logging_config import ContextualLogger
from bettingpool.utils.performance import PerformanceMonitor
from bettingpool.utils.scoring import OutcomeScoringStrategy, clamp_points

logger = logging.getLogger(__name__)

CLAIMABLE_STATUSES = (RoundStatus.OPEN, RoundStatus.CLOSED)


@dataclass
class ScoringResult:
    round_id: int
    status: str
    bets_scored: int = 0
    fixtures_updated: int = 0
    skipped: bool = False
    deferred: bool = False
    missing_results: list = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


def _normalize_result(fixture_id, value):
    """Turn "1"/"X"/"2" or a (home, away) score into (outcome, goals)"""
    if isinstance(value, (list, tuple)):
        if len(value) != 2 or not all(
            isinstance(g, int) and not isinstance(g, bool) and g >= 0 for g in value
        ):
            raise ValidationError(
                "Score must be a pair of non-negative goal counts",
                {"fixture_id": fixture_id},
            )
        return Fixture.result_from_goals(*value), tuple(value)

    outcome = Prediction.normalize(value)
    if outcome is None:
        raise ValidationError(
            "Result must be one of 1, X, 2", {"fixture_id": fixture_id}
        )
    return outcome, None


class RoundScoringService:
    def __init__(self, gateway, strategy=None, lock_guard=None):
        self.gateway = gateway
        self.strategy = strategy or OutcomeScoringStrategy()
        self.lock_guard = lock_guard or RoundLockGuard(gateway)

    def _apply_results(self, round_id, fixtures, results):
        """Record supplied results on the round's fixtures; returns the count changed"""
        by_id = {fixture.id: fixture for fixture in fixtures}

        foreign = sorted(fid for fid in results if fid not in by_id)
        if foreign:
            raise ValidationError(
                "Results supplied for fixtures outside the round",
                {"round_id": round_id, "fixture_ids": foreign},
            )

        # Validate everything before touching any fixture
        normalized = {}
        for fixture_id, value in results.items():
            outcome, goals = _normalize_result(fixture_id, value)
            existing = by_id[fixture_id].result
            if existing is not None and existing != outcome:
                raise ValidationError(
                    f"Fixture {fixture_id} already has result {existing}",
                    {"fixture_id": fixture_id, "result": existing},
                )
            normalized[fixture_id] = (outcome, goals)

        changed = []
        for fixture_id, (outcome, goals) in normalized.items():
            fixture = by_id[fixture_id]
            if goals is not None:
                recorded = fixture.record_result(home_goals=goals[0], away_goals=goals[1])
            else:
                recorded = fixture.record_result(result=outcome)
            if recorded:
                changed.append(fixture)

        if changed:
            self.gateway.save_fixture_results(changed)
        return len(changed)

    def score_round(self, round_id, results=None):
        log = ContextualLogger(__name__, {"round_id": round_id})

        betting_round = self.gateway.get_round(round_id)
        if betting_round is None:
            raise NotFoundError("Betting round not found", {"round_id": round_id})

        if betting_round.status in (RoundStatus.SCORING.value, RoundStatus.SCORED.value):
            log.info(f"Round already {betting_round.status}, skipping")
            return ScoringResult(
                round_id=round_id, status=betting_round.status, skipped=True
            )

        previous_status = betting_round.status
        fixtures = self.gateway.get_fixtures_for_round(round_id)
        fixtures_updated = 0
        if results:
            fixtures_updated = self._apply_results(round_id, fixtures, results)

        missing = [fixture.id for fixture in fixtures if fixture.result is None]
        if not fixtures or missing:
            log.info(f"Deferring scoring, {len(missing)} fixtures without result")
            return ScoringResult(
                round_id=round_id,
                status=previous_status,
                fixtures_updated=fixtures_updated,
                deferred=True,
                missing_results=missing,
            )

        results_by_fixture = {fixture.id: fixture.result for fixture in fixtures}

        if not self.gateway.transition_round_status(
            round_id, CLAIMABLE_STATUSES, RoundStatus.SCORING
        ):
            log.info("Round claimed by another scoring run, skipping")
            return ScoringResult(
                round_id=round_id,
                status=RoundStatus.SCORING.value,
                fixtures_updated=fixtures_updated,
                skipped=True,
            )

        try:
            with PerformanceMonitor(f"score_round {round_id}"):
                bets = self.gateway.get_bets_for_round(round_id)
                points = {
                    bet.id: clamp_points(
                        self.strategy.score(bet, results_by_fixture.get(bet.fixture_id))
                    )
                    for bet in bets
                    if not bet.is_scored
                }
                self.gateway.save_round_scores(round_id, points)
        except Exception:
            self._release_claim(round_id, previous_status, log)
            raise

        log.info(f"Scored {len(points)} bets")
        return ScoringResult(
            round_id=round_id,
            status=RoundStatus.SCORED.value,
            bets_scored=len(points),
            fixtures_updated=fixtures_updated,
        )

    def _release_claim(self, round_id, previous_status, log):
        try:
            self.gateway.transition_round_status(
                round_id, [RoundStatus.SCORING], previous_status, release=True
            )
            log.warning(f"Scoring failed, round returned to {previous_status}")
        except BettingPoolError as e:
            log.error(f"Could not release scoring claim: {e}")

    def close_round(self, round_id):
        """Move a locked round from open to closed; returns whether it moved"""
        betting_round = self.gateway.get_round(round_id)
        if betting_round is None:
            raise NotFoundError("Betting round not found", {"round_id": round_id})

        if betting_round.status != RoundStatus.OPEN.value:
            return False

        if not self.lock_guard.is_locked(betting_round):
            logger.info(f"Round {round_id} is still open for betting")
            return False

        closed = self.gateway.transition_round_status(
            round_id, [RoundStatus.OPEN], RoundStatus.CLOSED
        )
        if closed:
            logger.info(f"Closed round {round_id}")
        return closed

    def score_ready_rounds(self, competition_id):
        """
        Close locked rounds and score every unscored round whose fixtures all
        carry results. One round failing does not stop the others.
        """
        summary = {"closed": [], "scored": [], "deferred": [], "errors": []}

        rounds = self.gateway.get_rounds_for_competition(
            competition_id, CLAIMABLE_STATUSES
        )
        for betting_round in rounds:
            round_id = betting_round.id
            try:
                if self.close_round(round_id):
                    summary["closed"].append(round_id)

                result = self.score_round(round_id)
                if result.deferred:
                    summary["deferred"].append(round_id)
                elif not result.skipped:
                    summary["scored"].append(round_id)
            except BettingPoolError as e:
                logger.error(f"Scoring round {round_id} failed: {e}")
                summary["errors"].append({"round_id": round_id, "error": str(e)})

        return summary
