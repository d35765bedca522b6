"""
Retroactive points for users who joined after rounds were already scored.

A user with no bets in a scored round receives synthesized bets worth the
lowest total any real participant achieved in that round. Synthesized bets are
ordinary Bet rows, so a second run finds nothing left to backfill.
"""

import logging
from dataclasses import asdict, dataclass, field

from bettingpool.exceptions import BettingPoolError, NotFoundError
from bettingpool.models import Prediction
from bettingpool.utils.logging_config import ContextualLogger
from bettingpool.utils.scoring import MAX_POINTS_PER_FIXTURE
from bettingpool.utils.timezone_utils import get_utc_time

logger = logging.getLogger(__name__)

PLACEHOLDER_PREDICTION = Prediction.HOME


@dataclass
class RoundBreakdown:
    round_id: int
    round_name: str
    points_awarded: int
    minimum_participant_score: int
    participant_count: int
    bets_created: int


@dataclass
class RetroactivePointsResult:
    user_id: int
    competition_id: int
    dry_run: bool = False
    rounds_processed: int = 0
    total_points_awarded: int = 0
    rounds: list = field(default_factory=list)
    errors: list = field(default_factory=list)

    @property
    def success(self):
        return not self.errors

    def to_dict(self):
        data = asdict(self)
        data["success"] = self.success
        return data


@dataclass
class BulkRetroactivePointsResult:
    competition_id: int
    dry_run: bool = False
    total_users_processed: int = 0
    total_rounds_processed: int = 0
    total_points_awarded: int = 0
    user_results: list = field(default_factory=list)
    errors: list = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


def minimum_participant_score(totals):
    """Lowest per-user round total; a round nobody played is worth 0"""
    if not totals:
        return 0
    return min(totals.values())


def synthesize_round_bets(user_id, round_id, fixtures, target_points, submitted_at):
    """
    Build bet rows worth target_points in total: one point per fixture in
    fixture id order until the target is met, zero for the rest.
    """
    remaining = max(0, target_points)
    rows = []
    for fixture in sorted(fixtures, key=lambda f: f.id):
        points = min(MAX_POINTS_PER_FIXTURE, remaining)
        remaining -= points
        rows.append(
            {
                "user_id": user_id,
                "betting_round_id": round_id,
                "fixture_id": fixture.id,
                "prediction": PLACEHOLDER_PREDICTION,
                "points_awarded": points,
                "submitted_at": submitted_at,
            }
        )
    return rows


class RetroactivePointsService:
    def __init__(self, gateway):
        self.gateway = gateway

    def _require_user(self, user_id):
        if self.gateway.get_user(user_id) is None:
            raise NotFoundError("User not found", {"user_id": user_id})

    def _require_competition(self, competition_id):
        if self.gateway.get_competition(competition_id) is None:
            raise NotFoundError("Competition not found", {"competition_id": competition_id})

    def find_missed_rounds(self, user_id, competition_id, from_round_id=None):
        """Scored rounds of the competition in which the user has no bet at all"""
        scored = self.gateway.get_scored_round_ids(competition_id, from_round_id)
        if not scored:
            return []
        played = self.gateway.get_user_round_ids(user_id, scored)
        return [round_id for round_id in scored if round_id not in played]

    def _process_round(self, user_id, round_id, dry_run):
        betting_round = self.gateway.get_round(round_id)
        fixtures = self.gateway.get_fixtures_for_round(round_id)
        totals = self.gateway.get_round_participant_totals(round_id)
        target = minimum_participant_score(totals)

        rows = synthesize_round_bets(user_id, round_id, fixtures, target, get_utc_time())
        if rows and not dry_run:
            self.gateway.insert_bets(rows)

        return RoundBreakdown(
            round_id=round_id,
            round_name=betting_round.name if betting_round else f"Round {round_id}",
            points_awarded=sum(row["points_awarded"] for row in rows),
            minimum_participant_score=target,
            participant_count=len(totals),
            bets_created=len(rows),
        )

    def apply_retroactive_points(
        self, user_id, competition_id, from_round_id=None, dry_run=False
    ):
        self._require_user(user_id)
        self._require_competition(competition_id)

        log = ContextualLogger(
            __name__,
            {"user_id": user_id, "competition_id": competition_id, "dry_run": dry_run},
        )
        result = RetroactivePointsResult(
            user_id=user_id, competition_id=competition_id, dry_run=dry_run
        )

        missed = self.find_missed_rounds(user_id, competition_id, from_round_id)
        if not missed:
            log.info("No missed rounds")
            return result

        for round_id in missed:
            try:
                breakdown = self._process_round(user_id, round_id, dry_run)
            except BettingPoolError as e:
                log.error(f"Retroactive points failed for round {round_id}: {e}")
                result.errors.append({"round_id": round_id, "error": str(e)})
                continue

            result.rounds.append(breakdown)
            result.rounds_processed += 1
            result.total_points_awarded += breakdown.points_awarded

        log.info(
            f"Processed {result.rounds_processed}/{len(missed)} missed rounds, "
            f"{result.total_points_awarded} points"
        )
        return result

    def preview(self, user_id, competition_id, from_round_id=None):
        return self.apply_retroactive_points(
            user_id, competition_id, from_round_id=from_round_id, dry_run=True
        )

    def apply_for_new_users(
        self, created_after, competition_id, from_round_id=None, dry_run=False
    ):
        """Backfill every user created at or after created_after, oldest first"""
        self._require_competition(competition_id)

        bulk = BulkRetroactivePointsResult(competition_id=competition_id, dry_run=dry_run)
        users = self.gateway.get_users_created_after(created_after)
        logger.info(
            f"Bulk retroactive points for {len(users)} users created after {created_after}"
        )

        for user in users:
            try:
                result = self.apply_retroactive_points(
                    user.id, competition_id, from_round_id=from_round_id, dry_run=dry_run
                )
            except BettingPoolError as e:
                logger.error(f"Retroactive points failed for user {user.id}: {e}")
                bulk.errors.append({"user_id": user.id, "error": str(e)})
                continue

            bulk.total_users_processed += 1
            bulk.total_rounds_processed += result.rounds_processed
            bulk.total_points_awarded += result.total_points_awarded
            bulk.user_results.append(result)
            for error in result.errors:
                bulk.errors.append({"user_id": user.id, **error})

        return bulk

    def check_user_needs_retroactive_points(self, user_id, competition_id):
        preview = self.preview(user_id, competition_id)
        return {
            "needs_retroactive_points": preview.rounds_processed > 0,
            "missed_rounds": preview.rounds_processed,
            "estimated_points": preview.total_points_awarded,
        }

    def is_first_bet_in_competition(self, user_id, competition_id):
        """True when the user holds no bet in any round of the competition"""
        rounds = self.gateway.get_rounds_for_competition(competition_id)
        round_ids = [betting_round.id for betting_round in rounds]
        return not self.gateway.get_user_round_ids(user_id, round_ids)
