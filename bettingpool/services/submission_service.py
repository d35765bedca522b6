"""
Bet submission: validate a coupon and persist it atomically before the round
locks.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from bettingpool.exceptions import DeadlinePassedError, NotFoundError, ValidationError
from bettingpool.models import Prediction
from bettingpool.services.round_lock import RoundLockGuard
from bettingpool.utils.logging_config import ContextualLogger
from bettingpool.utils.timezone_utils import get_utc_time

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    user_id: int
    round_id: int
    bets_saved: int
    submitted_at: datetime

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "round_id": self.round_id,
            "bets_saved": self.bets_saved,
            "submitted_at": self.submitted_at.isoformat(),
        }


def parse_predictions(predictions):
    """
    Normalize a raw coupon into [(fixture_id, prediction)] pairs.

    Accepts a list of {"fixture_id", "prediction"} mappings or of
    (fixture_id, prediction) pairs. Lower-case "x" is accepted.
    """
    if not isinstance(predictions, (list, tuple)) or not predictions:
        raise ValidationError("Submission must contain at least one prediction")

    parsed = []
    seen = set()
    for index, item in enumerate(predictions):
        if isinstance(item, dict):
            fixture_id = item.get("fixture_id")
            prediction = item.get("prediction")
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            fixture_id, prediction = item
        else:
            raise ValidationError(
                "Each prediction needs a fixture_id and a prediction",
                {"index": index},
            )

        if isinstance(fixture_id, bool) or not isinstance(fixture_id, int):
            raise ValidationError("fixture_id must be an integer", {"index": index})

        normalized = Prediction.normalize(prediction)
        if normalized is None:
            raise ValidationError(
                "prediction must be one of 1, X, 2",
                {"index": index, "fixture_id": fixture_id},
            )

        if fixture_id in seen:
            raise ValidationError(
                "Fixture appears more than once in the submission",
                {"fixture_id": fixture_id},
            )
        seen.add(fixture_id)
        parsed.append((fixture_id, normalized))

    return parsed


class BetSubmissionService:
    """Records a user's coupon for one round, all or nothing"""

    def __init__(self, gateway, lock_guard=None):
        self.gateway = gateway
        self.lock_guard = lock_guard or RoundLockGuard(gateway)

    def _resolve_round_id(self, fixture_ids, round_id=None):
        round_map = self.gateway.get_fixture_round_map(fixture_ids)

        missing = sorted(set(fixture_ids) - set(round_map))
        if missing:
            raise NotFoundError("Unknown fixture", {"fixture_ids": missing})

        unmapped = sorted(fid for fid, rid in round_map.items() if rid is None)
        if unmapped:
            raise ValidationError(
                "Invalid submission: fixture is not part of a betting round",
                {"fixture_ids": unmapped},
            )

        round_ids = set(round_map.values())
        if len(round_ids) > 1:
            raise ValidationError(
                "All predictions must belong to the same betting round",
                {"round_ids": sorted(round_ids)},
            )

        resolved = round_ids.pop()
        if round_id is not None and round_id != resolved:
            raise ValidationError(
                "Fixtures do not belong to the requested round",
                {"round_id": round_id, "fixture_round_id": resolved},
            )
        return resolved

    def submit(self, user_id, predictions, round_id=None):
        parsed = parse_predictions(predictions)
        fixture_ids = [fixture_id for fixture_id, _ in parsed]

        resolved_round_id = self._resolve_round_id(fixture_ids, round_id)
        log = ContextualLogger(__name__, {"user_id": user_id, "round_id": resolved_round_id})

        betting_round = self.gateway.get_round(resolved_round_id)
        if betting_round is None:
            raise NotFoundError("Betting round not found", {"round_id": resolved_round_id})

        if self.lock_guard.is_locked(betting_round):
            log.info("Rejected submission after deadline")
            raise DeadlinePassedError(
                "Betting deadline has passed for this round",
                {"round_id": resolved_round_id},
            )

        submitted_at = get_utc_time()
        rows = [
            {
                "user_id": user_id,
                "betting_round_id": resolved_round_id,
                "fixture_id": fixture_id,
                "prediction": prediction,
                "submitted_at": submitted_at,
            }
            for fixture_id, prediction in parsed
        ]
        saved = self.gateway.upsert_bets(rows)
        log.info(f"Saved {saved} bets")

        return SubmissionResult(
            user_id=user_id,
            round_id=resolved_round_id,
            bets_saved=saved,
            submitted_at=submitted_at,
        )

    def get_user_bets(self, user_id, round_id):
        """The user's current coupon for a round"""
        if self.gateway.get_round(round_id) is None:
            raise NotFoundError("Betting round not found", {"round_id": round_id})
        return self.gateway.get_user_bets(user_id, round_id)
