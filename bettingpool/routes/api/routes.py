from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from bettingpool import limiter
from bettingpool.exceptions import NotFoundError, ValidationError
from bettingpool.models import Competition
from bettingpool.routes.api import bp
from bettingpool.services import (
    BetSubmissionService,
    RoundLockGuard,
    SQLAlchemyGateway,
    StandingsService,
)
from bettingpool.utils.cache_utils import (
    HALL_OF_FAME_KEY,
    cached_query,
    standings_cache_key,
)


def bets_rate_limit():
    return current_app.config.get("BETS_RATE_LIMIT", "30 per minute")


def resolve_competition_id(competition_id=None):
    """Explicit competition id, else the current competition"""
    if competition_id is not None:
        return competition_id
    competition = Competition.get_current()
    if competition is None:
        raise NotFoundError("No active competition")
    return competition.id


@bp.route("/bets", methods=["POST"])
@login_required
@limiter.limit(bets_rate_limit)
def submit_bets():
    """Submit or overwrite the current user's coupon for one round"""
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Request body must be JSON")

    round_id = None
    predictions = data
    if isinstance(data, dict):
        round_id = data.get("round_id")
        predictions = data.get("predictions")

    service = BetSubmissionService(SQLAlchemyGateway())
    result = service.submit(current_user.id, predictions, round_id=round_id)

    return jsonify(
        {
            "message": "Bets saved",
            "round_id": result.round_id,
            "bets_saved": result.bets_saved,
        }
    )


@bp.route("/bets", methods=["GET"])
@login_required
def user_bets():
    """Get the current user's bets for a round"""
    round_id = request.args.get("round_id", type=int)
    if round_id is None:
        raise ValidationError("round_id is required")

    service = BetSubmissionService(SQLAlchemyGateway())
    bets = service.get_user_bets(current_user.id, round_id)
    return jsonify({"round_id": round_id, "bets": [bet.to_dict() for bet in bets]})


@bp.route("/rounds/<int:round_id>")
def round_detail(round_id):
    """Get a round with its fixtures and lock state"""
    gateway = SQLAlchemyGateway()
    betting_round = gateway.get_round(round_id)
    if betting_round is None:
        raise NotFoundError("Betting round not found", {"round_id": round_id})

    guard = RoundLockGuard(gateway)
    data = betting_round.to_dict(include_fixtures=True)
    data["is_locked"] = guard.is_locked(betting_round)
    data["seconds_until_lock"] = guard.seconds_until_lock(betting_round)
    return jsonify(data)


@cached_query(standings_cache_key)
def _standings_payload(competition_id):
    service = StandingsService(SQLAlchemyGateway())
    return [s.to_dict() for s in service.calculate_standings(competition_id)]


@cached_query(lambda: HALL_OF_FAME_KEY)
def _hall_of_fame_payload():
    return StandingsService(SQLAlchemyGateway()).get_hall_of_fame()


@bp.route("/standings")
def standings():
    """Get ranked standings for a competition"""
    competition_id = resolve_competition_id(
        request.args.get("competition_id", type=int)
    )
    return jsonify(
        {"competition_id": competition_id, "standings": _standings_payload(competition_id)}
    )


@bp.route("/hall-of-fame")
def hall_of_fame():
    """Get season champions ranked by titles"""
    return jsonify({"hall_of_fame": _hall_of_fame_payload()})
