import logging
from functools import wraps

from flask import abort, jsonify, request
from flask_login import current_user, login_required

from bettingpool import db
from bettingpool.exceptions import NotFoundError, ValidationError
from bettingpool.models import AdminAction
from bettingpool.routes.admin import bp
from bettingpool.routes.api.routes import resolve_competition_id
from bettingpool.services import (
    RetroactivePointsService,
    RoundScoringService,
    SQLAlchemyGateway,
    StandingsService,
)
from bettingpool.utils.cache_utils import invalidate_standings
from bettingpool.utils.timezone_utils import parse_iso_datetime

logger = logging.getLogger(__name__)


def admin_required(f):
    """Restrict a view to site admins"""

    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)

    return decorated_function


def _parse_results(raw):
    """JSON object keys arrive as strings; fixture ids are integers"""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValidationError("results must be an object keyed by fixture id")
    try:
        return {int(fixture_id): value for fixture_id, value in raw.items()}
    except ValueError:
        raise ValidationError("results must be keyed by integer fixture ids")


def _int_param(source, name):
    value = source.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def _bool_param(source, name):
    value = source.get(name, False)
    if isinstance(value, str):
        return value.lower() in ("1", "true", "yes")
    return bool(value)


@bp.route("/rounds/<int:round_id>/score", methods=["POST"])
@admin_required
def score_round(round_id):
    """Apply results (optional) and score a round"""
    data = request.get_json(silent=True) or {}
    results = _parse_results(data.get("results"))

    gateway = SQLAlchemyGateway()
    result = RoundScoringService(gateway).score_round(round_id, results)

    if not result.skipped and not result.deferred:
        betting_round = gateway.get_round(round_id)
        AdminAction.log_action(
            AdminAction.SCORE_ROUND,
            f"Scored round {round_id}: {result.bets_scored} bets",
            admin_user_id=current_user.id,
            betting_round_id=round_id,
            action_metadata=result.to_dict(),
        )
        db.session.commit()
        invalidate_standings(betting_round.competition_id)

    return jsonify(result.to_dict())


@bp.route("/retroactive-points", methods=["GET"])
@admin_required
def preview_retroactive_points():
    """Dry run for one user (user_id) or for all users created after after_date"""
    return jsonify(_run_retroactive_points(request.args, force_dry_run=True))


@bp.route("/retroactive-points", methods=["POST"])
@admin_required
def apply_retroactive_points():
    data = request.get_json(silent=True) or {}
    return jsonify(_run_retroactive_points(data, force_dry_run=False))


def _run_retroactive_points(params, force_dry_run):
    competition_id = resolve_competition_id(_int_param(params, "competition_id"))
    from_round_id = _int_param(params, "from_round_id")
    dry_run = force_dry_run or _bool_param(params, "dry_run")
    user_id = _int_param(params, "user_id")
    after_date = params.get("after_date")

    service = RetroactivePointsService(SQLAlchemyGateway())

    if user_id is not None:
        result = service.apply_retroactive_points(
            user_id, competition_id, from_round_id=from_round_id, dry_run=dry_run
        )
        action_type = AdminAction.APPLY_RETROACTIVE_POINTS
        description = (
            f"Retroactive points for user {user_id}: "
            f"{result.total_points_awarded} points over {result.rounds_processed} rounds"
        )
    elif after_date:
        try:
            created_after = parse_iso_datetime(after_date)
        except ValueError:
            raise ValidationError("after_date must be an ISO-8601 timestamp")
        result = service.apply_for_new_users(
            created_after, competition_id, from_round_id=from_round_id, dry_run=dry_run
        )
        action_type = AdminAction.BULK_RETROACTIVE_POINTS
        description = (
            f"Bulk retroactive points for {result.total_users_processed} users: "
            f"{result.total_points_awarded} points"
        )
    else:
        raise ValidationError("Either user_id or after_date is required")

    if not dry_run:
        AdminAction.log_action(
            action_type,
            description,
            admin_user_id=current_user.id,
            target_user_id=user_id,
            action_metadata={
                "competition_id": competition_id,
                "from_round_id": from_round_id,
                "after_date": after_date,
                "total_points_awarded": result.total_points_awarded,
                "errors": len(result.errors),
            },
        )
        db.session.commit()
        invalidate_standings(competition_id)

    return result.to_dict()


@bp.route("/seasons/<int:season_id>/winners", methods=["POST"])
@admin_required
def determine_season_winners(season_id):
    gateway = SQLAlchemyGateway()
    if gateway.get_season(season_id) is None:
        raise NotFoundError("Season not found", {"season_id": season_id})

    winners = StandingsService(gateway).determine_season_winners(season_id)

    AdminAction.log_action(
        AdminAction.DETERMINE_SEASON_WINNERS,
        f"Determined {len(winners)} winners for season {season_id}",
        admin_user_id=current_user.id,
        season_id=season_id,
        action_metadata={"winner_user_ids": [w.user_id for w in winners]},
    )
    db.session.commit()
    invalidate_standings()

    return jsonify(
        {"season_id": season_id, "winners": [winner.to_dict() for winner in winners]}
    )
