import logging

from flask import jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from bettingpool import db, limiter, login_manager
from bettingpool.exceptions import AuthenticationError, ValidationError
from bettingpool.models import User
from bettingpool.routes.auth import bp

logger = logging.getLogger(__name__)


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@bp.route("/csrf-token")
def csrf_token():
    """Token for the X-CSRFToken header of JSON clients"""
    return jsonify({"csrf_token": generate_csrf()})


@bp.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        raise ValidationError("email and password are required")

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        logger.info(f"Failed login for {email}")
        raise AuthenticationError("Invalid email or password")

    if not user.is_active:
        raise AuthenticationError("Your account has been deactivated")

    login_user(user, remember=bool(data.get("remember_me")))
    user.update_last_login()
    db.session.commit()

    return jsonify({"user": user.to_dict(include_email=True)})


@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})


@bp.route("/me")
@login_required
def me():
    return jsonify(
        {"user": current_user.to_dict(include_email=True), "csrf_token": generate_csrf()}
    )
