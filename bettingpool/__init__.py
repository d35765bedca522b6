import logging
import os

import redis
from flask import Flask, jsonify, request
from flask_caching import Cache
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager, current_user
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFError, CSRFProtect

from config import config

logger = logging.getLogger(__name__)

db = SQLAlchemy()
login_manager = LoginManager()
cache = Cache()
migrate = Migrate()
csrf = CSRFProtect()


def get_real_ip():
    """Client address behind a reverse proxy (leftmost X-Forwarded-For hop)"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or get_remote_address()


def _limiter_storage_uri():
    """Shared Redis storage so limits hold across workers, memory otherwise"""
    redis_url = os.environ.get("REDIS_URL") or os.environ.get("CACHE_REDIS_URL")
    if not redis_url:
        return "memory://"
    try:
        redis.Redis.from_url(redis_url).ping()
    except redis.exceptions.RedisError as e:
        logger.warning(f"Rate limiter falling back to memory storage: {e}")
        return "memory://"
    return redis_url


limiter = Limiter(
    key_func=get_real_ip,
    default_limits=["10000 per day", "1000 per hour"],
    storage_uri=_limiter_storage_uri(),
)


def create_app(config_name=None):
    app = Flask(__name__)

    if config_name is None:
        config_name = os.environ.get("FLASK_CONFIG", "default")
    app.config.from_object(config[config_name]())

    # Session cookie for the JSON clients; secure outside development
    app.config.update(
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SECURE=not app.config.get("DEBUG")
        and app.config.get("FLASK_ENV") == "production",
        PERMANENT_SESSION_LIFETIME=86400,
        WTF_CSRF_TIME_LIMIT=None,
        WTF_CSRF_SSL_STRICT=False,
    )

    db.init_app(app)
    login_manager.init_app(app)
    cache.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    limiter.init_app(app)

    register_blueprints(app)
    register_error_handlers(app)

    from bettingpool.utils.logging_config import setup_logging

    setup_logging(app)

    with app.app_context():
        db.create_all()

    return app


def register_blueprints(app):
    from bettingpool.routes.admin import bp as admin_bp
    from bettingpool.routes.api import bp as api_bp
    from bettingpool.routes.auth import bp as auth_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")


def register_error_handlers(app):
    """Every error leaves the API as {"error": ...} JSON"""
    from bettingpool.exceptions import BettingPoolError, PersistenceError

    @app.after_request
    def security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if not app.config.get("DEBUG"):
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    @app.errorhandler(BettingPoolError)
    def handle_betting_pool_error(error):
        if isinstance(error, PersistenceError):
            db.session.rollback()
            app.logger.error(f"Persistence failure on {request.method} {request.path}: {error}")
        else:
            app.logger.info(f"{error.status_code} on {request.method} {request.path}: {error}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(CSRFError)
    def handle_csrf_error(error):
        # CSRF is checked before login_required; the auth endpoints stay reachable
        if current_user.is_anonymous and request.blueprint != "auth":
            return jsonify({"error": "Login required"}), 401
        app.logger.warning(f"CSRF failure on {request.method} {request.path}: {error.description}")
        return (
            jsonify(
                {
                    "error": "Security token missing or invalid",
                    "details": {"reason": error.description},
                }
            ),
            400,
        )

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Login required"}), 401

    def json_error(status, message):
        def handler(error):
            return jsonify({"error": message}), status

        return handler

    app.register_error_handler(400, json_error(400, "Bad request"))
    app.register_error_handler(403, json_error(403, "Admin access required"))
    app.register_error_handler(404, json_error(404, "Resource not found"))
    app.register_error_handler(429, json_error(429, "Too many requests"))

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        app.logger.error(f"Unhandled error on {request.method} {request.path}: {error}")
        return jsonify({"error": "Internal server error"}), 500


from bettingpool import models  # noqa: F401, E402
