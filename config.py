import os
import secrets
import warnings

import redis
from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, ".env"))


def env_flag(name, default):
    return os.environ.get(name, str(default)).lower() in ("1", "true", "yes")


def build_database_uri():
    """DATABASE_URL wins; otherwise DB_TYPE picks postgresql parts or local sqlite"""
    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        return database_url

    if os.environ.get("DB_TYPE", "sqlite").lower() != "postgresql":
        return "sqlite:///" + os.path.join(basedir, "betting_pool.db")

    host = os.environ.get("DB_HOST") or "localhost"
    port = os.environ.get("DB_PORT") or "5432"
    name = os.environ.get("DB_NAME") or "betting_pool_db"
    user = os.environ.get("DB_USER") or "pool_user"
    password = os.environ.get("DB_PASSWORD") or "pool_password"
    return f"postgresql+psycopg://{user}:{password}@{host}:{port}/{name}"


def _secret_key():
    key = os.environ.get("SECRET_KEY")
    if key:
        return key
    warnings.warn(
        "SECRET_KEY not set, generated a temporary one. Logins will not "
        "survive a restart. Set SECRET_KEY in your .env file.",
        UserWarning,
    )
    return secrets.token_urlsafe(32)


class Config:
    SECRET_KEY = _secret_key()

    def __init__(self):
        self.SQLALCHEMY_DATABASE_URI = build_database_uri()

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Results feed (football-data.org v4)
    FOOTBALL_DATA_API_URL = (
        os.environ.get("FOOTBALL_DATA_API_URL") or "https://api.football-data.org/v4"
    )
    FOOTBALL_DATA_API_KEY = os.environ.get("FOOTBALL_DATA_API_KEY", "")
    FOOTBALL_DATA_COMPETITION = os.environ.get("FOOTBALL_DATA_COMPETITION", "PL")

    # Pool behaviour
    TIMEZONE = os.environ.get("TIMEZONE", "UTC")
    BETS_RATE_LIMIT = os.environ.get("BETS_RATE_LIMIT", "30 per minute")
    STANDINGS_CACHE_TIMEOUT = int(os.environ.get("STANDINGS_CACHE_TIMEOUT", 300))

    # Flask-Caching
    CACHE_TYPE = os.environ.get("CACHE_TYPE", "RedisCache")
    CACHE_DEFAULT_TIMEOUT = int(os.environ.get("CACHE_DEFAULT_TIMEOUT", 300))
    CACHE_REDIS_URL = os.environ.get("CACHE_REDIS_URL", "redis://localhost:6379/0")
    CACHE_KEY_PREFIX = "betting_pool:"

    RATELIMIT_ENABLED = True

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_TO_CONSOLE = env_flag("LOG_TO_CONSOLE", True)
    LOG_TO_FILE = env_flag("LOG_TO_FILE", True)
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    SLOW_OPERATION_THRESHOLD = float(os.environ.get("SLOW_OPERATION_THRESHOLD", "1.0"))

    FLASK_ENV = os.environ.get("FLASK_ENV", "development")
    DEBUG = FLASK_ENV == "development"
    TESTING = False


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_ECHO = env_flag("SQLALCHEMY_ECHO", False)

    def __init__(self):
        super().__init__()
        if self.CACHE_TYPE != "RedisCache":
            return
        try:
            redis.Redis.from_url(self.CACHE_REDIS_URL).ping()
        except redis.exceptions.RedisError:
            self.CACHE_TYPE = "SimpleCache"
            warnings.warn(
                "Redis unreachable, standings are cached in-process (SimpleCache).",
                UserWarning,
            )


class ProductionConfig(Config):
    DEBUG = False

    def __init__(self):
        super().__init__()
        for name, consequence in (
            ("SECRET_KEY", "sessions reset on every deploy"),
            ("FOOTBALL_DATA_API_KEY", "results sync is disabled"),
        ):
            if not os.environ.get(name):
                warnings.warn(
                    f"PRODUCTION WARNING: {name} not set, {consequence}.", UserWarning
                )


class TestingConfig(Config):
    """In-memory database, no CSRF, no rate limits, no log output"""

    TESTING = True
    DEBUG = False
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False
    CACHE_TYPE = "SimpleCache"
    LOG_TO_FILE = False
    LOG_TO_CONSOLE = False

    def __init__(self):
        super().__init__()
        self.SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"


config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}
