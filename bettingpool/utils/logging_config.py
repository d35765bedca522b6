"""
Logging setup for the betting pool

Console output (colored while debugging), optional rotating files for the
application and error logs, and a small adapter that appends round/user
context to service messages.
"""

import logging
import logging.handlers
import os

from flask import g, has_request_context, request

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEBUG_CONSOLE_FORMAT = CONSOLE_FORMAT + " [%(filename)s:%(lineno)d]"
APP_FILE_FORMAT = (
    "%(asctime)s [%(levelname)s] %(name)s: %(message)s "
    "[%(method)s %(path)s] [user=%(user_id)s] [%(remote_addr)s]"
)
ERROR_FILE_FORMAT = (
    "%(asctime)s [%(levelname)s] %(name)s: %(message)s "
    "[%(pathname)s:%(lineno)d] [%(method)s %(path)s] [user=%(user_id)s]"
)

# Chatty libraries kept at WARNING
QUIET_LOGGERS = ("werkzeug", "urllib3", "requests", "flask_limiter", "sqlalchemy.engine")


class RequestContextFilter(logging.Filter):
    """Stamp records with the HTTP request and the logged-in bettor, if any"""

    def filter(self, record):
        record.method = record.path = record.remote_addr = record.user_id = "-"
        if has_request_context():
            record.method = request.method
            record.path = request.path
            record.remote_addr = request.remote_addr
            # Only a user Flask-Login already loaded, never a fresh query
            user = g.get("_login_user")
            if user is not None and user.is_authenticated:
                record.user_id = user.id
        return True


class ColoredFormatter(logging.Formatter):
    """Colors the level name on terminals"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)
        plain = record.levelname
        record.levelname = f"{color}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


def _file_handler(path, level, fmt, max_bytes, backup_count):
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.addFilter(RequestContextFilter())
    return handler


def setup_logging(app):
    """
    Configure the root logger from LOG_LEVEL, LOG_TO_CONSOLE, LOG_TO_FILE
    and LOG_DIR

    Args:
        app: Flask application instance
    """
    level = logging.getLevelName(app.config.get("LOG_LEVEL", "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if app.config.get("LOG_TO_CONSOLE", True):
        console = logging.StreamHandler()
        console.setLevel(level)
        if app.debug:
            console.setFormatter(ColoredFormatter(DEBUG_CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        else:
            console.setFormatter(
                logging.Formatter(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
            )
        root.addHandler(console)

    if app.config.get("LOG_TO_FILE", True):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        root.addHandler(
            _file_handler(
                os.path.join(log_dir, "betting_pool.log"),
                level,
                APP_FILE_FORMAT,
                max_bytes=10 * 1024 * 1024,
                backup_count=5,
            )
        )
        root.addHandler(
            _file_handler(
                os.path.join(log_dir, "errors.log"),
                logging.ERROR,
                ERROR_FILE_FORMAT,
                max_bytes=5 * 1024 * 1024,
                backup_count=3,
            )
        )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.info(f"Logging ready at {logging.getLevelName(level)}")


class ContextualLogger(logging.LoggerAdapter):
    """
    Appends key=value pairs to every message, e.g.
    "Saved 10 bets [user_id=4 round_id=12]"
    """

    def __init__(self, name, context=None):
        super().__init__(logging.getLogger(name), dict(context or {}))

    def process(self, msg, kwargs):
        if self.extra:
            pairs = " ".join(f"{key}={value}" for key, value in self.extra.items())
            msg = f"{msg} [{pairs}]"
        return msg, kwargs
