"""
Error taxonomy for the betting pool.

Every error carries the HTTP status the API layer answers with, so routes can
let them propagate to the global error handler.
"""


class BettingPoolError(Exception):
    """Base class for all domain errors"""

    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        data = {"error": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(BettingPoolError):
    """Malformed or empty input, or a coupon spanning several rounds"""

    status_code = 400


class AuthenticationError(BettingPoolError):
    status_code = 401


class DeadlinePassedError(BettingPoolError):
    """The round locked at its earliest kickoff"""

    status_code = 403


class NotFoundError(BettingPoolError):
    status_code = 404


class PersistenceError(BettingPoolError):
    """Wraps any failure raised by the database layer"""

    status_code = 500
