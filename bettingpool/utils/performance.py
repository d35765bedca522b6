"""
Timing for scoring and standings passes

Operations slower than SLOW_OPERATION_THRESHOLD seconds are logged as
warnings; timings are also collected on flask.g per request.
"""

import logging
import time

from flask import current_app, g, has_app_context, has_request_context

logger = logging.getLogger(__name__)

DEFAULT_SLOW_THRESHOLD = 1.0


def slow_threshold():
    if has_app_context():
        return current_app.config.get("SLOW_OPERATION_THRESHOLD", DEFAULT_SLOW_THRESHOLD)
    return DEFAULT_SLOW_THRESHOLD


class PerformanceMonitor:
    """
    Usage:
        with PerformanceMonitor("score_round 12"):
            ...
    """

    def __init__(self, operation_name, log_threshold=None):
        self.operation_name = operation_name
        self.log_threshold = log_threshold
        self.started = None
        self.duration = None

    def __enter__(self):
        self.started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.started
        threshold = self.log_threshold
        if threshold is None:
            threshold = slow_threshold()

        if exc_type is not None:
            logger.error(
                f"{self.operation_name} failed after {self.duration:.3f}s: {exc_val}"
            )
        elif self.duration > threshold:
            logger.warning(
                f"{self.operation_name} was slow: {self.duration:.3f}s (threshold {threshold}s)"
            )
        else:
            logger.debug(f"{self.operation_name} took {self.duration:.3f}s")

        if has_request_context():
            g.setdefault("operation_timings", []).append(
                (self.operation_name, round(self.duration, 4), exc_type is None)
            )

        return False
