"""
Cache utilities
Provides a query caching decorator and standings cache invalidation
"""

import functools

from flask import current_app

from bettingpool import cache

STANDINGS_KEY_PREFIX = "standings"
HALL_OF_FAME_KEY = "hall_of_fame"


def standings_cache_key(competition_id):
    return f"{STANDINGS_KEY_PREFIX}_{competition_id}"


def cached_query(key_func, timeout=None):
    """
    Decorator for caching JSON-serializable query results

    Args:
        key_func: Builds the cache key from the wrapped function's arguments
        timeout: Cache timeout in seconds (defaults to STANDINGS_CACHE_TIMEOUT)
    """

    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            cache_key = key_func(*args, **kwargs)

            result = cache.get(cache_key)
            if result is not None:
                current_app.logger.debug(f"Query cache hit: {cache_key}")
                return result

            result = f(*args, **kwargs)
            cache.set(
                cache_key,
                result,
                timeout=timeout or current_app.config.get("STANDINGS_CACHE_TIMEOUT", 300),
            )
            current_app.logger.debug(f"Query cache set: {cache_key}")

            return result

        return wrapped

    return decorator


def invalidate_standings(competition_id=None):
    """
    Drop cached standings after bet points changed

    Args:
        competition_id: Competition to invalidate; None clears the hall of fame only
    """
    if competition_id is not None:
        cache.delete(standings_cache_key(competition_id))
    cache.delete(HALL_OF_FAME_KEY)
    current_app.logger.debug(f"Standings cache invalidated for competition {competition_id}")
