"""
Pulls finished match results from the football-data.org v4 API and hands them
to the round scorer.
"""

import logging
import time
from collections import defaultdict
from functools import wraps

import requests
from flask import current_app

from bettingpool.exceptions import BettingPoolError

logger = logging.getLogger(__name__)


def rate_limit_decorator(max_retries=3, base_delay=1.0, backoff_factor=2.0):
    """
    Decorator to handle API rate limiting with exponential backoff
    """

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return func(self, *args, **kwargs)

                except requests.exceptions.HTTPError as e:
                    status = e.response.status_code if e.response is not None else None
                    # Client errors other than 429 will not improve on retry
                    if status is not None and status < 500 and status != 429:
                        raise
                    if attempt == max_retries - 1:
                        raise

                    delay = base_delay * (backoff_factor**attempt)
                    if status == 429:
                        delay = float(e.response.headers.get("Retry-After", delay))
                    logger.warning(
                        f"HTTP {status}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                    )
                    time.sleep(delay)

                except requests.exceptions.RequestException as e:
                    if attempt == max_retries - 1:
                        raise
                    delay = base_delay * (backoff_factor**attempt)
                    logger.warning(
                        f"Request failed: {e}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                    )
                    time.sleep(delay)

            raise requests.exceptions.RetryError(f"Max retries ({max_retries}) exceeded")

        return wrapper

    return decorator


def parse_match(match):
    """Extract (external_id, home_goals, away_goals) from a finished match, or None"""
    if match.get("status") != "FINISHED":
        return None

    full_time = (match.get("score") or {}).get("fullTime") or {}
    home_goals = full_time.get("home")
    away_goals = full_time.get("away")
    if home_goals is None or away_goals is None:
        return None

    return str(match["id"]), int(home_goals), int(away_goals)


class ResultsSync:
    """
    Fetches finished fixtures with rate limiting and retries, records their
    results and scores the rounds that become complete.
    """

    def __init__(
        self,
        gateway,
        scoring_service,
        api_base_url=None,
        api_key=None,
        competition_code=None,
    ):
        self.gateway = gateway
        self.scoring_service = scoring_service
        self.api_base_url = (
            api_base_url or current_app.config["FOOTBALL_DATA_API_URL"]
        ).rstrip("/")
        self.api_key = (
            api_key if api_key is not None else current_app.config["FOOTBALL_DATA_API_KEY"]
        )
        self.competition_code = (
            competition_code or current_app.config["FOOTBALL_DATA_COMPETITION"]
        )

        self.session = requests.Session()
        self.session.headers.update({"User-Agent": "Betting-Pool/1.0"})
        if self.api_key:
            self.session.headers.update({"X-Auth-Token": self.api_key})

        # Free tier allows 10 requests per minute
        self.last_request_time = 0
        self.min_request_interval = 6.0
        self.request_count = 0

    def _enforce_rate_limit(self):
        time_since_last = time.time() - self.last_request_time
        if time_since_last < self.min_request_interval:
            time.sleep(self.min_request_interval - time_since_last)

        self.last_request_time = time.time()
        self.request_count += 1

    @rate_limit_decorator(max_retries=3, base_delay=2.0)
    def _make_api_request(self, url, params=None):
        self._enforce_rate_limit()

        response = self.session.get(url, params=params, timeout=30)
        if not response.ok:
            logger.warning(f"HTTP error {response.status_code}: {url}")
        response.raise_for_status()
        return response

    def fetch_finished_matches(self, competition_code=None, date_from=None, date_to=None):
        code = competition_code or self.competition_code
        params = {"status": "FINISHED"}
        if date_from:
            params["dateFrom"] = date_from.isoformat()
        if date_to:
            params["dateTo"] = date_to.isoformat()

        url = f"{self.api_base_url}/competitions/{code}/matches"
        response = self._make_api_request(url, params=params)
        return response.json().get("matches", [])

    def sync_results(self, competition, date_from=None, date_to=None):
        """
        Record finished results for known fixtures and score completed rounds.

        Returns:
            (True, summary) on success, (False, message) when the feed failed
        """
        if not self.api_key:
            return False, "FOOTBALL_DATA_API_KEY is not set"

        try:
            matches = self.fetch_finished_matches(
                competition.external_code, date_from, date_to
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Error fetching results: {str(e)}")
            return False, str(e)

        scores = {}
        for match in matches:
            parsed = parse_match(match)
            if parsed:
                external_id, home_goals, away_goals = parsed
                scores[external_id] = (home_goals, away_goals)

        summary = {
            "matches_fetched": len(matches),
            "fixtures_matched": 0,
            "rounds_scored": [],
            "rounds_deferred": [],
            "errors": [],
        }

        results_by_round = defaultdict(dict)
        ungrouped = []
        for fixture in self.gateway.get_fixtures_by_external_ids(list(scores)):
            summary["fixtures_matched"] += 1
            home_goals, away_goals = scores[fixture.external_id]
            if fixture.betting_round_id is None:
                ungrouped.append((fixture, home_goals, away_goals))
            else:
                results_by_round[fixture.betting_round_id][fixture.id] = (
                    home_goals,
                    away_goals,
                )

        for fixture, home_goals, away_goals in ungrouped:
            try:
                if fixture.record_result(home_goals=home_goals, away_goals=away_goals):
                    self.gateway.save_fixture_results([fixture])
            except BettingPoolError as e:
                summary["errors"].append({"fixture_id": fixture.id, "error": str(e)})

        for round_id, results in sorted(results_by_round.items()):
            betting_round = self.gateway.get_round(round_id)
            if betting_round.competition_id != competition.id or betting_round.is_scored:
                continue
            try:
                result = self.scoring_service.score_round(round_id, results)
            except BettingPoolError as e:
                logger.error(f"Scoring round {round_id} from feed failed: {e}")
                summary["errors"].append({"round_id": round_id, "error": str(e)})
                continue

            if result.deferred:
                summary["rounds_deferred"].append(round_id)
            elif not result.skipped:
                summary["rounds_scored"].append(round_id)

        logger.info(
            f"Results sync: {summary['fixtures_matched']} fixtures matched, "
            f"{len(summary['rounds_scored'])} rounds scored"
        )
        return True, summary
