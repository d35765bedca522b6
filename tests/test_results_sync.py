from datetime import timedelta
from unittest.mock import Mock, patch

import pytest
import requests

from bettingpool.models import Bet, BettingRound, Fixture
from bettingpool.services import RoundScoringService
from bettingpool.utils.results_sync import ResultsSync, parse_match


def api_response(matches=(), status_code=200):
    response = Mock(ok=status_code < 400, status_code=status_code)
    response.json.return_value = {"matches": list(matches)}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status_code} error", response=response
        )
    return response


def finished(fixture, home, away):
    return {
        "id": fixture.external_id,
        "status": "FINISHED",
        "score": {"fullTime": {"home": home, "away": away}},
    }


@pytest.fixture
def sync(gateway):
    sync = ResultsSync(gateway, RoundScoringService(gateway), api_key="test-key")
    sync.min_request_interval = 0
    return sync


@pytest.fixture
def closed_round(make_round, make_user, make_bet, now):
    betting_round, fixtures = make_round(
        kickoff=now - timedelta(hours=4), status="closed"
    )
    user = make_user()
    make_bet(user, fixtures[0], "1")
    make_bet(user, fixtures[1], "2")
    return betting_round, fixtures, user


def test_complete_round_is_scored(sync, competition, closed_round):
    betting_round, fixtures, user = closed_round
    feed = [finished(fixtures[0], 2, 0), finished(fixtures[1], 1, 1)]

    with patch.object(sync.session, "get", return_value=api_response(feed)) as get:
        ok, summary = sync.sync_results(competition)

    assert ok is True
    assert summary["matches_fetched"] == 2
    assert summary["fixtures_matched"] == 2
    assert summary["rounds_scored"] == [betting_round.id]
    assert summary["errors"] == []
    assert get.call_args.args[0].endswith("/competitions/PL/matches")
    assert get.call_args.kwargs["params"] == {"status": "FINISHED"}

    assert BettingRound.query.get(betting_round.id).status == "scored"
    points = [b.points_awarded for b in Bet.query.filter_by(user_id=user.id).order_by(Bet.fixture_id)]
    assert points == [1, 0]
    assert Fixture.query.get(fixtures[1].id).result == "X"


def test_partial_feed_defers_round(sync, competition, closed_round):
    betting_round, fixtures, _ = closed_round

    with patch.object(sync.session, "get", return_value=api_response([finished(fixtures[0], 0, 3)])):
        ok, summary = sync.sync_results(competition)

    assert ok is True
    assert summary["rounds_deferred"] == [betting_round.id]
    assert BettingRound.query.get(betting_round.id).status == "closed"
    assert Fixture.query.get(fixtures[0].id).result == "2"


def test_unknown_and_unfinished_matches_are_ignored(sync, competition, closed_round):
    _, fixtures, _ = closed_round
    feed = [
        {"id": "somewhere-else", "status": "FINISHED", "score": {"fullTime": {"home": 1, "away": 0}}},
        {"id": fixtures[0].external_id, "status": "IN_PLAY", "score": {"fullTime": {"home": 1, "away": 0}}},
    ]

    with patch.object(sync.session, "get", return_value=api_response(feed)):
        ok, summary = sync.sync_results(competition)

    assert ok is True
    assert summary["fixtures_matched"] == 0
    assert Fixture.query.get(fixtures[0].id).result is None


def test_fixture_outside_any_round_gets_result(sync, db, competition, now):
    fixture = Fixture(
        external_id="loose-1", home_team="A", away_team="B", kickoff=now - timedelta(days=1)
    )
    db.session.add(fixture)
    db.session.commit()

    with patch.object(sync.session, "get", return_value=api_response([finished(fixture, 1, 2)])):
        ok, summary = sync.sync_results(competition)

    assert ok is True
    assert summary["fixtures_matched"] == 1
    assert Fixture.query.get(fixture.id).result == "2"


def test_server_error_is_retried(sync, competition, closed_round):
    _, fixtures, _ = closed_round
    responses = [api_response(status_code=500), api_response([finished(fixtures[0], 1, 0)])]

    with patch("bettingpool.utils.results_sync.time.sleep") as sleep, patch.object(
        sync.session, "get", side_effect=responses
    ) as get:
        ok, _ = sync.sync_results(competition)

    assert ok is True
    assert get.call_count == 2
    sleep.assert_called_once_with(2.0)


def test_client_error_is_not_retried(sync, competition):
    with patch.object(sync.session, "get", return_value=api_response(status_code=403)) as get:
        ok, message = sync.sync_results(competition)

    assert ok is False
    assert "403" in message
    assert get.call_count == 1


def test_network_failure_reports_error(sync, competition):
    with patch("bettingpool.utils.results_sync.time.sleep"), patch.object(
        sync.session, "get", side_effect=requests.exceptions.ConnectionError("unreachable")
    ) as get:
        ok, message = sync.sync_results(competition)

    assert ok is False
    assert "unreachable" in message
    assert get.call_count == 3


def test_missing_api_key(gateway, competition):
    sync = ResultsSync(gateway, RoundScoringService(gateway), api_key="")

    ok, message = sync.sync_results(competition)

    assert ok is False
    assert "FOOTBALL_DATA_API_KEY" in message


def test_parse_match():
    match = {"id": 42, "status": "FINISHED", "score": {"fullTime": {"home": 3, "away": 1}}}

    assert parse_match(match) == ("42", 3, 1)
    assert parse_match({**match, "status": "TIMED"}) is None
    assert parse_match({"id": 1, "status": "FINISHED", "score": {"fullTime": {"home": None, "away": None}}}) is None
