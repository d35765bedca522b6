from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from bettingpool.exceptions import NotFoundError, PersistenceError
from bettingpool.models import Bet
from bettingpool.services import RetroactivePointsService
from bettingpool.services.retroactive_points import (
    minimum_participant_score,
    synthesize_round_bets,
)


@pytest.fixture
def service(gateway):
    return RetroactivePointsService(gateway)


def synthesized(user, betting_round):
    return (
        Bet.query.filter_by(user_id=user.id, betting_round_id=betting_round.id)
        .order_by(Bet.fixture_id)
        .all()
    )


def test_late_joiner_gets_minimum_participant_score(
    service, competition, make_user, scored_round
):
    a, b, c = make_user(), make_user(), make_user()
    betting_round, fixtures = scored_round({a: 3, b: 5, c: 2})
    late = make_user()

    result = service.apply_retroactive_points(late.id, competition.id)

    assert result.success
    assert result.rounds_processed == 1
    assert result.total_points_awarded == 2
    breakdown = result.rounds[0]
    assert breakdown.round_id == betting_round.id
    assert breakdown.minimum_participant_score == 2
    assert breakdown.participant_count == 3
    assert breakdown.bets_created == 5

    bets = synthesized(late, betting_round)
    assert [b.fixture_id for b in bets] == [f.id for f in fixtures]
    assert [b.points_awarded for b in bets] == [1, 1, 0, 0, 0]
    assert {b.prediction for b in bets} == {"1"}


def test_points_fill_fixtures_in_id_order(service, competition, make_user, scored_round):
    users = [make_user() for _ in range(3)]
    betting_round, fixtures = scored_round(
        dict(zip(users, [2, 4, 1])), fixture_count=4
    )
    late = make_user()

    service.apply_retroactive_points(late.id, competition.id)

    bets = synthesized(late, betting_round)
    assert [(b.fixture_id, b.points_awarded) for b in bets] == [
        (fixtures[0].id, 1),
        (fixtures[1].id, 0),
        (fixtures[2].id, 0),
        (fixtures[3].id, 0),
    ]


def test_round_without_participants_yields_zero_rows(
    service, competition, make_user, scored_round
):
    betting_round, _ = scored_round({}, fixture_count=3)
    late = make_user()

    result = service.apply_retroactive_points(late.id, competition.id)

    assert result.total_points_awarded == 0
    assert result.rounds[0].participant_count == 0
    assert [b.points_awarded for b in synthesized(late, betting_round)] == [0, 0, 0]

    # The zero rows mark the round as handled
    assert service.apply_retroactive_points(late.id, competition.id).rounds_processed == 0


def test_second_run_finds_nothing(service, competition, make_user, scored_round):
    scored_round({make_user(): 3})
    late = make_user()

    first = service.apply_retroactive_points(late.id, competition.id)
    second = service.apply_retroactive_points(late.id, competition.id)

    assert first.rounds_processed == 1
    assert second.rounds_processed == 0
    assert second.total_points_awarded == 0
    assert Bet.query.filter_by(user_id=late.id).count() == 5


def test_dry_run_writes_nothing(service, competition, make_user, scored_round):
    scored_round({make_user(): 3, make_user(): 4})
    late = make_user()

    preview = service.preview(late.id, competition.id)

    assert preview.dry_run is True
    assert preview.total_points_awarded == 3
    assert preview.rounds[0].bets_created == 5
    assert Bet.query.filter_by(user_id=late.id).count() == 0


def test_only_missed_scored_rounds_are_backfilled(
    service, competition, make_user, make_round, make_bet, scored_round
):
    regular = make_user()
    late = make_user()
    played, played_fixtures = scored_round({regular: 4})
    make_bet(late, played_fixtures[0], "1", points=1)
    missed, _ = scored_round({regular: 2})
    make_round()  # open round, never backfilled

    result = service.apply_retroactive_points(late.id, competition.id)

    assert [r.round_id for r in result.rounds] == [missed.id]
    assert Bet.query.filter_by(user_id=late.id, betting_round_id=played.id).count() == 1


def test_from_round_id_limits_discovery(service, competition, make_user, scored_round):
    regular = make_user()
    early, _ = scored_round({regular: 1})
    later, _ = scored_round({regular: 3})
    late = make_user()

    result = service.apply_retroactive_points(
        late.id, competition.id, from_round_id=later.id
    )

    assert [r.round_id for r in result.rounds] == [later.id]
    assert Bet.query.filter_by(user_id=late.id, betting_round_id=early.id).count() == 0


def test_unknown_user_and_competition(service, competition, make_user):
    with pytest.raises(NotFoundError):
        service.apply_retroactive_points(987654, competition.id)
    with pytest.raises(NotFoundError):
        service.apply_retroactive_points(make_user().id, 987654)


def test_round_failure_is_recorded_and_others_continue(
    service, gateway, competition, make_user, scored_round
):
    regular = make_user()
    failing, _ = scored_round({regular: 1})
    working, _ = scored_round({regular: 2})
    late = make_user()
    real_insert = gateway.insert_bets

    def flaky_insert(rows):
        if rows[0]["betting_round_id"] == failing.id:
            raise PersistenceError("insert failed")
        return real_insert(rows)

    with patch.object(gateway, "insert_bets", side_effect=flaky_insert):
        result = service.apply_retroactive_points(late.id, competition.id)

    assert not result.success
    assert result.errors == [{"round_id": failing.id, "error": "insert failed"}]
    assert [r.round_id for r in result.rounds] == [working.id]
    assert result.total_points_awarded == 2
    assert Bet.query.filter_by(user_id=late.id, betting_round_id=failing.id).count() == 0


def test_bulk_processes_users_created_after(
    service, competition, make_user, scored_round, now
):
    regular = make_user(created_at=now - timedelta(days=30))
    scored_round({regular: 2})
    first = make_user(created_at=now - timedelta(hours=2))
    second = make_user(created_at=now - timedelta(hours=1))

    result = service.apply_for_new_users(now - timedelta(days=1), competition.id)

    assert result.total_users_processed == 2
    assert result.total_rounds_processed == 2
    assert result.total_points_awarded == 4
    assert [r.user_id for r in result.user_results] == [first.id, second.id]
    assert Bet.query.filter_by(user_id=regular.id).count() == 5


def test_bulk_isolates_user_failures(
    service, gateway, competition, make_user, scored_round, now
):
    scored_round({make_user(created_at=now - timedelta(days=30)): 2})
    broken = make_user(created_at=now - timedelta(hours=2))
    fine = make_user(created_at=now - timedelta(hours=1))
    real_lookup = gateway.get_user_round_ids

    def flaky_lookup(user_id, round_ids):
        if user_id == broken.id:
            raise PersistenceError("lookup failed")
        return real_lookup(user_id, round_ids)

    with patch.object(gateway, "get_user_round_ids", side_effect=flaky_lookup):
        result = service.apply_for_new_users(now - timedelta(days=1), competition.id)

    assert result.total_users_processed == 1
    assert result.errors == [{"user_id": broken.id, "error": "lookup failed"}]
    assert Bet.query.filter_by(user_id=fine.id).count() == 5


def test_check_user_needs_retroactive_points(
    service, competition, make_user, scored_round
):
    scored_round({make_user(): 3})
    late = make_user()

    assert service.check_user_needs_retroactive_points(late.id, competition.id) == {
        "needs_retroactive_points": True,
        "missed_rounds": 1,
        "estimated_points": 3,
    }
    service.apply_retroactive_points(late.id, competition.id)
    assert (
        service.check_user_needs_retroactive_points(late.id, competition.id)[
            "needs_retroactive_points"
        ]
        is False
    )


def test_is_first_bet_in_competition(
    service, competition, make_user, make_round, make_bet
):
    user = make_user()
    _, fixtures = make_round()

    assert service.is_first_bet_in_competition(user.id, competition.id) is True
    make_bet(user, fixtures[0])
    assert service.is_first_bet_in_competition(user.id, competition.id) is False


def test_minimum_participant_score():
    assert minimum_participant_score({}) == 0
    assert minimum_participant_score({1: 3, 2: 5, 3: 2}) == 2


def test_synthesize_round_bets_never_exceeds_fixture_count():
    fixtures = [SimpleNamespace(id=i) for i in (12, 10, 11)]

    rows = synthesize_round_bets(5, 1, fixtures, 7, None)

    assert [(r["fixture_id"], r["points_awarded"]) for r in rows] == [
        (10, 1),
        (11, 1),
        (12, 1),
    ]
