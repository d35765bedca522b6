"""
Shared test fixtures for pytest
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from bettingpool import create_app
from bettingpool import db as _db
from bettingpool.models import (
    Bet,
    BettingRound,
    Competition,
    Fixture,
    RoundStatus,
    Season,
    User,
)
from bettingpool.services import SQLAlchemyGateway

_ids = itertools.count(1)


@pytest.fixture
def app():
    """Application bound to a fresh in-memory database"""
    app = create_app("testing")
    with app.app_context():
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app):
    return SQLAlchemyGateway()


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


@pytest.fixture
def competition(db):
    competition = Competition(name="Premier League", country_name="England", external_code="PL")
    db.session.add(competition)
    db.session.commit()
    return competition


@pytest.fixture
def season(db, competition):
    season = Season(
        competition_id=competition.id,
        name="Premier League 2025/26",
        api_season_year=2025,
        is_current=True,
    )
    db.session.add(season)
    db.session.commit()
    return season


@pytest.fixture
def make_user(db):
    """Create a user; created_at defaults to now"""

    def _make(email=None, created_at=None, is_admin=False, password="secret123", full_name=None):
        n = next(_ids)
        user = User(
            email=email or f"user{n}@example.com",
            full_name=full_name or f"User {n}",
            is_admin=is_admin,
        )
        user.set_password(password)
        if created_at is not None:
            user.created_at = created_at
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_round(db, competition, season, now):
    """
    Create a round with fixture_count fixtures kicking off an hour apart,
    starting at kickoff (default: tomorrow). results, when given, are
    recorded on the fixtures in id order.
    """

    def _make(
        fixture_count=2,
        kickoff=None,
        status=RoundStatus.OPEN.value,
        results=None,
        scored_at=None,
        name=None,
    ):
        n = next(_ids)
        betting_round = BettingRound(
            competition_id=competition.id,
            season_id=season.id,
            name=name or f"Round {n}",
            status=status,
            scored_at=scored_at,
        )
        db.session.add(betting_round)
        db.session.flush()

        first_kickoff = kickoff or now + timedelta(days=1)
        fixtures = []
        for i in range(fixture_count):
            fixture = Fixture(
                betting_round_id=betting_round.id,
                external_id=f"ext-{n}-{i}",
                home_team=f"Home {n}.{i}",
                away_team=f"Away {n}.{i}",
                kickoff=first_kickoff + timedelta(hours=i),
            )
            if results:
                fixture.result = results[i]
            db.session.add(fixture)
            fixtures.append(fixture)
        db.session.flush()

        betting_round.update_kickoff_window()
        db.session.commit()
        return betting_round, fixtures

    return _make


@pytest.fixture
def make_bet(db):
    def _make(user, fixture, prediction="1", points=None):
        bet = Bet(
            user_id=user.id,
            betting_round_id=fixture.betting_round_id,
            fixture_id=fixture.id,
            prediction=prediction,
            points_awarded=points,
        )
        db.session.add(bet)
        db.session.commit()
        return bet

    return _make


@pytest.fixture
def scored_round(make_round, make_bet, now):
    """
    Build a scored round where each given user earned the given points.
    Points are spread one per fixture from the first fixture.
    """

    def _make(points_by_user, fixture_count=5, scored_at=None):
        betting_round, fixtures = make_round(
            fixture_count=fixture_count,
            kickoff=now - timedelta(days=2),
            status=RoundStatus.SCORED.value,
            results=["1"] * fixture_count,
            scored_at=scored_at or now - timedelta(days=1),
        )
        for user, points in points_by_user.items():
            for index, fixture in enumerate(fixtures):
                earned = 1 if index < points else 0
                make_bet(user, fixture, prediction="1" if earned else "2", points=earned)
        return betting_round, fixtures

    return _make


@pytest.fixture
def login(client):
    """Log a user in on the test client"""

    def _login(user, password="secret123"):
        return client.post("/auth/login", json={"email": user.email, "password": password})

    return _login
