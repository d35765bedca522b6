"""
Persistence gateway over rounds, fixtures, bets, users and competitions.

Services receive a gateway instance instead of reaching for the session
themselves, so tests can swap in a mock. No business rules live here; every
SQLAlchemy failure leaves this module as PersistenceError.
"""

import functools
import logging
from datetime import datetime, timezone

from sqlalchemy import func, insert, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from bettingpool import db
from bettingpool.exceptions import PersistenceError
from bettingpool.models import (
    Bet,
    BettingRound,
    Competition,
    Fixture,
    RoundStatus,
    Season,
    SeasonWinner,
    User,
    is_allowed_transition,
)

logger = logging.getLogger(__name__)


def persistence_operation(func_):
    """Roll back and re-raise database failures as PersistenceError"""

    @functools.wraps(func_)
    def wrapper(self, *args, **kwargs):
        try:
            return func_(self, *args, **kwargs)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Database error in {func_.__name__}: {e}")
            raise PersistenceError(
                f"Database operation '{func_.__name__}' failed",
                {"operation": func_.__name__},
            ) from e

    return wrapper


class SQLAlchemyGateway:
    """Typed reads and writes backed by the Flask-SQLAlchemy session"""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    # Reads

    @persistence_operation
    def get_round(self, round_id):
        return self.session.get(BettingRound, round_id)

    @persistence_operation
    def get_rounds_for_competition(self, competition_id, statuses=None):
        query = BettingRound.query.filter_by(competition_id=competition_id)
        if statuses:
            query = query.filter(
                BettingRound.status.in_([RoundStatus(s).value for s in statuses])
            )
        return query.order_by(BettingRound.id).all()

    @persistence_operation
    def get_fixtures_for_round(self, round_id):
        return (
            Fixture.query.filter_by(betting_round_id=round_id)
            .order_by(Fixture.id)
            .all()
        )

    @persistence_operation
    def get_fixtures_by_external_ids(self, external_ids):
        if not external_ids:
            return []
        return Fixture.query.filter(Fixture.external_id.in_(external_ids)).all()

    @persistence_operation
    def get_bets_for_round(self, round_id):
        return (
            Bet.query.filter_by(betting_round_id=round_id)
            .order_by(Bet.user_id, Bet.fixture_id)
            .all()
        )

    @persistence_operation
    def get_user_bets(self, user_id, round_id):
        return (
            Bet.query.filter_by(user_id=user_id, betting_round_id=round_id)
            .order_by(Bet.fixture_id)
            .all()
        )

    @persistence_operation
    def get_round_participant_totals(self, round_id):
        """Map user id to that user's point total in the round (null points count as 0)"""
        rows = (
            self.session.query(
                Bet.user_id, func.sum(func.coalesce(Bet.points_awarded, 0))
            )
            .filter(Bet.betting_round_id == round_id)
            .group_by(Bet.user_id)
            .all()
        )
        return {user_id: int(total or 0) for user_id, total in rows}

    @persistence_operation
    def get_fixture_round_map(self, fixture_ids):
        """Map each existing fixture id to its round id (None when ungrouped)"""
        if not fixture_ids:
            return {}
        rows = (
            self.session.query(Fixture.id, Fixture.betting_round_id)
            .filter(Fixture.id.in_(list(fixture_ids)))
            .all()
        )
        return {fixture_id: round_id for fixture_id, round_id in rows}

    @persistence_operation
    def get_scored_round_ids(self, competition_id, from_round_id=None):
        query = self.session.query(BettingRound.id).filter(
            BettingRound.competition_id == competition_id,
            BettingRound.status == RoundStatus.SCORED.value,
        )
        if from_round_id is not None:
            query = query.filter(BettingRound.id >= from_round_id)
        return [row[0] for row in query.order_by(BettingRound.id).all()]

    @persistence_operation
    def get_user_round_ids(self, user_id, round_ids):
        """Round ids, out of round_ids, in which the user holds at least one bet"""
        if not round_ids:
            return set()
        rows = (
            self.session.query(Bet.betting_round_id)
            .filter(Bet.user_id == user_id, Bet.betting_round_id.in_(list(round_ids)))
            .distinct()
            .all()
        )
        return {row[0] for row in rows}

    @persistence_operation
    def get_user(self, user_id):
        return self.session.get(User, user_id)

    @persistence_operation
    def get_user_created_at(self, user_id):
        row = self.session.query(User.created_at).filter(User.id == user_id).first()
        return row[0] if row else None

    @persistence_operation
    def get_users_created_after(self, created_after):
        return (
            User.query.filter(User.created_at >= created_after)
            .order_by(User.created_at, User.id)
            .all()
        )

    @persistence_operation
    def get_competition(self, competition_id):
        return self.session.get(Competition, competition_id)

    @persistence_operation
    def get_season(self, season_id):
        return self.session.get(Season, season_id)

    @persistence_operation
    def get_competition_bets(self, competition_id, season_id=None):
        """All bets of the competition's rounds, with their round loaded"""
        query = (
            Bet.query.join(BettingRound, Bet.betting_round_id == BettingRound.id)
            .options(joinedload(Bet.betting_round))
            .filter(BettingRound.competition_id == competition_id)
        )
        if season_id is not None:
            query = query.filter(BettingRound.season_id == season_id)
        return query.all()

    @persistence_operation
    def get_recent_scored_rounds(self, competition_id, limit=3, season_id=None):
        query = BettingRound.query.filter_by(
            competition_id=competition_id, status=RoundStatus.SCORED.value
        )
        if season_id is not None:
            query = query.filter_by(season_id=season_id)
        return (
            query.order_by(BettingRound.scored_at.desc(), BettingRound.id.desc())
            .limit(limit)
            .all()
        )

    @persistence_operation
    def get_users_by_ids(self, user_ids):
        if not user_ids:
            return {}
        users = User.query.filter(User.id.in_(list(user_ids))).all()
        return {user.id: user for user in users}

    # Writes

    def _insert_for_dialect(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(Bet)
        if dialect == "sqlite":
            return sqlite.insert(Bet)
        raise PersistenceError(f"Bet upsert is not supported on {dialect}")

    @persistence_operation
    def upsert_bets(self, rows):
        """
        Insert or overwrite bets keyed by (user_id, fixture_id) in one statement.
        Either every row lands or none does.
        """
        if not rows:
            return 0

        now = datetime.now(timezone.utc)
        values = [
            {
                "user_id": row["user_id"],
                "betting_round_id": row["betting_round_id"],
                "fixture_id": row["fixture_id"],
                "prediction": row["prediction"],
                "submitted_at": row.get("submitted_at", now),
                "created_at": now,
                "updated_at": now,
            }
            for row in rows
        ]

        stmt = self._insert_for_dialect().values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "fixture_id"],
            set_={
                "prediction": stmt.excluded.prediction,
                "submitted_at": stmt.excluded.submitted_at,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        self.session.execute(stmt)
        self.session.commit()
        return len(values)

    @persistence_operation
    def insert_bets(self, rows):
        """Plain batch insert; a conflicting row fails the whole batch"""
        if not rows:
            return 0
        self.session.execute(insert(Bet), list(rows))
        self.session.commit()
        return len(rows)

    @persistence_operation
    def save_fixture_results(self, fixtures):
        for fixture in fixtures:
            self.session.add(fixture)
        self.session.commit()

    @persistence_operation
    def refresh_kickoff_windows(self, competition_id):
        """Recompute the stored kickoff window of every open round; returns the changed ids"""
        changed = []
        open_rounds = BettingRound.query.filter_by(
            competition_id=competition_id, status=RoundStatus.OPEN.value
        ).order_by(BettingRound.id).all()
        for betting_round in open_rounds:
            before = (
                betting_round.earliest_fixture_kickoff,
                betting_round.latest_fixture_kickoff,
            )
            betting_round.update_kickoff_window()
            if before != (
                betting_round.earliest_fixture_kickoff,
                betting_round.latest_fixture_kickoff,
            ):
                changed.append(betting_round.id)
        self.session.commit()
        return changed

    @persistence_operation
    def transition_round_status(self, round_id, from_statuses, to_status, release=False):
        """
        Conditionally move a round to to_status. Returns False when the round
        was not in one of from_statuses, meaning another run got there first.
        release=True hands a scoring claim back to its previous status.
        """
        for from_status in from_statuses:
            if not is_allowed_transition(from_status, to_status, release=release):
                raise ValueError(
                    f"Round status cannot move from {RoundStatus(from_status).value} "
                    f"to {RoundStatus(to_status).value}"
                )

        values = {
            "status": RoundStatus(to_status).value,
            "updated_at": datetime.now(timezone.utc),
        }
        result = self.session.execute(
            update(BettingRound)
            .where(
                BettingRound.id == round_id,
                BettingRound.status.in_([RoundStatus(s).value for s in from_statuses]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount == 1

    @persistence_operation
    def save_round_scores(self, round_id, points_by_bet_id):
        """Write bet points and mark the round scored in one transaction"""
        for bet_id, points in points_by_bet_id.items():
            self.session.execute(
                update(Bet)
                .where(Bet.id == bet_id, Bet.points_awarded.is_(None))
                .values(points_awarded=points)
                .execution_options(synchronize_session=False)
            )

        now = datetime.now(timezone.utc)
        self.session.execute(
            update(BettingRound)
            .where(BettingRound.id == round_id)
            .values(status=RoundStatus.SCORED.value, scored_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return len(points_by_bet_id)

    @persistence_operation
    def get_season_winners(self, season_id):
        return (
            SeasonWinner.query.filter_by(season_id=season_id)
            .order_by(SeasonWinner.user_id)
            .all()
        )

    @persistence_operation
    def get_all_season_winners(self):
        return SeasonWinner.query.order_by(SeasonWinner.season_id).all()

    @persistence_operation
    def save_season_winners(self, season_id, rows):
        """Store the champions of a season and stamp the season as decided"""
        winners = [SeasonWinner(season_id=season_id, **row) for row in rows]
        self.session.add_all(winners)

        season = self.session.get(Season, season_id)
        season.winner_determined_at = datetime.now(timezone.utc)
        season.mark_complete()

        self.session.commit()
        return winners
