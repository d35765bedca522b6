from datetime import datetime, timezone

from bettingpool import db
from bettingpool.exceptions import ValidationError


class Prediction:
    """1/X/2 outcome codes shared by bets and fixture results"""

    HOME = "1"
    DRAW = "X"
    AWAY = "2"

    VALUES = (HOME, DRAW, AWAY)

    @staticmethod
    def normalize(value):
        """Return the canonical outcome code, or None if the value is not one"""
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            value = str(value)
        if not isinstance(value, str):
            return None
        value = value.strip().upper()
        return value if value in Prediction.VALUES else None


class Fixture(db.Model):
    __tablename__ = "fixtures"

    id = db.Column(db.Integer, primary_key=True)

    # Null until the fixture is grouped into a round
    betting_round_id = db.Column(
        db.Integer, db.ForeignKey("betting_rounds.id"), nullable=True
    )
    external_id = db.Column(db.String(50), unique=True, nullable=True)  # Feed match id

    home_team = db.Column(db.String(100), nullable=False)
    away_team = db.Column(db.String(100), nullable=False)
    kickoff = db.Column(db.DateTime, nullable=False)

    # Game status
    status_short = db.Column(db.String(10), default="NS")  # NS, LIVE, FT, PST...
    home_goals = db.Column(db.Integer)
    away_goals = db.Column(db.Integer)
    result = db.Column(db.String(1))  # 1, X or 2 once played

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    bets = db.relationship("Bet", backref="fixture", lazy="dynamic")

    __table_args__ = (
        db.Index("idx_fixture_round", "betting_round_id"),
        db.Index("idx_fixture_kickoff", "kickoff"),
    )

    def __repr__(self):
        return f"<Fixture {self.home_team} vs {self.away_team}>"

    @staticmethod
    def result_from_goals(home_goals, away_goals):
        """Derive the 1/X/2 outcome from a final score"""
        if home_goals is None or away_goals is None:
            return None
        if home_goals > away_goals:
            return Prediction.HOME
        if home_goals < away_goals:
            return Prediction.AWAY
        return Prediction.DRAW

    def record_result(self, result=None, home_goals=None, away_goals=None):
        """
        Store the final outcome. A recorded result never changes: recording the
        same outcome again is a no-op, a different one raises ValidationError.
        """
        if result is None:
            result = Fixture.result_from_goals(home_goals, away_goals)
        else:
            result = Prediction.normalize(result)

        if result is None:
            raise ValidationError(
                f"Invalid result for fixture {self.id}",
                {"fixture_id": self.id},
            )

        if self.result is not None:
            if self.result != result:
                raise ValidationError(
                    f"Fixture {self.id} already has result {self.result}",
                    {"fixture_id": self.id, "result": self.result},
                )
            return False

        self.result = result
        if home_goals is not None and away_goals is not None:
            self.home_goals = home_goals
            self.away_goals = away_goals
        self.status_short = "FT"
        return True

    def to_dict(self):
        return {
            "id": self.id,
            "betting_round_id": self.betting_round_id,
            "external_id": self.external_id,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "kickoff": self.kickoff.isoformat() if self.kickoff else None,
            "status_short": self.status_short,
            "home_goals": self.home_goals,
            "away_goals": self.away_goals,
            "result": self.result,
        }
