from datetime import datetime, timezone

from bettingpool import db


class Bet(db.Model):
    __tablename__ = "bets"

    id = db.Column(db.Integer, primary_key=True)

    # Bet identification
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    betting_round_id = db.Column(
        db.Integer, db.ForeignKey("betting_rounds.id"), nullable=False
    )
    fixture_id = db.Column(db.Integer, db.ForeignKey("fixtures.id"), nullable=False)

    prediction = db.Column(db.String(1), nullable=False)  # 1, X or 2

    # Null until the round is scored
    points_awarded = db.Column(db.Integer, nullable=True)

    # Timestamps
    submitted_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Constraints and indexes
    __table_args__ = (
        db.UniqueConstraint("user_id", "fixture_id", name="unique_user_fixture_bet"),
        db.Index("idx_bet_round_user", "betting_round_id", "user_id"),
        db.Index("idx_bet_fixture", "fixture_id"),
        db.CheckConstraint("prediction IN ('1', 'X', '2')", name="valid_prediction"),
    )

    def __repr__(self):
        return f"<Bet user_id={self.user_id} fixture_id={self.fixture_id} prediction={self.prediction}>"

    @property
    def is_scored(self):
        return self.points_awarded is not None

    @property
    def is_correct(self):
        if self.points_awarded is None:
            return None
        return self.points_awarded > 0

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "betting_round_id": self.betting_round_id,
            "fixture_id": self.fixture_id,
            "prediction": self.prediction,
            "points_awarded": self.points_awarded,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
        }
