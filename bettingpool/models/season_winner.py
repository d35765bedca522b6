"""Season Winner Model - the hall of fame"""

from datetime import datetime, timezone

from bettingpool import db


class SeasonWinner(db.Model):
    """One row per champion of a season; tied champions all get a row"""

    __tablename__ = "season_winners"

    id = db.Column(db.Integer, primary_key=True)

    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    rank = db.Column(db.Integer, nullable=False, default=1)
    is_tied = db.Column(db.Boolean, default=False)

    # Stats at time of win
    total_points = db.Column(db.Integer, default=0)
    total_wins = db.Column(db.Integer, default=0)
    accuracy = db.Column(db.Float, default=0.0)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    season = db.relationship("Season", backref="winners")
    user = db.relationship("User", backref="season_wins")

    __table_args__ = (
        db.UniqueConstraint("season_id", "user_id", name="unique_season_winner"),
        db.Index("idx_winner_season", "season_id"),
        db.Index("idx_winner_user", "user_id"),
    )

    def __repr__(self):
        return f"<SeasonWinner season={self.season_id}: User {self.user_id}>"

    def to_dict(self):
        return {
            "id": self.id,
            "season_id": self.season_id,
            "season_name": self.season.name if self.season else None,
            "user_id": self.user_id,
            "user_name": self.user.display_name if self.user else None,
            "rank": self.rank,
            "is_tied": self.is_tied,
            "total_points": self.total_points,
            "total_wins": self.total_wins,
            "accuracy": self.accuracy,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
