from datetime import datetime, timezone

from bettingpool import db


class Season(db.Model):
    __tablename__ = "seasons"

    id = db.Column(db.Integer, primary_key=True)
    competition_id = db.Column(
        db.Integer, db.ForeignKey("competitions.id"), nullable=False
    )
    name = db.Column(db.String(50), nullable=False)  # e.g., "Premier League 2025/26"
    api_season_year = db.Column(db.Integer, nullable=False)

    # Season dates
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)

    # Status
    is_current = db.Column(db.Boolean, default=False)
    completed_at = db.Column(db.DateTime)
    winner_determined_at = db.Column(db.DateTime)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    betting_rounds = db.relationship("BettingRound", backref="season", lazy="dynamic")

    __table_args__ = (
        db.UniqueConstraint(
            "competition_id", "api_season_year", name="unique_competition_season_year"
        ),
        db.Index("idx_season_current", "is_current"),
    )

    def __repr__(self):
        return f"<Season {self.name}>"

    @staticmethod
    def get_current_season(competition_id):
        """Get the current season of a competition"""
        return Season.query.filter_by(
            competition_id=competition_id, is_current=True
        ).first()

    def mark_complete(self):
        """Mark the season as finished; winners are determined separately"""
        if self.completed_at is None:
            self.completed_at = datetime.now(timezone.utc)
            self.is_current = False
