from datetime import datetime, timezone

from bettingpool import db


class Competition(db.Model):
    __tablename__ = "competitions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    country_name = db.Column(db.String(100))
    external_code = db.Column(db.String(20), index=True)  # e.g. "PL" on football-data.org

    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    seasons = db.relationship(
        "Season", backref="competition", lazy="dynamic", cascade="all, delete-orphan"
    )
    betting_rounds = db.relationship("BettingRound", backref="competition", lazy="dynamic")

    def __repr__(self):
        return f"<Competition {self.name}>"

    @staticmethod
    def get_current():
        """Get the active competition (most recently created one wins)"""
        return (
            Competition.query.filter_by(is_active=True)
            .order_by(Competition.created_at.desc(), Competition.id.desc())
            .first()
        )
