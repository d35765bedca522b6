from datetime import datetime, timezone
from enum import Enum

from bettingpool import db


class RoundStatus(str, Enum):
    """Round lifecycle states, a stable wire contract"""

    OPEN = "open"
    CLOSED = "closed"
    SCORING = "scoring"
    SCORED = "scored"


# Forward-only transitions; scored is terminal
ALLOWED_TRANSITIONS = {
    RoundStatus.OPEN: {RoundStatus.CLOSED, RoundStatus.SCORING},
    RoundStatus.CLOSED: {RoundStatus.SCORING},
    RoundStatus.SCORING: {RoundStatus.SCORED},
    RoundStatus.SCORED: set(),
}

# A failed scoring run hands its claim back
RELEASE_TRANSITIONS = {
    RoundStatus.SCORING: {RoundStatus.OPEN, RoundStatus.CLOSED},
}


def is_allowed_transition(from_status, to_status, release=False):
    table = RELEASE_TRANSITIONS if release else ALLOWED_TRANSITIONS
    return RoundStatus(to_status) in table.get(RoundStatus(from_status), set())


class BettingRound(db.Model):
    __tablename__ = "betting_rounds"

    id = db.Column(db.Integer, primary_key=True)

    competition_id = db.Column(
        db.Integer, db.ForeignKey("competitions.id"), nullable=False
    )
    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=True)
    name = db.Column(db.String(100), nullable=False)  # e.g., "Round 7"

    status = db.Column(db.String(20), nullable=False, default=RoundStatus.OPEN.value)

    # Deadline window, derived from the fixtures of the round
    earliest_fixture_kickoff = db.Column(db.DateTime)
    latest_fixture_kickoff = db.Column(db.DateTime)

    scored_at = db.Column(db.DateTime)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    fixtures = db.relationship("Fixture", backref="betting_round", lazy="dynamic")
    bets = db.relationship(
        "Bet", backref="betting_round", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.Index("idx_round_competition_status", "competition_id", "status"),
        db.Index("idx_round_scored_at", "scored_at"),
        db.CheckConstraint(
            "status IN ('open', 'closed', 'scoring', 'scored')",
            name="valid_round_status",
        ),
    )

    def __repr__(self):
        return f"<BettingRound {self.id} {self.name} ({self.status})>"

    @property
    def is_scored(self):
        return self.status == RoundStatus.SCORED.value

    def update_kickoff_window(self):
        """Recompute earliest/latest kickoff from the fixtures of the round"""
        kickoffs = [f.kickoff for f in self.fixtures if f.kickoff is not None]
        self.earliest_fixture_kickoff = min(kickoffs) if kickoffs else None
        self.latest_fixture_kickoff = max(kickoffs) if kickoffs else None

    def to_dict(self, include_fixtures=False):
        data = {
            "id": self.id,
            "competition_id": self.competition_id,
            "season_id": self.season_id,
            "name": self.name,
            "status": self.status,
            "earliest_fixture_kickoff": (
                self.earliest_fixture_kickoff.isoformat()
                if self.earliest_fixture_kickoff
                else None
            ),
            "latest_fixture_kickoff": (
                self.latest_fixture_kickoff.isoformat()
                if self.latest_fixture_kickoff
                else None
            ),
            "scored_at": self.scored_at.isoformat() if self.scored_at else None,
        }

        if include_fixtures:
            data["fixtures"] = [
                fixture.to_dict() for fixture in self.fixtures.order_by("kickoff")
            ]

        return data
