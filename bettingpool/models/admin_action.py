from datetime import datetime, timezone

from bettingpool import db


class AdminAction(db.Model):
    """Audit trail for scoring, retroactive points and season closing"""

    __tablename__ = "admin_actions"

    SCORE_ROUND = "score_round"
    APPLY_RETROACTIVE_POINTS = "apply_retroactive_points"
    BULK_RETROACTIVE_POINTS = "bulk_retroactive_points"
    DETERMINE_SEASON_WINNERS = "determine_season_winners"

    id = db.Column(db.Integer, primary_key=True)
    action_type = db.Column(db.String(50), nullable=False)
    action_description = db.Column(db.String(500), nullable=False)

    # admin_user_id is null for CLI runs
    admin_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    target_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    betting_round_id = db.Column(
        db.Integer, db.ForeignKey("betting_rounds.id"), nullable=True
    )
    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=True)

    action_metadata = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    admin_user = db.relationship("User", foreign_keys=[admin_user_id])
    target_user = db.relationship("User", foreign_keys=[target_user_id])

    __table_args__ = (
        db.Index("idx_admin_action_admin", "admin_user_id"),
        db.Index("idx_admin_action_type", "action_type"),
        db.Index("idx_admin_action_created", "created_at"),
    )

    def __repr__(self):
        return f"<AdminAction {self.action_type} by {self.admin_user_id or 'cli'}>"

    @staticmethod
    def log_action(
        action_type,
        description,
        admin_user_id=None,
        target_user_id=None,
        betting_round_id=None,
        season_id=None,
        action_metadata=None,
    ):
        """Record an admin action; the caller commits"""
        action = AdminAction(
            admin_user_id=admin_user_id,
            target_user_id=target_user_id,
            action_type=action_type,
            action_description=description[:500],
            betting_round_id=betting_round_id,
            season_id=season_id,
            action_metadata=action_metadata or {},
        )

        db.session.add(action)
        return action
