#!/usr/bin/env python3
"""
Betting Pool Management CLI

Command-line entry points for the jobs cron runs (closing and scoring rounds,
results sync, retroactive points) and for day-to-day administration.
"""

import logging

import click
from flask.cli import with_appcontext
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from bettingpool import create_app, db
from bettingpool.exceptions import BettingPoolError
from bettingpool.models import (
    AdminAction,
    BettingRound,
    Competition,
    Fixture,
    Season,
    User,
)
from bettingpool.services import (
    RetroactivePointsService,
    RoundLockGuard,
    RoundScoringService,
    SQLAlchemyGateway,
    StandingsService,
)
from bettingpool.utils.cache_utils import invalidate_standings
from bettingpool.utils.results_sync import ResultsSync
from bettingpool.utils.timezone_utils import ensure_utc, format_kickoff

app = create_app()


def _competition_id(competition_id):
    if competition_id is not None:
        return competition_id
    competition = Competition.get_current()
    if competition is None:
        raise click.ClickException("No active competition")
    return competition.id


@click.group()
def cli():
    """Betting Pool Management CLI"""
    pass


# Round Commands
@cli.group()
def rounds():
    """Round lifecycle commands"""
    pass


@rounds.command("close")
@click.argument("round_id", type=int)
@with_appcontext
def close_round(round_id):
    """Close a round whose first fixture has kicked off"""
    try:
        closed = RoundScoringService(SQLAlchemyGateway()).close_round(round_id)
        if closed:
            click.echo(f"✅ Closed round {round_id}")
        else:
            click.echo(f"⚠️  Round {round_id} was not closed (still open for betting or not open)")
    except BettingPoolError as e:
        click.echo(f"❌ Error closing round {round_id}: {e.message}")
        logging.error(f"Closing round {round_id} failed: {e}")


@rounds.command("score")
@click.argument("round_id", type=int)
@click.option(
    "--result",
    "results",
    multiple=True,
    help="Fixture result as FIXTURE_ID=1|X|2 or FIXTURE_ID=HOME-AWAY",
)
@with_appcontext
def score_round(round_id, results):
    """Score a round, optionally recording results first"""
    parsed = {}
    for item in results:
        try:
            fixture_id, value = item.split("=", 1)
            if "-" in value:
                home, away = value.split("-", 1)
                parsed[int(fixture_id)] = (int(home), int(away))
            else:
                parsed[int(fixture_id)] = value
        except ValueError:
            raise click.BadParameter(f"Invalid result '{item}'", param_hint="--result")

    gateway = SQLAlchemyGateway()
    try:
        result = RoundScoringService(gateway).score_round(round_id, parsed or None)
    except BettingPoolError as e:
        click.echo(f"❌ Error scoring round {round_id}: {e.message}")
        logging.error(f"Scoring round {round_id} failed: {e}")
        return

    if result.skipped:
        click.echo(f"⚠️  Round {round_id} is already {result.status}, skipped")
    elif result.deferred:
        click.echo(
            f"⏳ Round {round_id} deferred, fixtures without result: {result.missing_results}"
        )
    else:
        AdminAction.log_action(
            AdminAction.SCORE_ROUND,
            f"Scored round {round_id} from CLI: {result.bets_scored} bets",
            betting_round_id=round_id,
            action_metadata=result.to_dict(),
        )
        db.session.commit()
        invalidate_standings(gateway.get_round(round_id).competition_id)
        click.echo(f"✅ Scored round {round_id}: {result.bets_scored} bets")


@rounds.command("score-ready")
@click.option("--competition-id", type=int, help="Defaults to the current competition")
@with_appcontext
def score_ready(competition_id):
    """Close locked rounds and score every round with complete results"""
    competition_id = _competition_id(competition_id)
    summary = RoundScoringService(SQLAlchemyGateway()).score_ready_rounds(competition_id)

    if summary["scored"]:
        invalidate_standings(competition_id)

    click.echo(f"✅ Closed: {summary['closed'] or 'none'}")
    click.echo(f"✅ Scored: {summary['scored'] or 'none'}")
    click.echo(f"⏳ Deferred: {summary['deferred'] or 'none'}")
    for error in summary["errors"]:
        click.echo(f"❌ Round {error['round_id']}: {error['error']}")


@rounds.command("refresh-window")
@click.option("--competition-id", type=int, help="Defaults to the current competition")
@with_appcontext
def refresh_window(competition_id):
    """Recompute the kickoff window of open rounds after fixtures moved"""
    competition_id = _competition_id(competition_id)
    try:
        changed = SQLAlchemyGateway().refresh_kickoff_windows(competition_id)
    except BettingPoolError as e:
        click.echo(f"❌ {e.message}")
        return
    click.echo(f"✅ Updated kickoff windows: {changed or 'none'}")


@rounds.command("status")
@click.option("--competition-id", type=int, help="Defaults to the current competition")
@with_appcontext
def rounds_status(competition_id):
    """List rounds with their status"""
    competition_id = _competition_id(competition_id)
    betting_rounds = (
        BettingRound.query.filter_by(competition_id=competition_id)
        .order_by(BettingRound.id)
        .all()
    )

    if not betting_rounds:
        click.echo("No rounds found.")
        return

    guard = RoundLockGuard(SQLAlchemyGateway())
    icons = {"open": "🟢", "closed": "🔒", "scoring": "⏳", "scored": "✅"}
    click.echo("Rounds:")
    for r in betting_rounds:
        fixture_count = r.fixtures.count()
        with_result = r.fixtures.filter(Fixture.result.isnot(None)).count()
        click.echo(
            f"  {icons.get(r.status, '?')} {r.id}: {r.name} [{r.status}] "
            f"- {with_result}/{fixture_count} results, "
            f"locks {format_kickoff(guard.earliest_kickoff(r))}"
        )


# Retroactive Points Commands
@cli.group()
def points():
    """Retroactive points for late joiners"""
    pass


@points.command("retroactive")
@click.argument("user_id", type=int)
@click.option("--competition-id", type=int, help="Defaults to the current competition")
@click.option("--from-round", "from_round_id", type=int, help="Ignore earlier rounds")
@click.option("--dry-run", is_flag=True, help="Show what would be awarded")
@with_appcontext
def retroactive(user_id, competition_id, from_round_id, dry_run):
    """Award missed-round points to one user"""
    competition_id = _competition_id(competition_id)
    try:
        result = RetroactivePointsService(SQLAlchemyGateway()).apply_retroactive_points(
            user_id, competition_id, from_round_id=from_round_id, dry_run=dry_run
        )
    except BettingPoolError as e:
        click.echo(f"❌ {e.message}")
        return

    prefix = "🔍 [dry run]" if dry_run else "✅"
    for breakdown in result.rounds:
        click.echo(
            f"  {breakdown.round_name}: {breakdown.points_awarded} points "
            f"(minimum {breakdown.minimum_participant_score} "
            f"of {breakdown.participant_count} participants)"
        )
    click.echo(
        f"{prefix} User {user_id}: {result.total_points_awarded} points "
        f"over {result.rounds_processed} rounds"
    )
    for error in result.errors:
        click.echo(f"❌ Round {error['round_id']}: {error['error']}")

    if not dry_run and result.rounds_processed:
        AdminAction.log_action(
            AdminAction.APPLY_RETROACTIVE_POINTS,
            f"Retroactive points for user {user_id} from CLI",
            target_user_id=user_id,
            action_metadata={
                "competition_id": competition_id,
                "total_points_awarded": result.total_points_awarded,
            },
        )
        db.session.commit()
        invalidate_standings(competition_id)


@points.command("bulk")
@click.option(
    "--after",
    "created_after",
    required=True,
    type=click.DateTime(formats=["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S"]),
    help="Process users created at or after this date (UTC)",
)
@click.option("--competition-id", type=int, help="Defaults to the current competition")
@click.option("--from-round", "from_round_id", type=int, help="Ignore earlier rounds")
@click.option("--dry-run", is_flag=True, help="Show what would be awarded")
@with_appcontext
def bulk(created_after, competition_id, from_round_id, dry_run):
    """Award missed-round points to every user created after a date"""
    competition_id = _competition_id(competition_id)
    try:
        result = RetroactivePointsService(SQLAlchemyGateway()).apply_for_new_users(
            ensure_utc(created_after),
            competition_id,
            from_round_id=from_round_id,
            dry_run=dry_run,
        )
    except BettingPoolError as e:
        click.echo(f"❌ {e.message}")
        return

    prefix = "🔍 [dry run]" if dry_run else "✅"
    click.echo(
        f"{prefix} {result.total_users_processed} users, "
        f"{result.total_rounds_processed} rounds, {result.total_points_awarded} points"
    )
    for error in result.errors:
        click.echo(f"❌ {error}")

    if not dry_run and result.total_rounds_processed:
        AdminAction.log_action(
            AdminAction.BULK_RETROACTIVE_POINTS,
            f"Bulk retroactive points from CLI for users after {created_after:%Y-%m-%d}",
            action_metadata={
                "competition_id": competition_id,
                "total_users_processed": result.total_users_processed,
                "total_points_awarded": result.total_points_awarded,
            },
        )
        db.session.commit()
        invalidate_standings(competition_id)


# Season Commands
@cli.group()
def season():
    """Season commands"""
    pass


@season.command("winners")
@click.argument("season_id", type=int)
@with_appcontext
def season_winners(season_id):
    """Store the champions of a finished season"""
    try:
        winners = StandingsService(SQLAlchemyGateway()).determine_season_winners(
            season_id
        )
    except BettingPoolError as e:
        click.echo(f"❌ {e.message}")
        return

    if not winners:
        click.echo(f"⚠️  No winners for season {season_id}")
        return

    AdminAction.log_action(
        AdminAction.DETERMINE_SEASON_WINNERS,
        f"Determined winners for season {season_id} from CLI",
        season_id=season_id,
        action_metadata={"winner_user_ids": [w.user_id for w in winners]},
    )
    db.session.commit()
    invalidate_standings()

    for w in winners:
        tied = " (tied)" if w.is_tied else ""
        click.echo(f"🏆 {w.user.display_name}: {w.total_points} points{tied}")


# Data Sync Commands
@cli.group()
def sync():
    """Results feed commands"""
    pass


@sync.command("results")
@click.option("--competition-id", type=int, help="Defaults to the current competition")
@with_appcontext
def sync_results(competition_id):
    """Fetch finished fixtures and score completed rounds"""
    gateway = SQLAlchemyGateway()
    competition = gateway.get_competition(_competition_id(competition_id))
    if competition is None:
        raise click.ClickException(f"Competition {competition_id} not found")

    syncer = ResultsSync(gateway, RoundScoringService(gateway))
    success, outcome = syncer.sync_results(competition)
    if not success:
        click.echo(f"❌ Results sync failed: {outcome}")
        return

    if outcome["rounds_scored"]:
        invalidate_standings(competition.id)

    click.echo(
        f"✅ {outcome['matches_fetched']} matches fetched, "
        f"{outcome['fixtures_matched']} fixtures matched"
    )
    click.echo(f"✅ Scored rounds: {outcome['rounds_scored'] or 'none'}")
    for error in outcome["errors"]:
        click.echo(f"❌ {error}")


# User Commands
@cli.group()
def user():
    """User management commands"""
    pass


@user.command("create-admin")
@click.argument("email")
@click.argument("password")
@click.option("--full-name", help="Full name")
@with_appcontext
def create_admin(email, password, full_name=None):
    """Create an admin user"""
    if User.query.filter_by(email=email.lower()).first():
        click.echo(f"❌ User with email '{email}' already exists!")
        return

    try:
        admin = User(email=email.lower(), full_name=full_name, is_admin=True)
        admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
        click.echo(f"✅ Created admin user {email}")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Error creating user: {str(e)}")
        logging.error(f"Admin creation failed: {e}")


# Database Commands
@cli.group()
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command("init")
@with_appcontext
def init_db():
    """Initialize database tables"""
    try:
        db.create_all()
        click.echo("✅ Database tables created successfully!")
    except SQLAlchemyError as e:
        click.echo(f"❌ Error initializing database: {str(e)}")


@db_cmd.command("reset")
@with_appcontext
def reset():
    """⚠️  DANGER: Drop and recreate all tables"""
    if not click.confirm("This will DELETE ALL DATA. Are you sure?"):
        click.echo("Cancelled.")
        return

    try:
        db.drop_all()
        db.create_all()
        click.echo("✅ Database reset successfully!")
    except SQLAlchemyError as e:
        click.echo(f"❌ Error resetting database: {str(e)}")


@cli.command()
@with_appcontext
def status():
    """Show application status"""
    click.echo("⚽ Betting Pool Status")
    click.echo("=" * 40)

    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except SQLAlchemyError as e:
        click.echo(f"❌ Database: Error - {str(e)}")
        return

    competition = Competition.get_current()
    if competition:
        click.echo(f"✅ Current Competition: {competition.name}")
        current_season = Season.get_current_season(competition.id)
        if current_season:
            click.echo(f"📅 Current Season: {current_season.name}")
        for round_status in ("open", "closed", "scoring", "scored"):
            count = BettingRound.query.filter_by(
                competition_id=competition.id, status=round_status
            ).count()
            click.echo(f"   {round_status}: {count} rounds")
    else:
        click.echo("⚠️  Current Competition: None active")

    user_count = User.query.filter_by(is_active=True).count()
    click.echo(f"👥 Active Users: {user_count}")


if __name__ == "__main__":
    with app.app_context():
        cli()
