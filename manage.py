#!/usr/bin/env python3
"""
Prophecy League Management CLI

This script provides command-line management functionality for the Prophecy League application.
"""

import logging

import click
from flask.cli import with_appcontext
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from prophecy import create_app, db
from prophecy.models import Fixture, Prediction, User
from prophecy.services.settlement import get_settlement_engine
from prophecy.utils.timezone_utils import parse_kickoff

# Settlement commands run in this process; the web app owns the schedule
app = create_app(start_scheduler=False)


@click.group()
def cli():
    """Prophecy League Management CLI"""
    pass


# Fixture Commands
@cli.group()
def fixture():
    """Fixture management commands"""
    pass


@fixture.command("add")
@click.argument("external_id")
@click.argument("gameweek", type=int)
@click.argument("home_team")
@click.argument("away_team")
@click.argument("kickoff")
@click.option(
    "--derby/--no-derby",
    default=None,
    help="Override the configured derby pairs",
)
@with_appcontext
def add_fixture(external_id, gameweek, home_team, away_team, kickoff, derby):
    """Add a fixture (KICKOFF is ISO 8601, e.g. 2024-08-16T19:00:00+00:00)"""
    try:
        kickoff_time = parse_kickoff(kickoff)
        new_fixture = Fixture.create_fixture(
            external_id, gameweek, home_team, away_team, kickoff_time, is_derby=derby
        )
        db.session.commit()

        derby_note = " (derby)" if new_fixture.is_derby else ""
        click.echo(
            f"✅ Added GW{gameweek}: {home_team} v {away_team}{derby_note} "
            f"at {kickoff_time.isoformat()}"
        )

    except ValueError as e:
        db.session.rollback()
        click.echo(f"❌ Invalid fixture: {str(e)}")
    except IntegrityError as e:
        db.session.rollback()
        click.echo(f"❌ Fixture {external_id} already exists or is invalid!")
        logging.error(f"Fixture creation failed - integrity error: {e}")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error adding fixture: {str(e)}")
        logging.error(f"Fixture creation failed - SQL error: {e}")


@fixture.command("list")
@click.option("--gameweek", type=int, help="Only list this gameweek")
@with_appcontext
def list_fixtures(gameweek):
    """List fixtures"""
    if gameweek:
        fixtures = Fixture.get_for_gameweek(gameweek)
    else:
        fixtures = Fixture.query.order_by(Fixture.gameweek, Fixture.kickoff_time).all()

    if not fixtures:
        click.echo("No fixtures found.")
        return

    for f in fixtures:
        score = f"{f.home_score}-{f.away_score}" if f.has_result else "v"
        derby = " 🔥" if f.is_derby else ""
        click.echo(
            f"  [{f.id}] GW{f.gameweek} {f.kickoff_utc:%Y-%m-%d %H:%M} "
            f"{f.home_team} {score} {f.away_team}{derby} ({f.status})"
        )


# Settlement Commands
@cli.group()
def settle():
    """Settlement commands"""
    pass


@settle.command("run")
@with_appcontext
def run_settlement():
    """Fetch finished results and recompute all scores"""
    click.echo("Running settlement...")
    result = get_settlement_engine().run_settlement()

    if result.success:
        click.echo(f"✅ {result.message}")
    else:
        click.echo(f"❌ {result.message}")


@settle.command("recompute")
@with_appcontext
def recompute():
    """Recompute all user scores without contacting the result provider"""
    try:
        users = get_settlement_engine().recompute_all()
        click.echo(f"✅ Recomputed scores for {users} users")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error recomputing scores: {str(e)}")
        logging.error(f"Recompute failed - SQL error: {e}")


@settle.command("correct")
@click.argument("fixture_id", type=int)
@click.argument("home_score", type=click.IntRange(min=0))
@click.argument("away_score", type=click.IntRange(min=0))
@with_appcontext
def correct(fixture_id, home_score, away_score):
    """Overwrite a fixture result and recompute all scores"""
    target = db.session.get(Fixture, fixture_id)
    if not target:
        click.echo(f"❌ Fixture {fixture_id} not found!")
        return

    result = get_settlement_engine().correct_result(target, home_score, away_score)

    if result.success:
        click.echo(f"✅ {result.message}")
    else:
        click.echo(f"❌ {result.message}")


# User Management Commands
@cli.group()
def user():
    """User management commands"""
    pass


@user.command("create")
@click.argument("name")
@click.argument("email")
@click.argument("password")
@click.option("--admin", is_flag=True, help="Grant admin privileges")
@with_appcontext
def create_user(name, email, password, admin):
    """Create a user"""
    try:
        email = email.strip().lower()
        if User.query.filter_by(email=email).first():
            click.echo(f"❌ User with email '{email}' already exists!")
            return

        new_user = User(name=name, email=email, is_active=True, is_admin=admin)
        new_user.set_password(password)

        db.session.add(new_user)
        db.session.commit()

        role = "admin user" if admin else "user"
        click.echo(f"✅ Created {role} '{name}' ({email})")

    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Error creating user: {str(e)}")


@user.command("list")
@with_appcontext
def list_users():
    """List all users"""
    users = User.query.order_by(User.total_score.desc(), User.name).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("Users:")
    for u in users:
        status = "🟢" if u.is_active else "🔴"
        admin = " [admin]" if u.is_admin else ""
        joker = f" joker=fixture {u.joker_fixture_id}" if u.joker_fixture_id else ""
        click.echo(f"  {status} {u.name} ({u.email}){admin} - {u.total_score} pts{joker}")


# Database Commands
@cli.group()
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command()
@with_appcontext
def init_db():
    """Initialize database tables"""
    try:
        db.create_all()
        click.echo("✅ Database tables created successfully!")
    except SQLAlchemyError as e:
        click.echo(f"❌ Error initializing database: {str(e)}")


@db_cmd.command()
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
    click.echo("⚽ Prophecy League Application Status")
    click.echo("=" * 40)

    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except SQLAlchemyError as e:
        click.echo(f"❌ Database: Error - {str(e)}")
        return

    total = Fixture.query.count()
    scored = Fixture.query.filter(Fixture.home_score.isnot(None)).count()
    pending = len(Fixture.needing_results())
    click.echo(f"⚽ Fixtures: {scored}/{total} scored, {pending} awaiting results")

    click.echo(f"👥 Users: {User.query.filter_by(is_active=True).count()} active")
    click.echo(f"📝 Predictions: {Prediction.query.count()}")

    scheduler = "enabled" if app.config.get("SCHEDULER_ENABLED") else "disabled"
    click.echo(f"⏰ Scheduler: {scheduler}")


if __name__ == "__main__":
    with app.app_context():
        cli()
