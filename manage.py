"""Management script for database setup and maintenance jobs"""

import click
from dotenv import load_dotenv
from flask.cli import FlaskGroup

load_dotenv()

from subscription_service import create_app  # noqa: E402
from subscription_service.extensions import db  # noqa: E402
from subscription_service.services.plan_service import seed_default_plans  # noqa: E402
from subscription_service.services.subscription_service import SubscriptionService  # noqa: E402

cli = FlaskGroup(create_app=lambda: create_app())


@cli.command("init-db")
def init_db():
    """Create all tables"""
    db.create_all()
    click.echo("Database initialized")


@cli.command("drop-db")
@click.confirmation_option(prompt="Drop all tables?")
def drop_db():
    """Drop all database tables"""
    db.drop_all()
    click.echo("Database dropped")


@cli.command("seed-plans")
def seed_plans():
    """Insert the default subscription plans"""
    created = seed_default_plans()
    click.echo(f"Seeded {len(created)} plans")


@cli.command("expire-subscriptions")
def expire_subscriptions():
    """Reconcile or expire ACTIVE subscriptions past their end date"""
    stats = SubscriptionService.expire_overdue_subscriptions()
    click.echo(
        f"Checked {stats['checked']}: {stats['expired']} expired, "
        f"{stats['renewed']} renewed, {stats['failed']} failed"
    )


@cli.command("cleanup-pending")
@click.option("--max-age-hours", type=int, default=None, help="Override PENDING_SUBSCRIPTION_MAX_AGE_HOURS")
def cleanup_pending(max_age_hours):
    """Cancel PENDING subscriptions that were never paid"""
    result = SubscriptionService.cleanup_stale_pending_subscriptions(max_age_hours=max_age_hours)
    click.echo(f"Cancelled {result['cancelled']} stale pending subscriptions")


if __name__ == "__main__":
    cli()
