"""
Command-line interface for concern review management and operations.
"""

import click
import json
from typing import Optional

from concern_review.config import settings
from concern_review.database import build_repositories
from concern_review.database.connection import DatabaseConnection
from concern_review.database.migration_runner import MigrationRunner
from concern_review.database.models import ConcernStatus, ReviewerProfile, ReviewerRole
from concern_review.exceptions import ConcernReviewError
from concern_review.logging_config import setup_logging, get_logger
from concern_review.workflow import ReviewServices, build_services

setup_logging()
logger = get_logger(__name__)


def _services(ctx: click.Context) -> ReviewServices:
    if ctx.obj.get("services") is None:
        ctx.obj["services"] = build_services(build_repositories(ctx.obj.get("backend")))
    return ctx.obj["services"]


def _fail(error: ConcernReviewError) -> None:
    click.echo(f"✗ {error.message}", err=True)
    raise click.Abort()


@click.group()
@click.option(
    '--backend',
    type=click.Choice(['postgres', 'memory']),
    default=None,
    help='Storage backend (defaults to DB_BACKEND)'
)
@click.pass_context
def cli(ctx, backend):
    """Student Concern Review Command Line Interface"""
    ctx.ensure_object(dict)
    ctx.obj["backend"] = backend


@cli.group()
def db():
    """Database management commands"""
    pass


@db.command()
@click.option('--database-url', default=None, help='PostgreSQL URL (defaults to DB_* settings)')
def migrate(database_url):
    """Run database migrations"""
    click.echo("Running database migrations...")

    try:
        runner = MigrationRunner(database_url or settings.DATABASE_URL)
        applied = runner.run_migrations()
        click.echo(f"✓ Migrations completed successfully ({applied} applied)")
    except Exception as e:
        click.echo(f"✗ Migration failed: {str(e)}", err=True)
        raise click.Abort()


@db.command()
@click.option('--database-url', default=None, help='PostgreSQL URL (defaults to DB_* settings)')
def check(database_url):
    """Check database connectivity and pending migrations"""
    click.echo("Checking database connection...")

    url = database_url or settings.DATABASE_URL
    db_conn = DatabaseConnection(database_url=url, min_connections=1, max_connections=1)
    try:
        db_conn.initialize()
        if not db_conn.health_check():
            click.echo("✗ Database did not answer", err=True)
            raise click.Abort()
        click.echo("✓ Database connection successful")

        pending = MigrationRunner(url).pending_migrations()
        if pending:
            click.echo(f"! {len(pending)} pending migration(s):")
            for name in pending:
                click.echo(f"  - {name}")
        else:
            click.echo("✓ Schema is up to date")
    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"✗ Database connection failed: {str(e)}", err=True)
        raise click.Abort()
    finally:
        db_conn.close()


@cli.group()
def reviewers():
    """Reviewer directory commands"""
    pass


@reviewers.command("add")
@click.argument('reviewer_id')
@click.option('--name', 'display_name', required=True, help='Display name')
@click.option(
    '--role',
    type=click.Choice([r.value for r in ReviewerRole]),
    required=True,
    help='ssc (class level), usc (department level) or faculty'
)
@click.option('--email', default=None, help='Contact email')
@click.option('--parent', 'parent_id', default=None, help='Supervising reviewer identity')
@click.option('--partner', 'partner_id', default=None, help='Class-level partner identity')
@click.pass_context
def add_reviewer(ctx, reviewer_id, display_name, role, email, parent_id, partner_id):
    """Register a reviewer profile"""
    try:
        profile = _services(ctx).directory.register(
            ReviewerProfile(
                id=reviewer_id,
                display_name=display_name,
                email=email,
                role=ReviewerRole(role),
                parent_id=parent_id,
                partner_id=partner_id,
            )
        )
    except ConcernReviewError as e:
        _fail(e)

    click.echo(f"✓ Registered {profile.id} ({profile.role.value})")


@reviewers.command("list")
@click.option('--role', type=click.Choice([r.value for r in ReviewerRole]), default=None)
@click.pass_context
def list_reviewers(ctx, role):
    """List reviewer profiles"""
    profiles = _services(ctx).directory.list(ReviewerRole(role) if role else None)

    if not profiles:
        click.echo("No reviewers registered")
        return

    click.echo(f"\nReviewers ({len(profiles)}):")
    click.echo("-" * 80)
    for profile in profiles:
        click.echo(
            f"{profile.id:<20} {profile.role.value:<8} {profile.display_name:<24} "
            f"parent={profile.parent_id or '-'} partner={profile.partner_id or '-'}"
        )


@reviewers.command("pair")
@click.argument('reviewer_id')
@click.argument('partner_id')
@click.pass_context
def pair_reviewers(ctx, reviewer_id, partner_id):
    """Pair two class-level reviewers"""
    try:
        _services(ctx).directory.pair(reviewer_id, partner_id)
    except ConcernReviewError as e:
        _fail(e)

    click.echo(f"✓ Paired {reviewer_id} with {partner_id}")


@cli.group()
def concerns():
    """Concern inspection commands"""
    pass


@concerns.command("show")
@click.argument('reference')
@click.option('--json', 'as_json', is_flag=True, help='Print the tracking view as JSON')
@click.pass_context
def show_concern(ctx, reference, as_json):
    """Show the tracking view of a concern"""
    try:
        view = _services(ctx).store.track(reference)
    except ConcernReviewError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(view.model_dump(mode="json"), indent=2))
        return

    click.echo(f"\n{view.reference}: {view.subject}")
    click.echo("=" * 60)
    click.echo(f"Category: {view.category.value}")
    click.echo(f"Status:   {view.status.value}")
    if view.severity is not None:
        click.echo(f"Severity: {view.severity}/5")
    if view.final_resolution:
        click.echo(f"Resolution: {view.final_resolution}")
    click.echo("\nTimeline:")
    for entry in view.timeline:
        stamp = entry.created_at.isoformat() if entry.created_at else "-"
        click.echo(f"  {stamp}  {entry.title}")
        if entry.description:
            click.echo(f"      {entry.description}")


@concerns.command("stats")
@click.pass_context
def concern_stats(ctx):
    """Show concern counts by status"""
    counts = {status.value: 0 for status in ConcernStatus}
    for concern in _services(ctx).store.list():
        counts[concern.status.value] += 1

    click.echo("\nConcern Statistics")
    click.echo("=" * 40)
    for status, count in counts.items():
        click.echo(f"{status.capitalize():<12} {count}")
    click.echo(f"{'Total':<12} {sum(counts.values())}")


@concerns.command("overdue")
@click.option('--as', 'identity', required=True, help='Reviewer identity whose view to use')
@click.pass_context
def overdue_concerns(ctx, identity):
    """List pending concerns past their review deadline"""
    try:
        cards = _services(ctx).resolver.overdue(identity)
    except ConcernReviewError as e:
        _fail(e)

    if not cards:
        click.echo("✓ No overdue concerns")
        return

    click.echo(f"\nOverdue concerns ({len(cards)}):")
    for card in cards:
        concern = card.concern
        click.echo(f"  {concern.reference}  due {concern.review_deadline.isoformat()}  {concern.subject}")


@cli.command()
@click.option('--host', default=None, help='Bind host (defaults to API_HOST)')
@click.option('--port', default=None, type=int, help='Bind port (defaults to API_PORT)')
@click.option('--reload', is_flag=True, default=False, help='Reload on code changes')
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server"""
    from concern_review.main import run_api_server
    run_api_server(host=host, port=port, reload=reload or None)


if __name__ == '__main__':
    cli()
