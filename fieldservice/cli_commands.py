"""
Flask CLI commands.

Commands:
- flask init-db: Create all tables
- flask seed-catalog: Insert the default service catalog
- flask recalc-totals: Recompute stored document totals from their line items
- flask portal-link: Issue a client portal link
"""

import click
from sqlalchemy.exc import SQLAlchemyError

from fieldservice.database import create_all, db_session
from fieldservice.exceptions import FieldServiceError


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table that does not exist yet."""
        create_all()
        click.echo(click.style('✅ Database tables created.', fg='green'))

    @app.cli.command('seed-catalog')
    def seed_catalog_command():
        """Insert the default products and warranty upsells."""
        from fieldservice.services.catalog_service import seed_catalog

        try:
            added = seed_catalog(db_session)
        except SQLAlchemyError as e:
            click.echo(click.style(f'❌ Could not seed catalog: {e}', fg='red'))
            return
        click.echo(click.style(f'✅ {added} products added.', fg='green'))

    @app.cli.command('recalc-totals')
    def recalc_totals_command():
        """Recompute subtotal, tax and total for every estimate and invoice."""
        from fieldservice.services.document_service import recalculate_totals

        try:
            changed = recalculate_totals(db_session)
        except SQLAlchemyError as e:
            click.echo(click.style(f'❌ Could not recalculate totals: {e}', fg='red'))
            return
        click.echo(click.style(f'✅ {changed} documents updated.', fg='green'))

    @app.cli.command('portal-link')
    @click.argument('client_id')
    @click.option('--ttl-hours', type=int, default=None, help='Link lifetime in hours')
    def portal_link_command(client_id, ttl_hours):
        """Issue a portal link for a client and print it."""
        from fieldservice.services.portal_service import generate_portal_link

        try:
            link = generate_portal_link(db_session, client_id, ttl_hours=ttl_hours)
        except FieldServiceError as e:
            click.echo(click.style(f'❌ {e.message}', fg='red'))
            return
        click.echo(click.style('\n✅ Portal link issued', fg='green', bold=True))
        click.echo(f"   URL: {link['url']}")
        click.echo(f"   Expires: {link['expires_at']}")
