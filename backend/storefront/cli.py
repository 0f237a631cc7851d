# Overview: Flask CLI command groups for bootstrap, store inspection, and maintenance sweeps.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Store inspection/bootstrap:
# - python -m flask stores list
#   List all stores with currency, tax rate and active status.
# - python -m flask stores create --name "Acme Books" --slug acme-books --tax-rate-bps 825
#   Create a store.
#
# Maintenance (schedule these, e.g. nightly):
# - python -m flask maintenance purge-carts [--grace-days 0]
#   Delete carts past their expiry.
# - python -m flask maintenance cleanup-download-links [--grace-days 0]
#   Delete download links past their expiry.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Order, Product
from .services import maintenance_service, store_service
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask stores create' to add a store.")


@click.group('stores')
def stores_group():
    """Store registry commands."""


@stores_group.command('list')
@with_appcontext
def list_stores_cli():
    """List all stores."""
    stores = store_service.list_stores()

    if not stores:
        click.echo("No stores found.")
        return

    click.echo("\n" + "="*88)
    click.echo(f"{'ID':<5} {'Name':<28} {'Slug':<22} {'Cur':<5} {'Tax bps':<8} {'Active':<7} {'Products':<9} {'Orders'}")
    click.echo("="*88)

    for store in stores:
        product_count = db.session.query(Product).filter_by(store_id=store.id).count()
        order_count = db.session.query(Order).filter_by(store_id=store.id).count()
        active_str = "Yes" if store.is_active else "No"
        click.echo(
            f"{store.id:<5} {store.name[:28]:<28} {store.slug[:22]:<22} {store.currency:<5} "
            f"{store.tax_rate_bps:<8} {active_str:<7} {product_count:<9} {order_count}"
        )

    click.echo("="*88 + "\n")


@stores_group.command('create')
@click.option('--name', required=True, help='Store name')
@click.option('--slug', required=True, help='URL slug (unique)')
@click.option('--currency', default=None, help='ISO currency code (defaults to DEFAULT_CURRENCY)')
@click.option('--tax-rate-bps', type=int, default=0, show_default=True, help='Flat tax rate in basis points')
@click.option('--no-shipping', is_flag=True, help='Store sells without shipping')
@with_appcontext
def create_store_cli(name, slug, currency, tax_rate_bps, no_shipping):
    """Create a new store."""
    try:
        store = store_service.create_store(
            name,
            slug,
            currency=currency or current_app.config.get("DEFAULT_CURRENCY"),
            tax_rate_bps=tax_rate_bps,
            shipping_enabled=not no_shipping,
        )
    except (ValidationError, ConflictError) as exc:
        click.echo(f"FAIL {exc}")
        return

    click.echo(f"PASS Created store: {store.name} (ID: {store.id}, Slug: {store.slug})")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('purge-carts')
@click.option('--grace-days', type=int, default=0, show_default=True)
@with_appcontext
def purge_carts_cli(grace_days):
    """Delete carts whose expiry passed more than grace-days ago."""
    deleted = maintenance_service.purge_expired_carts(grace_days=grace_days)
    click.echo(f"Deleted {deleted} expired carts.")


@maintenance_group.command('cleanup-download-links')
@click.option('--grace-days', type=int, default=0, show_default=True)
@with_appcontext
def cleanup_download_links_cli(grace_days):
    """Delete download links whose expiry passed more than grace-days ago."""
    deleted = maintenance_service.cleanup_download_links(grace_days=grace_days)
    click.echo(f"Deleted {deleted} expired download links.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(maintenance_group)
