# Overview: Flask CLI command groups for local setup and payment reconciliation.

# backend/maltiti/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (local development; use flask db upgrade elsewhere).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Payment reconciliation:
# - python -m flask orders reconcile SALE-<sale id>-<uuid>
#   Verify a Paystack reference and mark its sale paid (idempotent).
# - python -m flask orders refund-webhook SALE-<sale id>-<uuid>
#   Mark the sale of a refunded Paystack reference as refunded (idempotent).
# - python -m flask orders show <sale id>
#   Print a sale with its line items and statuses.

import json

import click
from flask.cli import with_appcontext

from .errors import OrderError
from .extensions import db
from .services import payment_reconciler, sale_service


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

    click.echo("PASS Database reset complete.")


@click.group('orders')
def orders_group():
    """Order inspection and payment reconciliation commands."""


@orders_group.command('reconcile')
@click.argument('reference')
@with_appcontext
def reconcile(reference):
    """
    Run the charge.success path by hand for one payment reference.

    Useful when a webhook was lost: the gateway is asked to verify the
    reference before anything changes.
    """
    try:
        result = payment_reconciler.mark_paid(reference)
    except OrderError as e:
        raise click.ClickException(f"{e.code}: {e.message}")
    click.echo(f"{'PASS' if result.changed else 'SKIP'} {result.status} (sale {result.sale_id or '-'})")


@orders_group.command('refund-webhook')
@click.argument('reference')
@with_appcontext
def refund_webhook(reference):
    """Run the refund.processed path by hand for one payment reference."""
    result = payment_reconciler.mark_refunded(reference)
    click.echo(f"{'PASS' if result.changed else 'SKIP'} {result.status} (sale {result.sale_id or '-'})")


@orders_group.command('show')
@click.argument('sale_id')
@with_appcontext
def show_sale(sale_id):
    try:
        sale = sale_service.get_sale(sale_id)
    except OrderError as e:
        raise click.ClickException(e.message)
    click.echo(json.dumps(sale.to_dict(), indent=2, default=str))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orders_group)
