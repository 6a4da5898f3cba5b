# Overview: Flask CLI command groups for bootstrap, analytics maintenance, and export.

# backend/storepos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` when running with migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed [--tax-rate 12]
#   Store settings plus a small demo catalog. Idempotent (matches on SKU).
#
# Analytics:
# - python -m flask analytics refresh
#   Recompute the 30/7/1 day dashboard windows (dropped if one is running).
# - python -m flask analytics show --period 30 [--cashier-id c1]
#   Print a snapshot as JSON.
#
# Transactions:
# - python -m flask transactions export --out sales.csv [--status all] [--start 2026-10-01] [--end 2026-10-19]
#   Write the flattened (transaction, line) CSV export.

import json
from decimal import Decimal

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db, DISPATCHER_KEY
from .models import Product
from .money_utils import to_cents
from .services import export_service, settings_service, transaction_service
from .validation import PosError


DEMO_PRODUCTS = (
    # sku, name, category, price, stock, min_stock, discountable, vat_exemptable
    ("BEV-001", "Bottled Water 500ml", "Beverages", "15.00", 200, 24, False, False),
    ("BEV-002", "Orange Juice 1L", "Beverages", "89.50", 60, 10, False, False),
    ("MED-001", "Paracetamol 500mg (10s)", "Medicine", "45.00", 150, 20, True, True),
    ("MED-002", "Vitamin C 500mg (30s)", "Medicine", "220.00", 80, 10, True, True),
    ("GRO-001", "Rice 5kg", "Groceries", "285.00", 40, 5, True, False),
    ("SNK-001", "Crackers Family Pack", "Snacks", "62.75", 120, 15, False, False),
)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables for the current models."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' to add demo data.")


@system_group.command('seed')
@click.option('--store-name', default='Main Store', help='Store name')
@click.option('--tax-rate', default=None, type=float, help='VAT rate in percent (defaults to DEFAULT_VAT_RATE)')
@with_appcontext
def seed(store_name, tax_rate):
    """Store settings and demo products (existing SKUs are left untouched)."""
    if tax_rate is None:
        tax_rate = current_app.config.get("DEFAULT_VAT_RATE", 12)
    settings = settings_service.update_settings(store_name=store_name, tax_rate=tax_rate, updated_by="cli")
    click.echo(f"PASS Store settings: {settings.store_name} (VAT {tax_rate}%)")

    created = 0
    for sku, name, category, price, stock, min_stock, discountable, exemptable in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(sku=sku).first():
            continue
        db.session.add(Product(
            sku=sku,
            name=name,
            category=category,
            price_cents=to_cents(Decimal(price)),
            stock=stock,
            min_stock=min_stock,
            status="active",
            is_discountable=discountable,
            is_vat_exemptable=exemptable,
        ))
        created += 1
    db.session.commit()
    click.echo(f"PASS Seeded {created} demo products ({len(DEMO_PRODUCTS) - created} already present).")


@click.group('analytics')
def analytics_group():
    """Analytics cache maintenance."""


@analytics_group.command('refresh')
@with_appcontext
def refresh_analytics():
    """Recompute the common dashboard windows now."""
    dispatcher = current_app.extensions[DISPATCHER_KEY]
    if dispatcher.refresh_all():
        click.echo("PASS Analytics refreshed.")
    else:
        click.echo("SKIP Refresh already running or failed (see logs).")


@analytics_group.command('show')
@click.option('--period', default=30, type=click.IntRange(1, 366), help='Window length in days')
@click.option('--cashier-id', default=None, help='Cashier scope (store-wide when omitted)')
@with_appcontext
def show_analytics(period, cashier_id):
    """Print a dashboard or cashier snapshot as JSON."""
    dispatcher = current_app.extensions[DISPATCHER_KEY]
    if cashier_id:
        snapshot = dispatcher.get_cashier_analytics(cashier_id, period)
    else:
        snapshot = dispatcher.get_dashboard_analytics(period)
    click.echo(json.dumps(snapshot, indent=2, default=str))


@click.group('transactions')
def transactions_group():
    """Transaction export."""


@transactions_group.command('export')
@click.option('--out', 'out_path', required=True, type=click.Path(dir_okay=False, writable=True))
@click.option('--status', default='all', type=click.Choice(['all', 'completed', 'refunded']))
@click.option('--start', 'start_date', default=None, help='ISO date/datetime (inclusive)')
@click.option('--end', 'end_date', default=None, help='ISO date/datetime (inclusive)')
@click.option('--cashier-id', default=None)
@click.option('--delimiter', default=',', show_default=True)
@with_appcontext
def export_transactions(out_path, status, start_date, end_date, cashier_id, delimiter):
    """Write the flattened (transaction, line) export to a file."""
    try:
        filters = transaction_service.parse_transaction_filters({
            "status": status,
            "start_date": start_date,
            "end_date": end_date,
            "cashier_id": cashier_id,
        })
    except PosError as e:
        raise click.BadParameter(str(e))

    rows = export_service.get_export_rows(filters)
    with open(out_path, "w", encoding="utf-8", newline="") as fh:
        fh.write(export_service.rows_to_csv(rows, delimiter=delimiter))
    click.echo(f"PASS Exported {len(rows)} rows to {out_path}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(analytics_group)
    app.cli.add_command(transactions_group)
