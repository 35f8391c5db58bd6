# Overview: Flask CLI command groups for bootstrap, stock inspection and sales reporting.

# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask system seed-demo
#   Idempotent demo data: one store, one branch, a few products and a loyalty customer.
#
# Stock:
# - python -m flask stock alerts --branch-id 1
#   Out-of-stock / low-stock / reorder / expiry alerts for a branch.
# - python -m flask stock restore --product-id 3 --quantity 12 [--note "Recount"]
#   Manual stock correction (recorded as a RESTORE movement and a ledger event).
#   Operator-only: runs as the trusted shell user, so there is no identity,
#   role check or subscription gate. Use the HTTP endpoint for staff.
#
# Sales:
# - python -m flask sales stats --branch-id 1 [--start 2026-01-01 --end 2026-02-01]
#   Revenue, count, average and growth vs the prior period (default: today).

import click
from flask.cli import with_appcontext

from .errors import SaleEngineError
from .extensions import db
from .models import Branch, Customer, Product, Store
from .money import format_cents
from .services import reporting_service, stock_service
from .services.settings_service import load_branch_settings
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables for the current SQLALCHEMY_DATABASE_URI."""
    db.create_all()
    click.echo("PASS Tables created")


DEMO_PRODUCTS = [
    ("COF-250", "Ground Coffee 250g", 1250, 40),
    ("TEA-100", "Green Tea 100 bags", 899, 8),
    ("MLK-1L", "Whole Milk 1L", 249, 0),
    ("BRD-WHT", "White Bread", 399, 25),
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Seed a demo store for manual testing.

    Creates (if missing):
    - Store "Demo Store" (code DEMO)
    - Branch "Main" with 7.5% tax, loyalty on, cash/card/mobile_money
    - Four products, one of them out of stock
    - Customer "Walk-in Regular"
    """
    store = db.session.query(Store).filter_by(code="DEMO").first()
    if not store:
        store = Store(name="Demo Store", code="DEMO")
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created store: {store.name} (ID: {store.id})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    branch = db.session.query(Branch).filter_by(store_id=store.id, name="Main").first()
    if not branch:
        branch = Branch(
            store_id=store.id,
            name="Main",
            code="MAIN",
            default_tax_rate_bps=750,
            loyalty_program=True,
            max_discount_percent=20,
        )
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    for sku, name, price, stock in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(branch_id=branch.id, sku=sku).first():
            click.echo(f"WARN  Product '{sku}' already exists, skipping...")
            continue
        db.session.add(Product(branch_id=branch.id, sku=sku, name=name, price_cents=price, stock_on_hand=stock))
        click.echo(f"PASS Created product: {sku} {name} @ {format_cents(price)} x{stock}")
    db.session.commit()

    if not db.session.query(Customer).filter_by(store_id=store.id, email="regular@example.com").first():
        db.session.add(Customer(store_id=store.id, branch_id=branch.id, name="Walk-in Regular", email="regular@example.com"))
        db.session.commit()
        click.echo("PASS Created customer: Walk-in Regular")

    click.echo("\nDONE Demo data ready")
    click.echo(f"   Identity headers: X-User-Id: 1, X-User-Role: manager, X-Branch-Access: {branch.id}")


@click.group('stock')
def stock_group():
    """Stock inspection and correction commands."""


@stock_group.command('alerts')
@click.option('--branch-id', type=int, required=True, help='Branch ID')
@with_appcontext
def stock_alerts(branch_id):
    """List stock alerts for a branch, most severe first."""
    try:
        settings = load_branch_settings(branch_id)
    except SaleEngineError as e:
        raise click.ClickException(e.message)

    alerts = stock_service.low_stock_alerts(branch_id, settings)
    if not alerts:
        click.echo("PASS No stock alerts")
        return

    click.echo(f"\n{'SEVERITY':<9} {'TYPE':<14} {'STOCK':>6}  PRODUCT")
    click.echo("-" * 60)
    for alert in alerts:
        click.echo(f"{alert.severity:<9} {alert.alert_type:<14} {alert.current_stock:>6}  {alert.message}")
    click.echo(f"\nTotal: {len(alerts)} alert(s)")


@stock_group.command('restore')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--quantity', type=int, required=True, help='Units to add back')
@click.option('--note', default=None, help='Reason for the correction')
@with_appcontext
def stock_restore(product_id, quantity, note):
    """
    Add units back to a product's stock.

    Operator tool: bypasses identity, roles and the subscription gate. The
    movement is recorded without an actor and noted as a CLI correction.
    """
    try:
        product = stock_service.get_product(product_id)
        product = stock_service.manual_restore(
            branch_id=product.branch_id,
            product_id=product.id,
            quantity=quantity,
            note=note or "CLI correction",
        )
    except SaleEngineError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS {product.name}: stock now {product.stock_on_hand}")


@click.group('sales')
def sales_group():
    """Sales reporting commands."""


@sales_group.command('stats')
@click.option('--branch-id', type=int, required=True, help='Branch ID')
@click.option('--start', default=None, help='Window start (ISO-8601, inclusive)')
@click.option('--end', default=None, help='Window end (ISO-8601, exclusive)')
@with_appcontext
def sales_stats(branch_id, start, end):
    """Revenue, transaction count and growth for a branch."""
    try:
        load_branch_settings(branch_id)
        stats = reporting_service.get_sale_stats(branch_id, parse_iso_datetime(start), parse_iso_datetime(end))
    except ValueError as e:
        raise click.ClickException(f"Invalid date: {e}")
    except SaleEngineError as e:
        raise click.ClickException(e.message)

    click.echo(f"Window:        {stats['start']} .. {stats['end']}")
    click.echo(f"Revenue:       {format_cents(stats['revenue_cents'])}")
    click.echo(f"Transactions:  {stats['transaction_count']}")
    click.echo(f"Average sale:  {format_cents(stats['avg_sale_cents'])}")
    click.echo(f"Refunded:      {format_cents(stats['refunded_cents'])}")
    click.echo(f"Growth:        {stats['growth_vs_prior_period']:+.2f}% vs prior period")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(sales_group)
