# Overview: Flask CLI command groups for bootstrap, scheduled batch jobs, and ledger maintenance.

# backend/valuation/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to the factory (PowerShell: $env:FLASK_APP="valuation:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (dev only; use `flask db upgrade` for migrated databases).
# - python -m flask system seed-demo
#   Create a demo store and products with some stock and sales history.
#
# Batch jobs (cron):
# - python -m flask batch profitability [--store-id 1] [--period-days 30] [--workers 4]
#   Recompute profitability snapshots per store. Exit code 1 if any store failed.
# - python -m flask batch runs [--store-id 1] [--limit 20]
#   List recent batch runs.
#
# Ledger maintenance:
# - python -m flask ledger reconcile --store-id 1 [--product-id 7]
#   Replay movements against inventory records; mismatches are frozen.
# - python -m flask ledger unfreeze --store-id 1 --product-id 7 [--resync]
#   Release a frozen record after manual reconciliation.

import click
from datetime import timedelta
from decimal import Decimal
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Store
from .services import batch_service, ledger_service
from .services.inventory_service import record_removal, record_restock, set_stock_levels
from .services.sales_service import post_refund, post_sale
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables for the current models."""
    db.create_all()
    click.echo("PASS Tables created")


@system_group.command('seed-demo')
@click.option('--store-code', default='MAIN', help='Demo store code')
@with_appcontext
def seed_demo(store_code):
    """
    Create a demo store with three products and ~3 weeks of history.

    Idempotent on the store: if a store with --store-code exists, nothing
    is created.
    """
    if db.session.query(Store).filter_by(code=store_code).first():
        click.echo(f"WARN  Store '{store_code}' already exists, skipping...")
        return

    store = Store(name="Main Store", code=store_code, is_active=True)
    db.session.add(store)
    demo_products = [
        ("DEMO-001", "Cold Brew 12oz", "4.50", "1.80"),
        ("DEMO-002", "Trail Mix 200g", "6.00", "2.75"),
        ("DEMO-003", "Sparkling Water 1L", "2.25", "0.90"),
    ]
    products = []
    for sku, name, price, cost in demo_products:
        product = db.session.query(Product).filter_by(sku=sku).first()
        if product is None:
            product = Product(sku=sku, name=name, sale_price=Decimal(price), cost=Decimal(cost), is_active=True)
            db.session.add(product)
        products.append(product)
    db.session.commit()
    click.echo(f"PASS Created store: {store.name} (ID: {store.id})")

    start = utcnow() - timedelta(days=21)
    for product in products:
        record_restock(
            store_id=store.id,
            product_id=product.id,
            quantity=120,
            unit_cost=product.cost,
            source="seed",
            occurred_at=start,
        )
        set_stock_levels(store_id=store.id, product_id=product.id, min_stock_level=10, max_stock_level=150)

    for day in range(20):
        when = start + timedelta(days=day + 1)
        lines = [
            {"product_id": products[0].id, "quantity": 3 + day % 3},
            {"product_id": products[1].id, "quantity": 1 + day % 2},
        ]
        txn = post_sale(store.id, lines, occurred_at=when)
        if day % 7 == 3:
            post_refund(txn.id, [{"original_item_id": txn.items[0].id, "quantity": 1}], occurred_at=when)

    record_removal(
        store_id=store.id,
        product_id=products[2].id,
        quantity=4,
        reason="damaged",
        occurred_at=start + timedelta(days=10),
    )
    click.echo(f"PASS Seeded {len(products)} products with sales, refunds and a write-off")


@click.group('batch')
def batch_group():
    """Scheduled batch jobs."""


@batch_group.command('profitability')
@click.option('--store-id', type=int, default=None, help='Only this store (default: all active)')
@click.option('--period-days', type=int, default=None, help='Trailing window in days')
@click.option('--workers', type=int, default=None, help='Max parallel stores')
@click.option('--timeout', 'timeout_seconds', type=int, default=None, help='Per-store timeout in seconds')
@with_appcontext
def run_profitability(store_id, period_days, workers, timeout_seconds):
    """Recompute profitability snapshots."""
    results = batch_service.run_profitability_batch(
        store_ids=[store_id] if store_id else None,
        period_days=period_days,
        max_workers=workers,
        timeout_seconds=timeout_seconds,
    )
    if not results:
        click.echo("WARN  No stores to process")
        return

    for r in results:
        if r.ok:
            click.echo(f"PASS store {r.store_id}: run {r.run_id}, {r.snapshots_written} snapshots")
        else:
            click.echo(f"FAIL store {r.store_id}: {r.error}")

    if any(not r.ok for r in results):
        raise SystemExit(1)


@batch_group.command('runs')
@click.option('--store-id', type=int, default=None)
@click.option('--status', default=None, help='pending, running, completed or failed')
@click.option('--limit', type=int, default=20)
@with_appcontext
def list_runs(store_id, status, limit):
    """List recent batch runs."""
    runs = batch_service.list_batch_runs(store_id, status=status, limit=limit)
    if not runs:
        click.echo("No batch runs found")
        return

    click.echo(f"{'ID':<6} {'Store':<6} {'Status':<10} {'Snapshots':<10} {'Started':<20} Error")
    click.echo("-" * 80)
    for run in runs:
        started = run.started_at.strftime('%Y-%m-%d %H:%M:%S') if run.started_at else '-'
        click.echo(
            f"{run.id:<6} {run.store_id:<6} {run.status:<10} {run.snapshots_written:<10} {started:<20} {run.error_message or ''}"
        )


@click.group('ledger')
def ledger_group():
    """Stock movement ledger maintenance."""


@ledger_group.command('reconcile')
@click.option('--store-id', type=int, required=True)
@click.option('--product-id', type=int, default=None, help='Only this product')
@with_appcontext
def reconcile(store_id, product_id):
    """Replay movements and compare with inventory records."""
    if product_id is not None:
        try:
            result = ledger_service.reconcile(store_id, product_id)
        except ledger_service.InconsistentLedgerError as e:
            click.echo(f"FAIL product {product_id}: {e} (record frozen)")
            raise SystemExit(1)
        click.echo(f"PASS product {product_id}: quantity {result.recorded_quantity}")
        return

    results = ledger_service.reconcile_store(store_id)
    bad = [r for r in results if not r.is_consistent]
    for r in bad:
        click.echo(f"FAIL product {r.product_id}: {r.describe()} (record frozen)")
    click.echo(f"{len(results) - len(bad)} of {len(results)} records consistent")
    if bad:
        raise SystemExit(1)


@ledger_group.command('unfreeze')
@click.option('--store-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--resync', is_flag=True, help='Reset quantity to the replayed ledger quantity')
@with_appcontext
def unfreeze(store_id, product_id, resync):
    """Release a frozen inventory record."""
    try:
        record = ledger_service.unfreeze_record(store_id, product_id, resync_quantity=resync)
    except (ValueError, ledger_service.InconsistentLedgerError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS store {store_id} product {product_id} unfrozen (quantity {record.quantity})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(batch_group)
    app.cli.add_command(ledger_group)
