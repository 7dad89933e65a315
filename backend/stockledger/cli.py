# Overview: Flask CLI command groups for bootstrap, stock inspection and lot maintenance.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to stockledger (PowerShell: $env:FLASK_APP="stockledger").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create a demo tenant with a shop, a depot and two products.
#
# Stock inspection:
# - python -m flask stock level --location-id 1 --product-id 2
#   Show the current level of a product at a location.
# - python -m flask stock low --location-id 1
#   List products at or below their minimum stock.
# - python -m flask stock verify [--tenant-id 1]
#   Replay the ledger and compare with the projection and lots (exit 1 on drift).
#
# Lot maintenance:
# - python -m flask batches expire [--as-of 2026-01-31]
#   Persist EXPIRED on lots past their expiration date.
# - python -m flask batches list --tenant-id 1 --location-id 1 [--product-id 2] [--status ACTIVE]
#   List the lots of a location in FEFO order.
# - python -m flask batches expiring --tenant-id 1 [--location-id 1] [--days 30]
#   List lots expiring within the window.
# - python -m flask batches recall --batch-id 5 --actor-id 1 [--reason "Supplier recall"]
#   Write off the remaining quantity of a lot and mark it RECALLED.

import click
from flask.cli import with_appcontext

from .errors import StockLedgerError
from .extensions import db
from .models.stock import BATCH_STATUSES
from .models.tenancy import LOCATION_KIND_DEPOT, LOCATION_KIND_SHOP
from .services import batch_service, catalog_service, ledger_service, stock_service
from .time_utils import parse_iso_date, today


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (existing tables are left untouched)."""
    db.create_all()
    click.echo("OK Database schema ready")


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
    click.echo("CREATE  Recreating schema...")
    db.create_all()
    click.echo("OK Database reset complete")


@system_group.command('seed-demo')
@click.option('--name', default='Demo Pharmacy', help='Tenant name')
@with_appcontext
def seed_demo(name):
    """Create a demo tenant with a shop, a depot and two products."""
    tenant = catalog_service.create_tenant(name=name)
    shop = catalog_service.create_location(tenant_id=tenant.id, name="Main Shop", code="SHOP", kind=LOCATION_KIND_SHOP)
    depot = catalog_service.create_location(tenant_id=tenant.id, name="Depot", code="DEPOT", kind=LOCATION_KIND_DEPOT)
    catalog_service.create_product(tenant_id=tenant.id, code="PARA-500", name="Paracetamol 500mg", minimum_stock=20)
    catalog_service.create_product(
        tenant_id=tenant.id,
        code="BAG-01",
        name="Paper bag",
        track_batches=False,
    )
    click.echo(f"OK Tenant {tenant.id} with locations {shop.id} (shop) and {depot.id} (depot)")


@click.group('stock')
def stock_group():
    """Stock projection inspection."""


@stock_group.command('level')
@click.option('--location-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--variant-id', type=int, default=None)
@with_appcontext
def stock_level(location_id, product_id, variant_id):
    """Show the current level of a product at a location."""
    try:
        view = stock_service.get_stock_level(location_id, product_id, variant_id)
    except StockLedgerError as exc:
        raise click.ClickException(exc.message)
    click.echo(
        f"quantity={view.quantity} reserved={view.reserved_quantity} available={view.available_quantity}"
    )


@stock_group.command('low')
@click.option('--location-id', type=int, required=True)
@with_appcontext
def stock_low(location_id):
    """List products at or below their minimum stock."""
    try:
        rows = stock_service.list_low_stock(location_id)
    except StockLedgerError as exc:
        raise click.ClickException(exc.message)
    if not rows:
        click.echo("No products below minimum stock")
        return
    for row in rows:
        click.echo(f"{row['code']:<16} {row['quantity']:>6} / min {row['minimum_stock']}")


@stock_group.command('verify')
@click.option('--tenant-id', type=int, default=None)
@with_appcontext
def stock_verify(tenant_id):
    """Replay the ledger and compare with the projection and lots."""
    reports = ledger_service.verify_all(tenant_id)
    bad = [r for r in reports if not r.ok]
    for report in bad:
        key = report.key
        click.echo(
            f"MISMATCH location={key.location_id} product={key.product_id} variant={key.variant_id} "
            f"projected={report.projected_quantity} replayed={report.replayed_quantity} "
            f"batches={report.batch_quantity} chain_ok={report.chain_ok}"
        )
    click.echo(f"Checked {len(reports)} stock levels, {len(bad)} mismatches")
    if bad:
        raise SystemExit(1)


@click.group('batches')
def batches_group():
    """Lot (batch) maintenance."""


@batches_group.command('expire')
@click.option('--as-of', default=None, help='Business date (YYYY-MM-DD), default today')
@click.option('--tenant-id', type=int, default=None)
@with_appcontext
def batches_expire(as_of, tenant_id):
    """Persist EXPIRED on lots past their expiration date."""
    try:
        as_of_date = parse_iso_date(as_of) or today()
    except ValueError:
        raise click.BadParameter("--as-of must be YYYY-MM-DD")
    count = batch_service.expire_batches(as_of=as_of_date, tenant_id=tenant_id)
    click.echo(f"OK {count} batches marked EXPIRED")


@batches_group.command('list')
@click.option('--tenant-id', type=int, required=True)
@click.option('--location-id', type=int, required=True)
@click.option('--product-id', type=int, default=None)
@click.option('--status', 'statuses', multiple=True, type=click.Choice(sorted(BATCH_STATUSES)))
@with_appcontext
def batches_list(tenant_id, location_id, product_id, statuses):
    """List the lots of a location in FEFO order."""
    try:
        rows = batch_service.list_batches(
            tenant_id=tenant_id,
            location_id=location_id,
            product_id=product_id,
            statuses=list(statuses) or None,
        )
    except StockLedgerError as exc:
        raise click.ClickException(exc.message)
    for batch in rows:
        expires = batch.expiration_date.isoformat() if batch.expiration_date else "-"
        click.echo(
            f"{batch.batch_number:<24} product={batch.product_id} status={batch.status} "
            f"expires={expires} available={batch.available_quantity}/{batch.quantity} "
            f"[{batch_service.expiration_status(batch)}]"
        )
    click.echo(f"{len(rows)} batches")


@batches_group.command('expiring')
@click.option('--tenant-id', type=int, required=True)
@click.option('--location-id', type=int, default=None)
@click.option('--days', type=int, default=None, help='Window in days (default EXPIRY_WARNING_DAYS)')
@with_appcontext
def batches_expiring(tenant_id, location_id, days):
    """List lots expiring within the window."""
    try:
        rows = batch_service.list_expiring_batches(tenant_id=tenant_id, location_id=location_id, within_days=days)
    except StockLedgerError as exc:
        raise click.ClickException(exc.message)
    for batch in rows:
        click.echo(
            f"{batch.batch_number:<24} product={batch.product_id} location={batch.location_id} "
            f"expires={batch.expiration_date.isoformat()} available={batch.available_quantity} "
            f"[{batch_service.expiration_status(batch)}]"
        )
    click.echo(f"{len(rows)} batches")


@batches_group.command('recall')
@click.option('--batch-id', type=int, required=True)
@click.option('--actor-id', type=int, required=True)
@click.option('--reason', default=None)
@with_appcontext
def batches_recall(batch_id, actor_id, reason):
    """Write off the remaining quantity of a lot and mark it RECALLED."""
    try:
        result = ledger_service.recall_batch(batch_id=batch_id, actor_id=actor_id, reason=reason)
    except StockLedgerError as exc:
        raise click.ClickException(exc.message)
    written_off = -result.delta if result is not None else 0
    click.echo(f"OK Batch {batch_id} recalled, {written_off} units written off")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(batches_group)
