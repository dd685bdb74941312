# Overview: Flask CLI command groups for setup, catalog upkeep, segmentation and reports.

# backend/tillbook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to tillbook (PowerShell: $env:FLASK_APP="tillbook").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog list [--category Books]
# - python -m flask catalog add --name "Pen" --category Office --price-cents 250 --cost-cents 90 --stock 100
# - python -m flask catalog set-price 3 --price-cents 300 [--cost-cents 100]
# - python -m flask catalog restock 3 --quantity 50
#
# Segmentation:
# - python -m flask segments recompute [--as-of 2026-01-31] [--strict]
#   Full RFM recompute. --strict exits non-zero when customers were skipped.
# - python -m flask segments cancel
#   Stop a run in progress (API, CLI or Celery worker) before its next customer.
# - python -m flask segments metrics
#   Print recency/frequency/monetary per customer without writing labels.
#
# Reports:
# - python -m flask reports profitability [--granularity month|quarter|year] [--start ...] [--end ...]

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import catalog_service, reporting_service
from .services.errors import PartialBatchFailure, TillbookError
from .services.scheduler import AlreadyRunning, run_segmentation, segmentation_flight
from .services.segmentation_service import classify, compute_metrics
from .time_utils import parse_iso_datetime
from .validation import enforce_rules_product


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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


@click.group('catalog')
def catalog_group():
    """Catalog inspection and upkeep."""


@catalog_group.command('list')
@click.option('--category', default=None, help='Only this category')
@with_appcontext
def list_products(category):
    products = catalog_service.list_products(category=category)
    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "=" * 88)
    click.echo(f"{'ID':<5} {'Name':<30} {'Category':<16} {'Price':>10} {'Cost':>10} {'Stock':>8} {'Active':>6}")
    click.echo("=" * 88)
    for p in products:
        cost = f"{p.cost_cents / 100:.2f}" if p.cost_cents is not None else "-"
        click.echo(
            f"{p.id:<5} {p.name[:30]:<30} {(p.category or '-')[:16]:<16} "
            f"{p.price_cents / 100:>10.2f} {cost:>10} {p.stock:>8} {'yes' if p.is_active else 'no':>6}"
        )
    click.echo("=" * 88 + "\n")


@catalog_group.command('add')
@click.option('--name', required=True)
@click.option('--category', default=None)
@click.option('--sku', default=None)
@click.option('--price-cents', type=int, required=True)
@click.option('--cost-cents', type=int, default=None)
@click.option('--stock', type=int, default=0)
@with_appcontext
def add_product(name, category, sku, price_cents, cost_cents, stock):
    patch = {
        "name": name,
        "category": category,
        "sku": sku,
        "price_cents": price_cents,
        "cost_cents": cost_cents,
        "stock": stock,
    }
    try:
        enforce_rules_product(patch)
        product = catalog_service.create_product(patch=patch)
    except TillbookError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created product: {product.name} (ID: {product.id})")


@catalog_group.command('set-price')
@click.argument('product_id', type=int)
@click.option('--price-cents', type=int, required=True)
@click.option('--cost-cents', type=int, default=None)
@with_appcontext
def set_price(product_id, price_cents, cost_cents):
    """Change current price (and cost). Sold lines keep their frozen values."""
    patch = {"price_cents": price_cents}
    if cost_cents is not None:
        patch["cost_cents"] = cost_cents
    try:
        enforce_rules_product(patch)
        product = catalog_service.update_product(product_id, patch=patch)
    except TillbookError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS {product.name}: price {product.price_cents} cents, cost {product.cost_cents} cents")


@catalog_group.command('restock')
@click.argument('product_id', type=int)
@click.option('--quantity', type=int, required=True)
@with_appcontext
def restock(product_id, quantity):
    try:
        product = catalog_service.restock(product_id, quantity)
    except TillbookError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS {product.name}: stock now {product.stock}")


@click.group('segments')
def segments_group():
    """Customer RFM segmentation."""


def _parse_as_of(as_of):
    try:
        return parse_iso_datetime(as_of)
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 date or datetime", param_hint="--as-of")


@segments_group.command('recompute')
@click.option('--as-of', default=None, help='Reference time for recency (ISO-8601, default now)')
@click.option('--strict', is_flag=True, help='Exit non-zero when any customer was skipped')
@with_appcontext
def recompute(as_of, strict):
    try:
        summary = run_segmentation(as_of=_parse_as_of(as_of))
    except AlreadyRunning as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS {summary.succeeded} customer(s) classified, {summary.changed} changed")
    for skipped in summary.skipped:
        click.echo(f"WARN customer {skipped.customer_id} skipped: {skipped.reason}")

    if strict:
        try:
            summary.raise_for_partial()
        except PartialBatchFailure as e:
            raise click.ClickException(str(e))


@segments_group.command('cancel')
@with_appcontext
def cancel():
    """Stop a running recompute in any process; labels already written stay."""
    if segmentation_flight.cancel():
        click.echo("PASS Segmentation run cancelled")
    else:
        click.echo("No segmentation run in progress.")

@segments_group.command('metrics')
@click.option('--as-of', default=None, help='Reference time for recency (ISO-8601, default now)')
@with_appcontext
def metrics(as_of):
    rows = compute_metrics(as_of=_parse_as_of(as_of))
    if not rows:
        click.echo("No customers with Paid orders.")
        return

    click.echo(f"{'Customer':<10} {'Recency':>8} {'Frequency':>10} {'Monetary':>12}  Segment")
    for m in rows:
        click.echo(
            f"{m.customer_id:<10} {m.recency_days:>8} {m.frequency:>10} "
            f"{m.monetary_cents / 100:>12.2f}  {classify(m)}"
        )


@click.group('reports')
def reports_group():
    """Read-only reports."""


@reports_group.command('profitability')
@click.option('--granularity', type=click.Choice(list(reporting_service.GRANULARITIES)), default='month')
@click.option('--start', default=None)
@click.option('--end', default=None)
@with_appcontext
def profitability(granularity, start, end):
    try:
        rows = list(reporting_service.profitability_rollup(granularity, start=start, end=end))
    except TillbookError as e:
        raise click.ClickException(str(e))

    if not rows:
        click.echo("No Paid orders in range.")
        return

    for row in rows:
        if row.month:
            period = f"{row.year}-{row.month:02d} {row.month_name}"
        elif row.quarter:
            period = f"{row.year}-Q{row.quarter}"
        else:
            period = str(row.year)
        click.echo(
            f"{period:<20} {row.category[:20]:<20} "
            f"{row.gross_revenue_cents / 100:>12.2f} {row.net_margin_cents / 100:>12.2f} {row.margin_percent:>8}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(segments_group)
    app.cli.add_command(reports_group)
