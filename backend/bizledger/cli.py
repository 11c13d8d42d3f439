# Overview: Flask CLI command groups for ledger maintenance, invoice sweeps, and bootstrap.

# backend/bizledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to bizledger (PowerShell: $env:FLASK_APP="bizledger").
# - Use: python -m flask <group> <command> [options]
#
# Ledger repair/inspection:
# - python -m flask ledger rebuild [--account cash]
#   Replay running balances from zero for one account (default: all). Idempotent.
# - python -m flask ledger verify
#   Report chain breaks per account without modifying anything.
#
# Invoices:
# - python -m flask invoices refresh-overdue
#   Recompute status for open past-due invoices (stores 'overdue').
#
# System bootstrap:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed
#   Create a small demo catalogue, parties and invoices.

import click
from decimal import Decimal
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .models.ledger import ACCOUNTS
from .services import invoice_service, ledger_service, party_service, stock_service

SEED_ACTOR = "system"


@click.group('ledger')
def ledger_group():
    """Account transaction ledger maintenance."""


@ledger_group.command('rebuild')
@click.option('--account', type=click.Choice(ACCOUNTS), default=None, help='Only this account')
@with_appcontext
def rebuild_ledger(account):
    """Rewrite balanceBefore/balanceAfter by replaying each account from zero."""
    if account:
        results = [ledger_service.rebuild_account_chain(account)]
    else:
        results = ledger_service.rebuild_all_chains()

    for result in results:
        click.echo(
            f"{result['account']:<14} entries={result['transactions']:<6} "
            f"repaired={result['repaired']:<6} balance={result['finalBalance']:.2f}"
        )


@ledger_group.command('verify')
@with_appcontext
def verify_ledger():
    """Check every account chain; exits non-zero when a break is found."""
    broken = 0
    for account in ACCOUNTS:
        result = ledger_service.verify_account_chain(account)
        status = "OK" if result["ok"] else f"BROKEN ({len(result['breaks'])})"
        click.echo(f"{account:<14} entries={result['transactions']:<6} {status}")
        for entry in result["breaks"][:10]:
            click.echo(
                f"    tx {entry['transactionId']}: before {entry['actualBefore']:.2f} "
                f"(expected {entry['expectedBefore']:.2f}), after {entry['actualAfter']:.2f} "
                f"(expected {entry['expectedAfter']:.2f})"
            )
        if not result["ok"]:
            broken += 1

    if broken:
        raise click.ClickException(f"{broken} account chain(s) broken; run 'flask ledger rebuild'")


@click.group('invoices')
def invoices_group():
    """Invoice maintenance commands."""


@invoices_group.command('refresh-overdue')
@with_appcontext
def refresh_overdue():
    result = invoice_service.refresh_overdue_statuses()
    click.echo(f"Checked {result['checked']} open invoices, updated {result['updated']}")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' for demo data.")


@system_group.command('seed')
@with_appcontext
def seed():
    """Create demo data through the normal service layer (skips if products exist)."""
    if db.session.query(Product.id).first() is not None:
        click.echo("SKIP Products already exist; seed not applied.")
        return

    supplier = party_service.create_supplier(
        patch={
            "name": "Lagos Parts Depot",
            "phone": "08030000001",
            "email": "sales@lagosparts.example",
            "categories": ["Filters", "Brakes"],
            "payment_terms": "net30",
        },
        actor=SEED_ACTOR,
    )

    catalogue = [
        {"sku": "FLT-OIL-01", "name": "Oil Filter", "brand": "Bosch", "category": "Filters",
         "cost_price": Decimal("1500.00"), "selling_price": Decimal("2500.00")},
        {"sku": "BRK-PAD-02", "name": "Brake Pads (Front)", "brand": "Brembo", "category": "Brakes",
         "cost_price": Decimal("8000.00"), "selling_price": Decimal("12000.00")},
    ]
    products = [
        stock_service.create_product(patch=dict(item, supplier_id=supplier.id), actor=SEED_ACTOR)
        for item in catalogue
    ]

    invoice_service.create_purchase_invoice(
        items=[
            {"product_id": products[0].id, "quantity": 40, "unit_price": Decimal("1500.00")},
            {"product_id": products[1].id, "quantity": 10, "unit_price": Decimal("8000.00")},
        ],
        actor=SEED_ACTOR,
        supplier_id=supplier.id,
        payment_amount=Decimal("100000.00"),
        payment_method="bank_transfer",
    )

    customer = party_service.create_customer(
        patch={
            "name": "Adaeze Okafor",
            "phone": "08030000002",
            "type": "business",
            "payment_terms": "credit",
            "credit_limit": Decimal("100000.00"),
            "credit_days": 30,
        },
        actor=SEED_ACTOR,
    )

    invoice_service.create_sale_invoice(
        items=[
            {"product_id": products[0].id, "quantity": 4, "unit_price": Decimal("2500.00")},
            {"product_id": products[1].id, "quantity": 2, "unit_price": Decimal("12000.00")},
        ],
        actor=SEED_ACTOR,
        customer_id=customer.id,
        payment_amount=Decimal("10000.00"),
        payment_method="cash",
    )

    invoice_service.create_quick_invoice(
        items=[{"product_id": products[0].id, "quantity": 1, "unit_price": Decimal("2500.00")}],
        actor=SEED_ACTOR,
    )

    click.echo("PASS Seeded 1 supplier, 2 products, 1 customer and 3 invoices.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(system_group)
