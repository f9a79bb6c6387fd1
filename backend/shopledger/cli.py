# Overview: Flask CLI command group for database bootstrap, demo data and ledger verification.

# backend/shopledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask ledger <command> [options]
#
# - python -m flask ledger init-db [--drop --yes]
#   Create all tables (optionally dropping them first; deletes all data).
# - python -m flask ledger seed-demo [--shop-code DEMO]
#   Create a demo shop with products, a supplier and a customer.
# - python -m flask ledger verify [--shop-id 1]
#   Check the payment and receiving invariants; exits 1 on violations.
#
# Schema migrations are handled by Flask-Migrate: python -m flask db upgrade

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, Product, Shop, Supplier
from .services.ledger_audit import find_violations


@click.group('ledger')
def ledger_group():
    """Ledger bootstrap and verification commands."""


@ledger_group.command('init-db')
@click.option('--drop', is_flag=True, help='Drop all tables first')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def init_db(drop, yes):
    """Create all tables."""
    if drop:
        if not yes:
            click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)
        click.echo("DELETE  Dropping all tables...")
        db.drop_all()

    db.create_all()
    click.echo("PASS Database tables created")


@ledger_group.command('seed-demo')
@click.option('--shop-code', default='DEMO', help='Shop code')
@click.option('--shop-name', default='Demo Shop', help='Shop name')
@with_appcontext
def seed_demo(shop_code, shop_name):
    """
    Create a demo shop with a few products, one supplier and one customer.

    Idempotent: an existing shop with the same code is reused and left as is.
    """
    shop = db.session.query(Shop).filter_by(code=shop_code).first()
    if shop:
        click.echo(f"WARN  Shop '{shop_code}' already exists (ID: {shop.id}), skipping...")
        return

    shop = Shop(name=shop_name, code=shop_code, is_active=True)
    db.session.add(shop)
    db.session.flush()

    products = [
        Product(shop_id=shop.id, name="Rice 5kg", sku="RICE-5", stock=40, price_cents=1250, cost_price_cents=900),
        Product(shop_id=shop.id, name="Cooking Oil 1L", sku="OIL-1", stock=25, price_cents=650, cost_price_cents=480),
        Product(shop_id=shop.id, name="Sugar 1kg", sku="SUGAR-1", stock=8, price_cents=300, cost_price_cents=210),
    ]
    db.session.add_all(products)
    db.session.add(Supplier(shop_id=shop.id, name="Wholesale Foods", contact_name="Ada", phone="555-0100"))
    db.session.add(Customer(shop_id=shop.id, name="Walk-in Regular", phone="555-0199"))
    db.session.commit()

    click.echo(f"PASS Created shop: {shop.name} (ID: {shop.id}, Code: {shop.code})")
    for product in products:
        click.echo(f"   {product.id:>4}  {product.name:<20} stock={product.stock}")


@ledger_group.command('verify')
@click.option('--shop-id', type=int, default=None, help='Limit to one shop')
@with_appcontext
def verify(shop_id):
    """Check ledger invariants; exit code 1 when any row violates them."""
    violations = find_violations(shop_id)
    if not violations:
        click.echo("PASS No ledger violations found")
        return

    for violation in violations:
        click.echo(f"FAIL {violation}")
    click.echo(f"\n{len(violations)} violation(s) found")
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
