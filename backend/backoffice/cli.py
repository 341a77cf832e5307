# Overview: Flask CLI commands for bootstrap and inspection.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="backoffice").
# - python -m flask backoffice init-db
#   Create all tables and the default return policy (idempotent).
# - python -m flask backoffice add-product --sku SKU-1 --name "Widget" [--category cat-1]
#   Register a product.
# - python -m flask backoffice show-stock [--outlet OUTLET] [--product PRODUCT]
#   Print on-hand quantities.
# - python -m flask backoffice show-policy
#   Print the active return policy.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .services import policy_service, stock_service


@click.group('backoffice')
def backoffice_group():
    """Back-office bootstrap and inspection commands."""


@backoffice_group.command('init-db')
@with_appcontext
def init_db():
    """Create tables and the default return policy."""
    db.create_all()
    policy = policy_service.ensure_default_policy()
    click.echo(f"Database ready. Return policy: {policy.max_return_days} days.")


@backoffice_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--category', 'category_id', default=None)
@with_appcontext
def add_product(sku, name, category_id):
    """Register a product."""
    if db.session.query(Product).filter_by(sku=sku).first():
        click.echo(f"Product with SKU {sku} already exists.")
        return
    product = Product(sku=sku, name=name, category_id=category_id)
    db.session.add(product)
    db.session.commit()
    click.echo(f"Created product {product.id} ({sku}).")


@backoffice_group.command('show-stock')
@click.option('--outlet', 'outlet_id', default=None)
@click.option('--product', 'product_id', default=None)
@with_appcontext
def show_stock(outlet_id, product_id):
    """Print on-hand quantities."""
    rows = stock_service.list_outlet_stock(outlet_id=outlet_id, product_id=product_id)
    if not rows:
        click.echo("No stock rows.")
        return
    for row in rows:
        click.echo(f"{row.outlet_id:<36}  {row.product_id:<36}  {row.quantity:>8}")


@backoffice_group.command('show-policy')
@with_appcontext
def show_policy():
    """Print the active return policy."""
    policy = policy_service.get_active_policy()
    if policy is None:
        click.echo("No active return policy (returns are unrestricted).")
        return
    categories = ", ".join(policy.non_returnable_categories or []) or "none"
    click.echo(f"Max return days:        {policy.max_return_days}")
    click.echo(f"Non-returnable:         {categories}")
    click.echo(f"Receipt required:       {policy.require_receipt}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(backoffice_group)
