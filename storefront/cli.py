# storefront/cli.py
import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .model import User, Product, ProductVariant, Voucher
from .services import inventory_service, voucher_service
from .utils.timeutil import utcnow


@click.command("create-admin")
@with_appcontext
@click.option("--email", required=True)
@click.option("--name", required=True)
@click.option("--role", type=click.Choice(["admin", "manager"]), default="admin")
def create_admin(email, name, role):
    email = email.strip().lower()
    if User.query.filter_by(email=email).first():
        click.echo("Email already exists"); return
    u = User(email=email, name=name, role=role)
    db.session.add(u); db.session.commit()
    click.echo(f"{role.title()} created: {u.id} {u.email}")


@click.command("deactivate-expired-vouchers")
@with_appcontext
def deactivate_expired_vouchers():
    count = voucher_service.deactivate_expired(utcnow())
    click.echo(f"Deactivated {count} expired vouchers")


@click.command("low-stock")
@with_appcontext
def low_stock():
    for p in inventory_service.low_stock_units():
        click.echo(f"{p.id}\t{p.sku or '-'}\t{p.quantity}\t{p.name}")


@click.command("seed-demo")
@with_appcontext
@click.option("--file", "path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="JSON file with {'products': [...], 'vouchers': [...]}")
def seed_demo(path):
    """Load a small catalog and a couple of vouchers for local testing."""
    if path:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    else:
        data = DEMO_DATA

    for row in data.get("products", []):
        if row.get("sku") and Product.query.filter_by(sku=row["sku"]).first():
            continue
        row = dict(row)
        variants = row.pop("variants", [])
        p = Product(**row)
        for v in variants:
            p.variants.append(ProductVariant(**v))
        db.session.add(p)
    db.session.commit()

    for row in data.get("vouchers", []):
        if voucher_service.find_by_code(row["code"]):
            continue
        voucher_service.create_voucher_from_payload(row)

    click.echo(f"{Product.query.count()} products, {Voucher.query.count()} vouchers in the database")


DEMO_DATA = {
    "products": [
        {"sku": "KB-001", "slug": "mechanical-keyboard", "name": "Mechanical Keyboard",
         "price": 1290000, "sale_price": 1090000, "quantity": 40},
        {"sku": "MS-001", "slug": "gaming-mouse", "name": "Gaming Mouse",
         "price": 590000, "quantity": 60},
        {"sku": "HS-001", "slug": "headset", "name": "Wireless Headset", "price": 1890000, "quantity": 0,
         "variants": [
             {"sku": "HS-001-BLK", "name": "Black", "additional_price": 0, "quantity": 15},
             {"sku": "HS-001-WHT", "name": "White", "additional_price": 50000, "quantity": 8},
         ]},
        {"sku": "PAD-001", "slug": "mouse-pad", "name": "Mouse Pad", "price": 100000, "quantity": 3,
         "low_stock_threshold": 5},
    ],
    "vouchers": [
        {"code": "SALE10", "name": "10% off", "discount_type": "PERCENTAGE", "discount_value": 10},
        {"code": "GIAM50K", "name": "50k off orders over 500k", "discount_type": "FIXED",
         "discount_value": 50000, "min_order_amount": 500000, "usage_limit": 100},
    ],
}


def register_cli(app):
    app.cli.add_command(create_admin)
    app.cli.add_command(deactivate_expired_vouchers)
    app.cli.add_command(low_stock)
    app.cli.add_command(seed_demo)
