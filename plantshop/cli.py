# plantshop/cli.py
from datetime import timedelta

import click
from werkzeug.security import generate_password_hash

from .extensions import db
from .model import Coupon, Product, User
from .utils.dates import utcnow

DEMO_PRODUCTS = [
    ("Monstera Deliciosa", 45.00, "plants", 12),
    ("Snake Plant", 25.00, "plants", 30),
    ("Fiddle Leaf Fig", 60.00, "plants", 8),
    ("Pruning Shears", 18.50, "tools", 40),
    ("Organic Compost 10kg", 15.00, "organic-supplies", 50),
    ("Heirloom Tomatoes 1kg", 6.00, "organic-vegetables", 100),
    ("Terracotta Pot Set", 22.00, "accessories", 25),
    ("Succulent Gift Box", 35.00, "gifts", 15),
]


@click.command("create-admin")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--name", required=True)
def create_admin(email, password, name):
    email = email.strip().lower()
    if User.query.filter_by(email=email).first():
        click.echo("Email already exists"); return
    u = User(email=email, name=name, password_hash=generate_password_hash(password), role="admin")
    db.session.add(u); db.session.commit()
    click.echo(f"Admin created: {u.id} {u.email}")


@click.command("seed-demo")
@click.option("--days", default=30, show_default=True, help="How long the demo coupons stay valid.")
def seed_demo(days):
    """Insert a small plant catalog and a few demo coupons (idempotent)."""
    created = 0
    for name, price, category, stock in DEMO_PRODUCTS:
        if Product.query.filter_by(name=name).first():
            continue
        db.session.add(Product(
            name=name,
            slug=name.lower().replace(" ", "-"),
            price=price,
            category=category,
            stock=stock,
        ))
        created += 1
    db.session.flush()

    now = utcnow()
    until = now + timedelta(days=days)
    plant_ids = [p.id for p in Product.query.filter_by(category="plants").order_by(Product.id).all()]
    coupons = [
        dict(code="SAVE10", name="10% off everything", ctype="percentage", value=10, max_discount=50),
        dict(code="FLAT20", name="$20 off orders over $100", ctype="fixed", value=20, min_order_value=100),
        dict(code="BUY2GET1", name="Buy 2 plants, get 1 free", ctype="buy_x_get_y", value=0,
             applies_to="specific", product_ids=plant_ids, buy_quantity=2, get_quantity=1, max_sets=1),
        dict(code="WELCOME15", name="15% off your first order", ctype="percentage", value=15,
             max_discount=30, first_time_only=True),
    ]
    for fields in coupons:
        if Coupon.query.filter_by(code=fields["code"]).first():
            continue
        db.session.add(Coupon(valid_from=now, valid_to=until, usage_limit_per_user=1, **fields))
        created += 1

    db.session.commit()
    click.echo(f"Seeded {created} records")


def register_cli(app):
    app.cli.add_command(create_admin)
    app.cli.add_command(seed_demo)
