"""Pytest fixtures: a fresh in-memory app per test, users, products and coupons."""
from datetime import timedelta

import pytest
from flask_jwt_extended import create_access_token
from werkzeug.security import generate_password_hash

from plantshop import create_app
from plantshop.config import TestConfig
from plantshop.extensions import db
from plantshop.model import Coupon, Product, User
from plantshop.utils.dates import utcnow


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(role="user", email=None):
        counter["n"] += 1
        u = User(
            email=email or f"user{counter['n']}@example.com",
            name=f"User {counter['n']}",
            password_hash=generate_password_hash("secret123"),
            role=role,
        )
        db.session.add(u)
        db.session.commit()
        return u

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", email="admin@example.com")


@pytest.fixture
def user(make_user):
    return make_user(email="shopper@example.com")


def bearer(u):
    return {"Authorization": f"Bearer {create_access_token(identity=str(u.id))}"}


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture
def user_headers(user):
    return bearer(user)


@pytest.fixture
def products(app):
    rows = {
        "monstera": Product(name="Monstera", slug="monstera", price=45.0, category="plants", stock=20),
        "fern": Product(name="Boston Fern", slug="boston-fern", price=10.0, category="plants", stock=50),
        "shears": Product(name="Pruning Shears", slug="pruning-shears", price=15.0, category="tools", stock=40),
        "compost": Product(name="Compost", slug="compost", price=100.0, category="organic-supplies", stock=5),
    }
    db.session.add_all(rows.values())
    db.session.commit()
    return rows


@pytest.fixture
def make_coupon(app):
    def _make(code="SAVE10", **overrides):
        now = utcnow()
        fields = dict(
            code=code,
            name=f"{code} coupon",
            ctype="percentage",
            value=10,
            max_discount=50,
            min_order_value=0,
            usage_limit_per_user=1,
            usage_count_total=0,
            valid_from=now - timedelta(days=1),
            valid_to=now + timedelta(days=30),
            applies_to="all",
            product_ids=[],
            categories=[],
            excluded_product_ids=[],
            active=True,
            stackable=False,
            first_time_only=False,
        )
        fields.update(overrides)
        c = Coupon(**fields)
        db.session.add(c)
        db.session.commit()
        return c

    return _make


@pytest.fixture
def auth_for():
    return bearer
