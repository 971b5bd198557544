"""Pytest fixtures for storefront tests."""

import pytest
from flask_jwt_extended import create_access_token

from storefront import create_app
from storefront.config import TestingConfig
from storefront.extensions import db
from storefront.model import Cart, CartItem, Product, ProductVariant, User, Voucher
from storefront.services.order_service import Receiver
from storefront.services.shipping_service import ShippingCalculator


@pytest.fixture
def app():
    """Fresh app on an in-memory database, with an app context pushed."""
    app = create_app(TestingConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def free_shipping(app):
    app.extensions["shipping"] = ShippingCalculator(free_threshold=0, default_fee=30000)
    return app.extensions["shipping"]


@pytest.fixture
def receiver():
    return Receiver(
        name="Nguyen Van A",
        phone="0901234567",
        address="12 Le Loi",
        city="Ho Chi Minh",
        district="District 1",
        ward="Ben Nghe",
        email="a@example.com",
    )


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(role="user", email=None):
        counter["n"] += 1
        u = User(email=email or f"user{counter['n']}@example.com", name=f"User {counter['n']}", role=role)
        db.session.add(u)
        db.session.commit()
        return u

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", email="admin@example.com")


@pytest.fixture
def make_product(app):
    counter = {"n": 0}

    def _make(price=100000, quantity=10, name=None, is_active=True, sale_price=None, variants=()):
        counter["n"] += 1
        p = Product(
            sku=f"SKU-{counter['n']:03d}",
            name=name or f"Product {counter['n']}",
            price=price,
            sale_price=sale_price,
            quantity=quantity,
            is_active=is_active,
        )
        for i, v in enumerate(variants):
            p.variants.append(ProductVariant(sku=f"SKU-{counter['n']:03d}-{i}", **v))
        db.session.add(p)
        db.session.commit()
        return p

    return _make


@pytest.fixture
def make_voucher(app):
    def _make(code="SALE10", discount_type="PERCENTAGE", discount_value=10, **kwargs):
        v = Voucher(code=code, discount_type=discount_type, discount_value=discount_value, **kwargs)
        db.session.add(v)
        db.session.commit()
        return v

    return _make


@pytest.fixture
def add_to_cart(app):
    """Put a line straight into a user's cart, bypassing the stock checks."""

    def _add(user, product, quantity=1, variant=None, selected=True):
        cart = Cart.query.filter_by(user_id=user.id).first()
        if not cart:
            cart = Cart(user_id=user.id)
            db.session.add(cart)
        item = CartItem(product_id=product.id, variant_id=variant.id if variant else None,
                        quantity=quantity, is_selected=selected)
        cart.items.append(item)
        db.session.commit()
        return item

    return _add


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        token = create_access_token(identity=str(user.id))
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def stock(app):
    """Live quantity of a product (or of one of its variants) straight from the database."""

    def _stock(product_id, variant_id=None):
        db.session.expire_all()
        if variant_id is not None:
            return db.session.get(ProductVariant, variant_id).quantity
        return db.session.get(Product, product_id).quantity

    return _stock
