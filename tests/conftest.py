from datetime import datetime, timedelta

import pytest

from storefront import create_app
from storefront.config import TestConfig
from storefront.extensions import db
from storefront.model import (
    Category, CouponCode, CouponDiscount, CouponProduct, CouponUser, PriceList, Product,
)

ADMIN = {"name": "Admin", "email": "admin@example.com", "phone": "+91 90000 00001", "password": "admin-pass"}
CUSTOMER = {"name": "Asha", "email": "asha@example.com", "phone": "+91 98765 43210", "password": "asha-pass"}


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, **fields):
    return client.post("/auth/register", json=fields)


def login(client, identifier, password):
    r = client.post("/auth/login", json={"identifier": identifier, "password": password})
    assert r.status_code == 200, r.get_json()
    return r.get_json()["data"]["token"]


@pytest.fixture
def admin_token(client):
    assert register(client, **ADMIN).status_code == 201
    return login(client, ADMIN["email"], ADMIN["password"])


@pytest.fixture
def customer_token(client, admin_token):
    assert register(client, **CUSTOMER).status_code == 201
    return login(client, CUSTOMER["email"], CUSTOMER["password"])


@pytest.fixture
def catalog(app):
    """Two categories, three products with one or two packs each."""
    pickles = Category(name="Pickles", display_order=1)
    sweets = Category(name="Sweets", display_order=2)
    mango = Product(name="Mango Pickle", tagline="Raw mango", display_order=1, is_active=True, category=pickles)
    mango.price_lists.append(PriceList(weight="250g", unit_price=100, base_price=120))
    mango.price_lists.append(PriceList(weight="500g", unit_price=180, base_price=200))
    lemon = Product(name="Lemon Pickle", tagline="Tangy", display_order=2, is_active=True, category=pickles)
    lemon.price_lists.append(PriceList(weight="250g", unit_price=50))
    burfi = Product(name="Coconut Burfi", tagline="Cardamom", display_order=3, is_active=True, category=sweets)
    burfi.price_lists.append(PriceList(weight="250g", unit_price=300))
    db.session.add_all([pickles, sweets, mango, lemon, burfi])
    db.session.commit()
    return {
        "pickles": pickles.id,
        "sweets": sweets.id,
        "mango": mango.id,
        "mango_250": mango.price_lists[0].id,
        "mango_500": mango.price_lists[1].id,
        "lemon": lemon.id,
        "lemon_250": lemon.price_lists[0].id,
        "burfi": burfi.id,
        "burfi_250": burfi.price_lists[0].id,
    }


def make_coupon(code, discounts, product_ids=(), user_ids=(), for_all=True, for_new=False,
                active=True, start=None, end=None):
    """Insert a coupon directly. ``discounts`` is a list of (name, value, flat_rate)."""
    now = datetime.utcnow()
    coupon = CouponCode(
        code=code,
        start_date=start or now - timedelta(days=1),
        end_date=end or now + timedelta(days=30),
        is_active=active,
        is_for_all_users=for_all,
        is_for_new_users=for_new,
    )
    for name, value, flat in discounts:
        coupon.discounts.append(CouponDiscount(name=name, discount=value, flat_rate=flat))
    for pid in product_ids:
        coupon.products.append(CouponProduct(product_id=pid))
    for uid in user_ids:
        coupon.users.append(CouponUser(user_id=uid))
    db.session.add(coupon)
    db.session.commit()
    return coupon


def guest_cart(client, catalog, lines=None, **contact):
    body = {
        "name": contact.get("name", "Guest"),
        "mobile": contact.get("mobile", "+91 91234 56789"),
        "email": contact.get("email", "guest@example.com"),
        "products": lines or [
            {"product_id": catalog["mango"], "price_list_id": catalog["mango_250"], "quantity": 2},
            {"product_id": catalog["lemon"], "price_list_id": catalog["lemon_250"], "quantity": 1},
        ],
    }
    r = client.post("/cart", json=body)
    assert r.status_code == 201, r.get_json()
    return r.get_json()["data"]


ADDRESS = {"address": "12 Temple Street", "city": "Chennai", "state": "Tamil Nadu", "pincode": "600001"}
