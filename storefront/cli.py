# storefront/cli.py
from datetime import datetime, timedelta

import click
from werkzeug.security import generate_password_hash

from .extensions import db
from .model import Category, CouponCode, CouponDiscount, PriceList, Product, User
from .services.user_service import find_user, normalize_phone

# Demo catalog: (category, product, tagline, [(weight, unit_price, base_price)])
SAMPLE_CATALOG = [
    ("Pickles", "Mango Pickle", "Sun-dried raw mango in mustard oil",
     [("250g", 180, 200), ("500g", 340, 380)]),
    ("Pickles", "Lemon Pickle", "Tangy lemon with rock salt",
     [("250g", 160, 180), ("500g", 300, 340)]),
    ("Pickles", "Garlic Pickle", "Whole garlic in sesame oil",
     [("250g", 220, 240)]),
    ("Spices", "Sambar Powder", "Stone-ground lentil and chilli blend",
     [("100g", 90, 100), ("250g", 210, 230)]),
    ("Spices", "Rasam Powder", "Pepper-forward rasam mix",
     [("100g", 85, 95)]),
    ("Spices", "Turmeric Powder", "Single-origin Erode turmeric",
     [("200g", 120, 130)]),
    ("Snacks", "Banana Chips", "Kerala nendran chips in coconut oil",
     [("200g", 150, 170)]),
    ("Snacks", "Murukku", "Rice flour spirals",
     [("250g", 130, 150)]),
    ("Sweets", "Mysore Pak", "Ghee-rich gram flour fudge",
     [("250g", 280, 300), ("500g", 540, 580)]),
    ("Sweets", "Coconut Burfi", "Fresh coconut and cardamom",
     [("250g", 240, 260)]),
]


@click.command("create-admin")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--name", required=True)
@click.option("--phone", required=True)
def create_admin(email, password, name, phone):
    email = email.strip().lower()
    phone = normalize_phone(phone)
    if find_user(phone=phone, email=email):
        click.echo("A user with this email or phone already exists"); return
    u = User(
        email=email,
        name=name,
        username=phone,
        phone=phone,
        password_hash=generate_password_hash(password),
        role="admin",
    )
    db.session.add(u); db.session.commit()
    click.echo(f"Admin created: {u.id} {u.email}")


@click.command("seed-catalog")
def seed_catalog():
    """Insert demo categories, products, price lists and a WELCOME10 coupon."""
    categories = {}
    added = 0
    for order, (cat_name, name, tagline, packs) in enumerate(SAMPLE_CATALOG, start=1):
        cat = categories.get(cat_name) or Category.query.filter_by(name=cat_name).first()
        if not cat:
            cat = Category(name=cat_name, display_order=len(categories) + 1)
            db.session.add(cat)
        categories[cat_name] = cat

        if Product.query.filter_by(name=name).first():
            continue
        product = Product(name=name, tagline=tagline, display_order=order, is_active=True, category=cat)
        for weight, unit_price, base_price in packs:
            product.price_lists.append(PriceList(weight=weight, unit_price=unit_price, base_price=base_price))
        db.session.add(product)
        added += 1

    if not CouponCode.query.filter_by(code="WELCOME10").first():
        now = datetime.utcnow()
        coupon = CouponCode(
            code="WELCOME10",
            start_date=now,
            end_date=now + timedelta(days=90),
            is_for_new_users=True,
            is_for_all_users=True,
        )
        coupon.discounts.append(CouponDiscount(name="Welcome", discount=10, flat_rate=False))
        db.session.add(coupon)

    db.session.commit()
    click.echo(f"{added} sample products have been added to the catalog.")


def register_cli(app):
    app.cli.add_command(create_admin)
    app.cli.add_command(seed_catalog)
