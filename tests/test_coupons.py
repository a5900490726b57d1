from datetime import datetime, timedelta

import pytest
from conftest import ADDRESS, auth, guest_cart, make_coupon

from storefront.errors import ApiError
from storefront.extensions import db
from storefront.model import CouponCode, User
from storefront.services.coupon_service import check_coupon, find_coupon, rules_for_coupon


def _payload(**overrides):
    body = {
        "code": "DIWALI",
        "start_date": "2024-10-01T00:00:00Z",
        "end_date": "2030-11-15T23:59:59Z",
        "is_for_all_users": True,
        "discounts": [{"name": "Discount", "discount": 15, "flat_rate": False},
                      {"name": "Shipping", "discount": 100, "flat_rate": False}],
        "product_ids": "All",
        "user_ids": "All",
    }
    body.update(overrides)
    return body


def test_create_coupon(client, admin_token, customer_token, catalog):
    r = client.post("/coupons", headers=auth(admin_token), json=_payload())
    assert r.status_code == 201
    coupon = r.get_json()["data"]["coupon"]
    assert coupon["code"] == "DIWALI"
    assert coupon["product_ids"] == []
    assert len(coupon["user_ids"]) == 2
    assert [d["name"] for d in coupon["discounts"]] == ["Discount", "Shipping"]
    assert coupon["start_date"] == "2024-10-01T00:00:00"


def test_update_coupon_matches_discounts_by_name(client, admin_token, catalog):
    h = auth(admin_token)
    coupon = client.post("/coupons", headers=h, json=_payload()).get_json()["data"]["coupon"]
    shipping_id = coupon["discounts"][1]["id"]

    r = client.post("/coupons", headers=h, json=_payload(
        coupon_id=coupon["id"],
        discounts=[{"name": "Shipping", "discount": 50, "flat_rate": True}],
        product_ids=[catalog["mango"]],
    ))
    assert r.status_code == 200
    updated = r.get_json()["data"]["coupon"]
    assert updated["discounts"] == [{"id": shipping_id, "name": "Shipping", "discount": 50.0, "flat_rate": True}]
    assert updated["product_ids"] == [catalog["mango"]]


def test_coupon_validation(client, admin_token, catalog):
    h = auth(admin_token)
    assert client.post("/coupons", headers=h, json=_payload(code="")).status_code == 400
    assert client.post("/coupons", headers=h, json=_payload(end_date="2020-01-01")).status_code == 400
    assert client.post("/coupons", headers=h, json=_payload(start_date="soon")).status_code == 400
    assert client.post("/coupons", headers=h, json=_payload(coupon_id=999)).status_code == 404
    assert client.post("/coupons", headers=h, json=_payload(product_ids=[999])).status_code == 422

    assert client.post("/coupons", headers=h, json=_payload()).status_code == 201
    assert client.post("/coupons", headers=h, json=_payload(code="diwali")).status_code == 409
    assert CouponCode.query.count() == 1


def test_admins_are_always_linked(client, admin_token, customer_token):
    customer = User.query.filter_by(email="asha@example.com").one()
    admin = User.query.filter_by(email="admin@example.com").one()
    r = client.post("/coupons", headers=auth(admin_token), json=_payload(
        is_for_all_users=False, user_ids=[customer.id],
    ))
    assert sorted(r.get_json()["data"]["coupon"]["user_ids"]) == sorted([customer.id, admin.id])


def test_coupon_admin_endpoints_need_admin(client, customer_token):
    assert client.post("/coupons", headers=auth(customer_token), json=_payload()).status_code == 403
    assert client.get("/coupons").status_code == 401


def test_list_and_get_coupons(client, admin_token):
    make_coupon("ON", [("Discount", 5, False)])
    off = make_coupon("OFF", [("Discount", 5, False)], active=False)
    h = auth(admin_token)

    codes = [c["code"] for c in client.get("/coupons", headers=h).get_json()["data"]["coupons"]]
    assert codes == ["OFF", "ON"]
    codes = [c["code"] for c in client.get("/coupons?active=true", headers=h).get_json()["data"]["coupons"]]
    assert codes == ["ON"]
    assert client.get(f"/coupons/{off.id}", headers=h).get_json()["data"]["coupon"]["is_active"] is False
    assert client.get("/coupons/999", headers=h).status_code == 404


def test_find_coupon_ignores_case(app):
    make_coupon("Summer", [("Discount", 5, False)])
    assert find_coupon("  SUMMER ").code == "Summer"
    assert find_coupon("") is None


def _user(name, phone):
    u = User(name=name, username=phone, phone=phone, password_hash="")
    db.session.add(u)
    db.session.commit()
    return u


def test_check_coupon_dates_and_activity(app):
    user = _user("A", "9000000001")
    now = datetime.utcnow()
    future = make_coupon("LATER", [("Discount", 5, False)], start=now + timedelta(days=1), end=now + timedelta(days=2))
    with pytest.raises(ApiError) as e:
        check_coupon(future, user)
    assert e.value.status == 422
    assert check_coupon(future, user, now=now + timedelta(days=1, hours=1)) is future

    with pytest.raises(ApiError):
        check_coupon(make_coupon("OFF", [("Discount", 5, False)], active=False), user)
    with pytest.raises(ApiError):
        check_coupon(None, user)


def test_check_coupon_user_links(app):
    linked = _user("A", "9000000001")
    other = _user("B", "9000000002")
    coupon = make_coupon("VIP", [("Discount", 5, False)], user_ids=[linked.id], for_all=False)

    assert check_coupon(coupon, linked) is coupon
    with pytest.raises(ApiError):
        check_coupon(coupon, other)
    with pytest.raises(ApiError):
        check_coupon(coupon, None)


def test_new_user_coupon_rejected_after_first_order(client, catalog):
    make_coupon("FIRST", [("Discount", 10, False)], for_new=True)
    cart = guest_cart(client, catalog)
    r = client.post("/orders", json={
        "cart_id": cart["id"], "mobile": "+91 91234 56789", "shipping_method": "Home Delivery",
        "payment_method": "COD", **ADDRESS,
    })
    assert r.status_code == 201, r.get_json()

    second = guest_cart(client, catalog)
    r = client.post(f"/cart/{second['id']}/coupon", json={"code": "FIRST"})
    assert r.status_code == 422
    assert "new users" in r.get_json()["message"]


def test_rules_for_coupon(app, catalog):
    coupon = make_coupon("MIX", [("Discount", 20, True), ("Shipping", 10, False)], product_ids=[catalog["mango"]])
    rules = rules_for_coupon(coupon)
    assert [(r.name, r.is_flat_rate) for r in rules] == [("Discount", True), ("Shipping", False)]
    assert all(r.applies_to == frozenset([catalog["mango"]]) for r in rules)
    assert rules_for_coupon(None) == []


def test_validate_previews_without_attaching(client, catalog):
    make_coupon("PICKLE20", [("Discount", 20, True)], product_ids=[catalog["mango"]])
    cart = guest_cart(client, catalog)

    r = client.post("/coupons/validate", json={"code": "pickle20", "cart_id": cart["id"]})
    assert r.status_code == 200
    data = r.get_json()["data"]
    # mango packs drop to 20 each: (100 - 20) * 2
    assert data["product_discount"] == 160.0
    assert data["coupon_code"] == "PICKLE20"

    assert client.get(f"/cart/{cart['id']}").get_json()["data"]["coupon_code"] is None
    assert client.post("/coupons/validate", json={"code": "nope", "cart_id": cart["id"]}).status_code == 422
    assert client.post("/coupons/validate", json={"code": "PICKLE20"}).status_code == 400
