from io import BytesIO

import pandas as pd
import pytest
from conftest import ADDRESS, auth, guest_cart, make_coupon

from storefront.extensions import db
from storefront.model import Order, User


def _checkout(client, catalog, mobile, lines=None, **fields):
    # guests are matched by phone or email, so each one gets its own email
    cart = guest_cart(client, catalog, lines=lines, mobile=mobile, email=f"{mobile}@example.com",
                      name=fields.pop("name", "Guest"))
    r = client.post("/orders", json={
        "cart_id": cart["id"], "mobile": mobile, "shipping_method": "Home Delivery",
        "payment_method": "COD", **ADDRESS, **fields,
    })
    assert r.status_code == 201, r.get_json()
    return r.get_json()["data"]


@pytest.fixture
def orders(client, catalog, admin_token):
    """One delivered pickle order and one open sweets order."""
    pickles = _checkout(client, catalog, "9111111111", name="Meena")
    sweets = _checkout(client, catalog, "9222222222", name="Kumar", lines=[
        {"product_id": catalog["burfi"], "price_list_id": catalog["burfi_250"], "quantity": 1},
    ])
    r = client.patch(f"/admin/orders/{pickles['id']}/status", headers=auth(admin_token),
                     json={"status": "Delivered"})
    assert r.status_code == 200
    return {"pickles": pickles["id"], "sweets": sweets["id"]}


def test_admin_endpoints_need_admin(client, customer_token):
    h = auth(customer_token)
    assert client.post("/admin/dashboard-kpis", headers=h, json={}).status_code == 403
    assert client.get("/admin/users", headers=h).status_code == 403
    assert client.post("/admin/orders", json={}).status_code == 401


def test_kpis_with_no_orders(client, admin_token):
    data = client.post("/admin/dashboard-kpis", headers=auth(admin_token), json={}).get_json()["data"]
    assert data["total_orders"] == 0
    assert data["avg_order_value"] == 0.0


def test_dashboard_kpis(client, admin_token, orders):
    h = auth(admin_token)
    data = client.post("/admin/dashboard-kpis", headers=h, json={}).get_json()["data"]
    assert data["total_sales"] == 550.0
    assert data["total_orders"] == 2
    assert data["avg_order_value"] == 275.0
    assert data["pending_orders"] == 1

    data = client.post("/admin/dashboard-kpis", headers=h, json={"category": "Pickles"}).get_json()["data"]
    assert (data["total_sales"], data["total_orders"], data["pending_orders"]) == (250.0, 1, 0)

    data = client.post("/admin/dashboard-kpis", headers=h, json={"phone": "+91 92222 22222"}).get_json()["data"]
    assert data["total_sales"] == 300.0


def test_date_filters(client, admin_token, orders):
    h = auth(admin_token)
    today = pd.Timestamp.utcnow().strftime("%Y-%m-%d")
    body = {"from_date": today, "to_date": today}
    assert client.post("/admin/dashboard-kpis", headers=h, json=body).get_json()["data"]["total_orders"] == 2

    body = {"from_date": "2000-01-01", "to_date": "2000-01-31"}
    assert client.post("/admin/dashboard-kpis", headers=h, json=body).get_json()["data"]["total_orders"] == 0
    assert client.post("/admin/dashboard-kpis", headers=h, json={"from_date": "01/02/2024"}).status_code == 400


def test_chart_data(client, admin_token, orders):
    data = client.post("/admin/chart-data", headers=auth(admin_token), json={}).get_json()["data"]
    assert data["total_sales_by_category"] == [
        {"category": "Sweets", "total_sales": 300.0},
        {"category": "Pickles", "total_sales": 250.0},
    ]
    assert [p["product"] for p in data["total_sales_by_product"]] == ["Coconut Burfi", "Mango Pickle", "Lemon Pickle"]
    assert {s["order_status"] for s in data["total_sales_by_order_status"]} == {"Delivered", "Ordered"}
    assert data["products_with_quantities_by_order_status"] == [
        {"product": "Coconut Burfi", "pending_quantity": 1, "fulfilled_quantity": 0},
        {"product": "Lemon Pickle", "pending_quantity": 0, "fulfilled_quantity": 1},
        {"product": "Mango Pickle", "pending_quantity": 0, "fulfilled_quantity": 2},
    ]


def test_fetch_orders_groups_products(client, admin_token, orders):
    h = auth(admin_token)
    rows = client.post("/admin/orders", headers=h, json={}).get_json()["data"]["orders"]
    assert sorted(o["order_id"] for o in rows) == sorted(orders.values())

    pickles = next(o for o in rows if o["order_id"] == orders["pickles"])
    assert pickles["customer_name"] == "Meena"
    assert pickles["city"] == "Chennai"
    assert [(p["product_name"], p["quantity"]) for p in pickles["products"]] == [("Mango Pickle", 2), ("Lemon Pickle", 1)]
    assert pickles["order_total"] == 250.0
    assert pickles["total"] == 349.0

    rows = client.post("/admin/orders", headers=h, json={"order_status": "Ordered"}).get_json()["data"]["orders"]
    assert [o["order_id"] for o in rows] == [orders["sweets"]]
    rows = client.post("/admin/orders", headers=h, json={"name": "meen"}).get_json()["data"]["orders"]
    assert [o["order_id"] for o in rows] == [orders["pickles"]]


def test_fetch_orders_applies_order_coupon(client, catalog, admin_token):
    make_coupon("SAVE10", [("Discount", 10, False)])
    order = _checkout(client, catalog, "9333333333", coupon_code="SAVE10")

    rows = client.post("/admin/orders", headers=auth(admin_token), json={}).get_json()["data"]["orders"]
    assert rows[0]["order_id"] == order["id"]
    assert rows[0]["coupon_code"] == "SAVE10"
    assert rows[0]["product_discount"] == 25.0
    assert rows[0]["total"] == 324.0


def test_filtered_orders_keep_whole_order_totals(client, catalog, admin_token):
    order = _checkout(client, catalog, "9444444444", lines=[
        {"product_id": catalog["burfi"], "price_list_id": catalog["burfi_250"], "quantity": 4},
        {"product_id": catalog["lemon"], "price_list_id": catalog["lemon_250"], "quantity": 1},
    ])
    assert (order["subtotal"], order["shipping_fee"], order["total"]) == (1250.0, 0.0, 1250.0)

    h = auth(admin_token)
    rows = client.post("/admin/orders", headers=h, json={"category": "Pickles"}).get_json()["data"]["orders"]
    assert len(rows) == 1
    assert [p["product_name"] for p in rows[0]["products"]] == ["Lemon Pickle"]
    assert rows[0]["order_total"] == 1250.0
    assert rows[0]["shipping_fee"] == 0.0
    assert rows[0]["total"] == 1250.0

    r = client.post("/admin/orders/export", headers=h, json={"category": "Pickles"})
    df = pd.read_excel(BytesIO(r.data), sheet_name="Orders")
    assert df["Line Total"].tolist() == [50.0]
    assert df["Order Total"].tolist() == [1250.0]


def test_update_status(client, admin_token, orders):
    h = auth(admin_token)
    r = client.patch(f"/admin/orders/{orders['sweets']}/status", headers=h, json={
        "status": "Shipped", "expected_delivery_date": "2030-01-05", "delivery_note": "Courier #42",
    })
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["status"] == "Shipped"
    assert data["delivery_note"] == "Courier #42"
    assert data["expected_delivery_date"].startswith("2030-01-05")

    assert client.patch(f"/admin/orders/{orders['sweets']}/status", headers=h, json={"status": "Lost"}).status_code == 422
    r = client.patch(f"/admin/orders/{orders['sweets']}/status", headers=h,
                     json={"status": "Shipped", "expected_delivery_date": "soon"})
    assert r.status_code == 422
    assert client.patch("/admin/orders/999/status", headers=h, json={"status": "Shipped"}).status_code == 404


def test_export_orders(client, admin_token, orders):
    r = client.post("/admin/orders/export", headers=auth(admin_token), json={})
    assert r.status_code == 200
    assert r.headers["Content-Disposition"].startswith("attachment")
    df = pd.read_excel(BytesIO(r.data), sheet_name="Orders")
    assert len(df) == 3
    assert {"Order ID", "Customer", "Line Total", "Order Total"} <= set(df.columns)
    assert df["Line Total"].sum() == 550.0


def test_export_with_no_orders(client, admin_token):
    r = client.post("/admin/orders/export", headers=auth(admin_token), json={})
    df = pd.read_excel(BytesIO(r.data))
    assert df.empty
    assert "Order ID" in df.columns


def test_list_users(client, admin_token, customer_token):
    h = auth(admin_token)
    users = client.get("/admin/users", headers=h).get_json()["data"]["users"]
    assert [u["email"] for u in users] == ["admin@example.com", "asha@example.com"]

    users = client.get("/admin/users?role=admin", headers=h).get_json()["data"]["users"]
    assert [u["email"] for u in users] == ["admin@example.com"]
    users = client.get("/admin/users?phone=98765 43210", headers=h).get_json()["data"]["users"]
    assert [u["name"] for u in users] == ["Asha"]
    assert users[0]["default_address"] is None


def test_change_role_protects_last_admin(client, admin_token, customer_token):
    h = auth(admin_token)
    admin = User.query.filter_by(email="admin@example.com").one()
    customer = User.query.filter_by(email="asha@example.com").one()

    r = client.patch(f"/admin/users/{admin.id}/role", headers=h, json={"role": "user"})
    assert r.status_code == 400
    assert r.get_json()["message"] == "Cannot demote the last admin"
    assert client.patch(f"/admin/users/{customer.id}/role", headers=h, json={"role": "boss"}).status_code == 400

    r = client.patch(f"/admin/users/{customer.id}/role", headers=h, json={"role": "admin"})
    assert r.get_json()["data"]["user"]["role"] == "admin"
    assert client.patch(f"/admin/users/{admin.id}/role", headers=h, json={"role": "user"}).status_code == 200


def test_admin_creates_user_with_addresses(client, admin_token):
    h = auth(admin_token)
    r = client.post("/admin/users", headers=h, json={
        "user": {"name": "Lakshmi", "phone": "+91 93333 44444", "email": "Lakshmi@Example.com"},
        "addresses": [
            {"address_line1": "4 Lake Road", "city": "Madurai", "state": "Tamil Nadu", "pincode": 625001},
            {"name": "Office", "address_line1": "9 Mill Street", "city": "Madurai", "state": "Tamil Nadu",
             "pincode": "625002", "is_default": True},
        ],
    })
    assert r.status_code == 201, r.get_json()
    data = r.get_json()["data"]
    assert data["user"]["username"] == "9333344444"
    assert data["user"]["email"] == "lakshmi@example.com"
    home, office = data["addresses"]
    assert (home["name"], home["phone"], home["country"], home["is_default"]) == ("Lakshmi", "9333344444", "India", False)
    assert office["is_default"] is True

    user = User.query.filter_by(phone_key="9333344444").one()
    assert user.has_password is False
    assert user.otp and len(user.otp) == 4

    # matched by phone; the home address is dropped and the office one kept
    r = client.post("/admin/users", headers=h, json={
        "user": {"name": "Lakshmi R", "phone": "9333344444", "password": "new-pass-1", "role": "admin"},
        "addresses": [{"id": office["id"], "city": "Chennai"}],
    })
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["user"]["id"] == user.id
    assert data["user"]["role"] == "admin"
    assert [(a["id"], a["city"], a["is_default"]) for a in data["addresses"]] == [(office["id"], "Chennai", True)]
    r = client.post("/auth/login", json={"identifier": "9333344444", "password": "new-pass-1"})
    assert r.get_json()["data"]["token"]


def test_admin_save_user_validation(client, catalog, admin_token, customer_token):
    h = auth(admin_token)
    assert client.post("/admin/users", headers=h, json={"addresses": []}).status_code == 400
    assert client.post("/admin/users", headers=h, json={"user": {"name": "X", "phone": "9000000002"}}).status_code == 400
    assert client.post("/admin/users", headers=h, json={
        "user": {"name": "X", "phone": "9000000002"}, "addresses": [{"city": "Chennai"}],
    }).status_code == 400
    assert client.post("/admin/users", headers=h, json={
        "user": {"id": 999, "name": "X", "phone": "9000000002"}, "addresses": [],
    }).status_code == 404

    # matched by phone, but the email belongs to another account
    r = client.post("/admin/users", headers=h, json={
        "user": {"name": "X", "phone": "+91 98765 43210", "email": "admin@example.com"}, "addresses": [],
    })
    assert r.status_code == 409
    db.session.expire_all()
    assert User.query.filter_by(email="asha@example.com").one().name == "Asha"

    order = _checkout(client, catalog, "9555555555")
    guest = User.query.filter_by(phone_key="9555555555").one()
    r = client.post("/admin/users", headers=h, json={
        "user": {"id": guest.id, "name": "Guest", "phone": "9555555555"}, "addresses": [],
    })
    assert r.status_code == 409
    assert r.get_json()["data"]["address_id"] == db.session.get(Order, order["id"]).user_address_id
