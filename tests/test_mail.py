import smtplib

import pytest
from conftest import ADDRESS, auth, guest_cart

from storefront.extensions import db
from storefront.model import User
from storefront.services import mail_service
from storefront.services.mail_service import send_mail


class FakeSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        pass

    def starttls(self):
        pass

    def login(self, user, password):
        self.user = user

    def send_message(self, msg):
        FakeSMTP.sent.append(msg)


class BrokenSMTP(FakeSMTP):
    def login(self, user, password):
        raise smtplib.SMTPAuthenticationError(535, b"bad credentials")


@pytest.fixture
def mailer(app, monkeypatch):
    FakeSMTP.sent = []
    app.config.update(
        MAIL_ENABLED=True,
        SMTP_HOST="smtp.example.com",
        SMTP_USER="shop@example.com",
        SMTP_PASSWORD="abcd efgh",
        MAIL_FROM="Shop <shop@example.com>",
        STORE_NAME="Amma's Kitchen",
    )
    monkeypatch.setattr(mail_service.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP.sent


def test_send_mail_renders_template(mailer):
    ok = send_mail("asha@example.com", "Your OTP", "otp", name="Asha", email="asha@example.com",
                   phone="9876543210", otp="4321")
    assert ok is True
    msg = mailer[0]
    assert msg["To"] == "asha@example.com"
    assert msg["Subject"] == "Your OTP"
    html = msg.get_body(preferencelist=("html",)).get_content()
    assert "4321" in html
    assert "Amma&#39;s Kitchen" in html or "Amma's Kitchen" in html


def test_send_mail_skips_without_recipient_or_config(app, mailer):
    assert send_mail(None, "Hi", "otp") is False
    app.config["SMTP_HOST"] = ""
    assert send_mail("asha@example.com", "Hi", "otp", otp="1") is False
    assert mailer == []


def test_send_mail_disabled(app, mailer):
    app.config["MAIL_ENABLED"] = False
    assert send_mail("asha@example.com", "Hi", "otp", otp="1") is False
    assert mailer == []


def test_send_mail_failure_is_reported_not_raised(mailer, monkeypatch):
    monkeypatch.setattr(mail_service.smtplib, "SMTP", BrokenSMTP)
    assert send_mail("asha@example.com", "Hi", "otp", otp="1") is False


def test_order_confirmation_and_shipping_mails(client, catalog, admin_token, mailer):
    cart = guest_cart(client, catalog)
    r = client.post("/orders", json={
        "cart_id": cart["id"], "mobile": "+91 91234 56789", "shipping_method": "Home Delivery",
        "payment_method": "COD", **ADDRESS,
    })
    order_id = r.get_json()["data"]["id"]
    assert [m["Subject"] for m in mailer] == [f"Order confirmation - Order #{order_id}"]
    html = mailer[0].get_body(preferencelist=("html",)).get_content()
    assert "Mango Pickle" in html
    assert "Chennai" in html

    h = auth(admin_token)
    client.patch(f"/admin/orders/{order_id}/status", headers=h, json={"status": "Shipped"})
    client.patch(f"/admin/orders/{order_id}/status", headers=h, json={"status": "Shipped"})
    assert len(mailer) == 2
    assert mailer[1]["Subject"].startswith("Your order has been shipped")


def test_forgot_password_sends_otp(client, customer_token, mailer):
    r = client.post("/auth/forgot-password", json={"identifier": "asha@example.com"})
    assert r.status_code == 200
    assert mailer[-1]["To"] == "asha@example.com"


def test_campaign_mail_goes_to_each_recipient(client, admin_token, customer_token, mailer):
    walk_in = User(name="Walk-in", username="9000099999", phone="9000099999", email=None)
    db.session.add(walk_in)
    db.session.commit()
    asha = User.query.filter_by(email="asha@example.com").one()

    h = auth(admin_token)
    campaign = client.post("/admin/campaigns", headers=h, json={
        "name": "Diwali", "subject": "Festive boxes are here", "message": "Free delivery\nthis week",
        "start_date": "2030-10-01", "end_date": "2030-10-31", "user_ids": [asha.id, walk_in.id],
        "image_url": "https://cdn.example.com/diwali.png",
    }).get_json()["data"]["campaign"]

    r = client.post(f"/admin/campaigns/{campaign['id']}/send", headers=h)
    assert r.status_code == 200
    assert r.get_json()["message"] == "Emails sent to 1 of 2 users."
    assert [(m["To"], m["Subject"]) for m in mailer] == [("asha@example.com", "Festive boxes are here")]
    html = mailer[0].get_body(preferencelist=("html",)).get_content()
    assert "Hello Asha" in html
    assert "diwali.png" in html


def test_contact_message_is_forwarded_to_store(app, client, mailer):
    app.config["STORE_EMAIL"] = "orders@example.com"
    r = client.post("/messages", json={
        "name": "Ravi", "phone": "9000012345", "email": "ravi@example.com", "message": "Do you ship to Pune?",
    })
    assert r.status_code == 201
    assert mailer[-1]["To"] == "orders@example.com"
    assert mailer[-1]["Subject"] == "Amma's Kitchen - Message from Ravi"
    html = mailer[-1].get_body(preferencelist=("html",)).get_content()
    assert "Do you ship to Pune?" in html
    assert "ravi@example.com" in html
