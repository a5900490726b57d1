# --- storefront/model/user.py ---
import re
from datetime import datetime, timedelta

from sqlalchemy.orm import validates
from sqlalchemy.sql import func

from ..extensions import db


def _utcnow():
    return datetime.utcnow()


def _session_expiry():
    return _utcnow() + timedelta(days=1)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(180), nullable=False, default="User")
    username = db.Column(db.String(120), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=True, index=True)
    phone = db.Column(db.String(32), unique=True, nullable=False)
    phone_key = db.Column(db.String(16), index=True)   # last 10 digits, for matching
    password_hash = db.Column(db.String(255), nullable=False, default="")   # "" = guest account
    otp = db.Column(db.String(4), nullable=True)
    role = db.Column(db.String(50), nullable=False, default="user", index=True)  # roles: user, admin

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    addresses = db.relationship(
        "UserAddress",
        backref="user",
        cascade="all, delete-orphan",
        lazy=True,
        order_by="UserAddress.id.asc()",
    )
    orders = db.relationship("Order", backref="user", lazy="dynamic")

    @validates("phone")
    def _derive_phone_key(self, key, value):
        digits = re.sub(r"\D", "", value or "")
        self.phone_key = digits[-10:] or None
        return value

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def as_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
        }


class UserSession(db.Model):
    __tablename__ = "usersessions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = db.Column(db.String(1024), unique=True, nullable=False)
    prev_token = db.Column(db.String(1024), nullable=False)
    expiry = db.Column(db.DateTime, nullable=False, default=_session_expiry)
    is_expired = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    user = db.relationship("User", lazy="joined")


class UserAddress(db.Model):
    __tablename__ = "useraddresses"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(180), nullable=False)
    address_line1 = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(120), nullable=False)
    state = db.Column(db.String(120), nullable=False)
    country = db.Column(db.String(120), nullable=False, default="India")
    pincode = db.Column(db.String(16), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    def as_api(self):
        return {
            "id": self.id,
            "name": self.name,
            "address_line1": self.address_line1,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "pincode": self.pincode,
            "phone": self.phone,
            "is_default": self.is_default,
        }

    def as_html(self):
        return (
            f"{self.name}<br/>{self.address_line1}<br/>{self.city}, {self.state}"
            f"<br/>{self.country} - {self.pincode}"
        )
