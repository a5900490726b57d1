# storefront/model/order.py
from datetime import datetime, timedelta

from sqlalchemy.sql import func

from ..extensions import db

ORDER_ORDERED = "Ordered"
ORDER_SHIPPED = "Shipped"
ORDER_DELIVERED = "Delivered"
ORDER_CANCELLED = "Cancelled"
ORDER_STATUSES = (ORDER_ORDERED, ORDER_SHIPPED, ORDER_DELIVERED, ORDER_CANCELLED)


def _expected_delivery():
    return datetime.utcnow() + timedelta(days=10)


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    user_address_id = db.Column(db.Integer, db.ForeignKey("useraddresses.id"), nullable=False)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)

    notes = db.Column(db.Text)
    delivery_note = db.Column(db.Text, default="")
    shipping_method = db.Column(db.String(64), nullable=False)
    payment_method = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ORDER_ORDERED, index=True)

    ordered_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    expected_delivery_date = db.Column(db.DateTime, nullable=False, default=_expected_delivery)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    address = db.relationship("UserAddress", lazy="joined")
    cart = db.relationship("Cart", lazy="joined")
    coupons = db.relationship(
        "OrderCoupon",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderCoupon.id.asc()",
    )

    @property
    def coupon(self):
        # one coupon per order: the first link wins
        return self.coupons[0].coupon if self.coupons else None

    def as_api(self):
        a = self.address
        return {
            "id": self.id,
            "name": a.name if a else None,
            "address": a.address_line1 if a else None,
            "city": a.city if a else None,
            "state": a.state if a else None,
            "pincode": a.pincode if a else None,
            "mobile": a.phone if a else None,
            "email": self.user.email if self.user else None,
            "notes": self.notes,
            "delivery_note": self.delivery_note,
            "shipping_method": self.shipping_method,
            "payment_method": self.payment_method,
            "cart_id": self.cart_id,
            "status": self.status,
            "ordered_date": self.ordered_date.isoformat() if self.ordered_date else None,
            "expected_delivery_date": self.expected_delivery_date.isoformat() if self.expected_delivery_date else None,
            "coupon_code": self.coupon.code if self.coupon else None,
        }
