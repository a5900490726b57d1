# --- storefront/model/coupon.py ---

from sqlalchemy.sql import func

from ..extensions import db


class CouponCode(db.Model):
    __tablename__ = "couponcodes"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), unique=True, nullable=False, index=True)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    is_groupable = db.Column(db.Boolean, nullable=False, default=True)
    is_for_new_users = db.Column(db.Boolean, nullable=False, default=False)   # only users without orders
    is_for_all_users = db.Column(db.Boolean, nullable=False, default=False)   # else only linked users

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    discounts = db.relationship(
        "CouponDiscount",
        backref="coupon",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CouponDiscount.id.asc()",
    )
    # no rows = coupon applies to every product
    products = db.relationship("CouponProduct", backref="coupon", cascade="all, delete-orphan", lazy="selectin")
    users = db.relationship("CouponUser", backref="coupon", cascade="all, delete-orphan", lazy="selectin")

    @property
    def product_ids(self):
        return frozenset(p.product_id for p in self.products)

    @property
    def user_ids(self):
        return frozenset(u.user_id for u in self.users)

    def as_api(self):
        return {
            "id": self.id,
            "code": self.code,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "is_active": self.is_active,
            "is_groupable": self.is_groupable,
            "is_for_new_users": self.is_for_new_users,
            "is_for_all_users": self.is_for_all_users,
            "discounts": [d.as_api() for d in self.discounts],
            "product_ids": sorted(self.product_ids),
            "user_ids": sorted(self.user_ids),
        }


class CouponDiscount(db.Model):
    __tablename__ = "coupondiscounts"
    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("couponcodes.id", ondelete="CASCADE"), index=True, nullable=False)
    name = db.Column(db.String(64), nullable=False)      # "Shipping" discounts the delivery fee
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    flat_rate = db.Column(db.Boolean, nullable=False, default=False)

    def as_api(self):
        return {
            "id": self.id,
            "name": self.name,
            "discount": float(self.discount or 0),
            "flat_rate": self.flat_rate,
        }


class CouponProduct(db.Model):
    __tablename__ = "couponproducts"
    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("couponcodes.id", ondelete="CASCADE"), index=True, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), index=True, nullable=False)


class CouponUser(db.Model):
    __tablename__ = "couponusers"
    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("couponcodes.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)


class OrderCoupon(db.Model):
    __tablename__ = "ordercoupons"
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    coupon_id = db.Column(db.Integer, db.ForeignKey("couponcodes.id", ondelete="CASCADE"), index=True, nullable=False)
    coupon = db.relationship("CouponCode", lazy="joined")
