# storefront/model/cart.py
from __future__ import annotations

from sqlalchemy.sql import func

from ..extensions import db
from ..services.discount_engine import LineItem
from ..utils.money import D

CART_CREATED = "Created"
CART_ORDERED = "Ordered"
CART_ABANDONED = "Abandoned"


class Cart(db.Model):
    __tablename__ = "carts"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    status = db.Column(db.String(16), default=CART_CREATED, index=True)
    created_by = db.Column(db.String(120))
    updated_by = db.Column(db.String(120))

    # single applied coupon; copied to the order on placement
    coupon_id = db.Column(db.Integer, db.ForeignKey("couponcodes.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    items = db.relationship(
        "CartProduct",
        backref="cart",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CartProduct.id.asc()"
    )
    user = db.relationship("User", lazy="joined")
    coupon = db.relationship("CouponCode", lazy="joined")

    def line_items(self) -> list[LineItem]:
        return [i.line_item() for i in self.items]


class CartProduct(db.Model):
    __tablename__ = "cartproducts"

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    price_list_id = db.Column(db.Integer, db.ForeignKey("pricelists.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", lazy="joined")
    price_list = db.relationship("PriceList", lazy="joined")

    # ---- price helpers ----
    def unit_price_dec(self):
        return D(self.price_list.unit_price if self.price_list else 0)

    def line_total_dec(self):
        return self.unit_price_dec() * D(self.quantity)

    def line_item(self) -> LineItem:
        return LineItem(product_id=self.product_id, quantity=self.quantity, unit_price=self.unit_price_dec())

    def as_api(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.product.name if self.product else None,
            "tagline": self.product.tagline if self.product else None,
            "image": self.product.main_image if self.product else None,
            "category": self.product.category.name if self.product and self.product.category else None,
            "price_list": self.price_list.as_api() if self.price_list else None,
            "quantity": self.quantity,
            "line_total": float(self.line_total_dec()),
        }
