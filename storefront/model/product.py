# storefront/model/product.py
from sqlalchemy.sql import func

from ..extensions import db


class Product(db.Model):
    __tablename__ = "products"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True, index=True)
    tagline = db.Column(db.String(255))
    display_order = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, default=True, index=True)

    category_id = db.Column(
        db.Integer,
        db.ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True
    )

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    images = db.relationship(
        "ProductImage",
        backref="product",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProductImage.display_order.asc()",
    )
    price_lists = db.relationship(
        "PriceList",
        backref="product",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PriceList.id.asc()",
    )

    @property
    def main_image(self):
        return self.images[0].file_name if self.images else None

    def as_api(self):
        return {
            "id": self.id,
            "name": self.name,
            "tagline": self.tagline,
            "display_order": self.display_order,
            "is_active": self.is_active,
            "category": self.category.as_dict() if self.category else None,
            "images": [img.as_api() for img in self.images],
            "price_lists": [pl.as_api() for pl in self.price_lists],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ProductImage(db.Model):
    __tablename__ = "productimages"
    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = db.Column(db.String(512), nullable=False)    # relative path or full URL
    description = db.Column(db.String(255))
    display_order = db.Column(db.Integer, default=0)

    def as_api(self):
        return {
            "id": self.id,
            "file_name": self.file_name,
            "description": self.description,
            "display_order": self.display_order,
        }


class PriceList(db.Model):
    """One sellable pack size of a product, e.g. 250g at 120.00."""
    __tablename__ = "pricelists"
    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    weight = db.Column(db.String(64), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    base_price = db.Column(db.Numeric(12, 2), nullable=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    def as_api(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "weight": self.weight,
            "unit_price": float(self.unit_price or 0),
            "base_price": float(self.base_price) if self.base_price is not None else None,
        }
