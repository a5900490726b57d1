# ------ storefront/model/__init__.py ------

from .user import User, UserSession, UserAddress
from .category import Category
from .product import Product, ProductImage, PriceList
from .cart import Cart, CartProduct
from .coupon import CouponCode, CouponDiscount, CouponProduct, CouponUser, OrderCoupon
from .order import Order
from .campaign import AdCampaign, AdCampaignUser
from .message import Message

__all__ = [
    "User",
    "UserSession",
    "UserAddress",
    "Category",
    "Product",
    "ProductImage",
    "PriceList",
    "Cart",
    "CartProduct",
    "CouponCode",
    "CouponDiscount",
    "CouponProduct",
    "CouponUser",
    "OrderCoupon",
    "Order",
    "AdCampaign",
    "AdCampaignUser",
    "Message",
]
