# storefront/coupon/routes.py
from flask import g, request

from . import bp
from ..errors import ApiError
from ..extensions import db
from ..model import CouponCode
from ..services.cart_service import cart_summary, get_user_cart
from ..services.coupon_service import check_coupon, find_coupon, save_coupon
from ..utils.api import ok
from ..utils.decorators import admin_required, session_optional


def _parse_bool(v):
    if v is None or v == "":
        return None
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


@bp.post("")
@admin_required
def save():
    data = request.get_json(silent=True) or {}
    coupon, created = save_coupon(data)
    msg = "Coupon created successfully." if created else "Coupon updated successfully."
    return ok(msg, {"coupon": coupon.as_api()}, 201 if created else 200)


@bp.get("")
@admin_required
def list_coupons():
    q = CouponCode.query
    active = _parse_bool(request.args.get("active"))
    if active is not None:
        q = q.filter(CouponCode.is_active.is_(active))
    coupons = q.order_by(CouponCode.id.desc()).all()
    return ok("Coupons fetched", {"coupons": [c.as_api() for c in coupons]})


@bp.get("/<int:coupon_id>")
@admin_required
def get_coupon(coupon_id):
    coupon = db.session.get(CouponCode, coupon_id)
    if not coupon:
        raise ApiError("Coupon not found.", 404)
    return ok("Coupon fetched", {"coupon": coupon.as_api()})


@bp.post("/validate")
@session_optional
def validate():
    """Preview a coupon on a cart without attaching it."""
    data = request.get_json(silent=True) or {}
    if not data.get("cart_id"):
        raise ApiError("cart_id is required", 400)
    cart = get_user_cart(int(data["cart_id"]), g.current_user)
    coupon = check_coupon(find_coupon(data.get("code")), cart.user)
    summary = cart_summary(cart, data.get("shipping_method"), coupon=coupon)
    return ok("Coupon is valid", summary)
