# storefront/cart/routes.py
from flask import g, request

from . import bp
from ..errors import ApiError
from ..services.cart_service import (
    apply_coupon, cart_summary, get_user_cart, pending_cart, remove_coupon, save_cart,
)
from ..services.user_service import find_or_create_user
from ..utils.api import ok
from ..utils.decorators import session_optional, session_required


def _customer(data):
    """The signed-in user, else the guest matching (or created from) the contact fields."""
    if g.current_user:
        return g.current_user
    if not (data.get("mobile") or "").strip():
        raise ApiError("mobile is required for guest checkout", 422)
    return find_or_create_user(data.get("name"), data.get("mobile"), data.get("email"))


# ---- endpoints -------------------------------------------------------------

@bp.post("")
@session_optional
def save():
    """
    Body: { id?, products: [{product_id, price_list_id, quantity}], name, mobile, email }
    Header: Authorization: Bearer <token>   (optional)
    """
    data = request.get_json(silent=True) or {}
    user = _customer(data)
    cart = save_cart(data, user)
    return ok("Cart saved", cart_summary(cart), 200 if data.get("id") else 201)


@bp.get("/pending")
@session_required
def pending():
    cart = pending_cart(g.current_user)
    if not cart:
        return ok("No pending cart", {"cart": None})
    return ok("Pending cart", {"cart": cart_summary(cart)})


@bp.get("/<int:cart_id>")
@session_optional
def get_cart(cart_id):
    cart = get_user_cart(cart_id, g.current_user)
    return ok("cart", cart_summary(cart, request.args.get("shipping_method")))


@bp.post("/<int:cart_id>/coupon")
@session_optional
def attach_coupon(cart_id):
    data = request.get_json(silent=True) or {}
    code = (data.get("code") or "").strip()
    if not code:
        raise ApiError("code is required", 400)
    cart = apply_coupon(get_user_cart(cart_id, g.current_user), code)
    return ok("Coupon applied", cart_summary(cart))


@bp.delete("/<int:cart_id>/coupon")
@session_optional
def detach_coupon(cart_id):
    cart = remove_coupon(get_user_cart(cart_id, g.current_user))
    return ok("Coupon removed", cart_summary(cart))
