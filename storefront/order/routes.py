# storefront/order/routes.py
from flask import g, request

from . import bp
from ..errors import ApiError
from ..services.order_service import invoice_data, lookup_order, order_api, place_order, user_orders
from ..services.user_service import find_or_create_user
from ..utils.api import ok
from ..utils.decorators import session_optional, session_required


def _to_int(v):
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


@bp.post("")
@session_optional
def save():
    """
    Place an order (or update one with ``id``) from a cart.
    Guests identify themselves with mobile/name/email.
    """
    data = request.get_json(silent=True) or {}
    user = g.current_user
    if not user:
        if not (data.get("mobile") or "").strip():
            raise ApiError("mobile is required", 422)
        user = find_or_create_user(data.get("name"), data.get("mobile"), data.get("email"))
    order = place_order(data, user)
    return ok("Order placed" if not data.get("id") else "Order updated", order_api(order),
              201 if not data.get("id") else 200)


@bp.post("/lookup")
def lookup():
    data = request.get_json(silent=True) or {}
    order = lookup_order(_to_int(data.get("id")), data.get("phone"))
    return ok("Order fetched", order_api(order))


@bp.get("/mine")
@session_required
def mine():
    orders = [order_api(o) for o in user_orders(g.current_user)]
    return ok("Orders fetched", {"orders": orders})


@bp.get("/<int:order_id>/invoice")
def invoice(order_id):
    order = lookup_order(order_id, request.args.get("phone"))
    return ok("Invoice", invoice_data(order))
