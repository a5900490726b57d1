# storefront/services/order_service.py
from datetime import datetime

from flask import current_app

from ..errors import ApiError
from ..extensions import db
from ..logger import log
from ..model import Order, OrderCoupon, UserAddress
from ..model.cart import CART_CREATED, CART_ORDERED
from ..model.order import ORDER_DELIVERED, ORDER_ORDERED, ORDER_SHIPPED, ORDER_STATUSES
from ..utils.money import HOME_DELIVERY, STORE_PICKUP, format_money, to_float
from .cart_service import get_user_cart, price_lines
from .coupon_service import check_coupon, find_coupon
from .mail_service import send_mail
from .user_service import phone_key

SHIPPING_METHODS = (HOME_DELIVERY, STORE_PICKUP)
ADDRESS_FIELDS = ("address", "city", "state", "pincode")


def _resolve_address(data: dict, user) -> UserAddress:
    address_id = data.get("user_address_id")
    if address_id:
        addr = db.session.get(UserAddress, int(address_id))
        if not addr or addr.user_id != user.id:
            raise ApiError("User Address not found", 422)
        return addr

    default = (UserAddress.query
               .filter_by(user_id=user.id, is_default=True)
               .order_by(UserAddress.id.desc())
               .first())
    if default:
        return default

    missing = [f for f in ADDRESS_FIELDS if not str(data.get(f) or "").strip()]
    if missing:
        raise ApiError(f"Missing address fields: {', '.join(missing)}", 422)

    addr = UserAddress(
        user_id=user.id,
        name=(data.get("name") or user.name or "").strip() or user.name,
        address_line1=str(data["address"]).strip(),
        city=str(data["city"]).strip(),
        state=str(data["state"]).strip(),
        country=(data.get("country") or "India").strip(),
        pincode=str(data["pincode"]).strip(),
        phone=str(data.get("phone") or data.get("mobile") or user.phone).strip(),
        is_default=True,
    )
    db.session.add(addr)
    db.session.flush()
    return addr


def _resolve_coupon(code, cart, user, order=None):
    exclude = order.id if order is not None else None
    if code:
        return check_coupon(find_coupon(code), user, exclude_order_id=exclude)
    if cart.coupon:
        return check_coupon(cart.coupon, user, exclude_order_id=exclude)
    return None


def place_order(data: dict, user) -> Order:
    """Create an order for ``user`` from one of their carts, or update the order named by ``id``."""
    shipping_method = (data.get("shipping_method") or "").strip()
    payment_method = (data.get("payment_method") or "").strip()
    if shipping_method not in SHIPPING_METHODS:
        raise ApiError(f"shipping_method must be one of: {', '.join(SHIPPING_METHODS)}", 422)
    if not payment_method:
        raise ApiError("payment_method is required", 422)
    if not data.get("cart_id"):
        raise ApiError("cart_id is required", 422)

    order = None
    if data.get("id"):
        order = db.session.get(Order, int(data["id"]))
        if not order or order.user_id != user.id:
            raise ApiError("Order not found", 404)

    cart = get_user_cart(int(data["cart_id"]), user)
    if cart.user_id != user.id:
        raise ApiError("Cart not found", 404)
    reusing_cart = order is not None and order.cart_id == cart.id
    if cart.status != CART_CREATED and not reusing_cart:
        raise ApiError("Cart is already ordered", 409)
    if not cart.items:
        raise ApiError("Cart is empty", 422)

    address = _resolve_address(data, user)
    coupon = _resolve_coupon((data.get("coupon_code") or "").strip(), cart, user, order)

    created = order is None
    if created:
        order = Order(user_id=user.id, status=ORDER_ORDERED)
        db.session.add(order)

    order.user_address_id = address.id
    order.cart_id = cart.id
    order.shipping_method = shipping_method
    order.payment_method = payment_method
    order.notes = data.get("notes")

    order.coupons.clear()
    if coupon:
        order.coupons.append(OrderCoupon(coupon_id=coupon.id))
        cart.coupon_id = coupon.id

    cart.status = CART_ORDERED
    cart.updated_by = user.username
    db.session.commit()
    db.session.refresh(order)
    log.info("order %s id=%s user_id=%s cart_id=%s", "placed" if created else "updated", order.id, user.id, cart.id)

    if created:
        notify_status(order, "Order confirmation")
    return order


def order_summary(order: Order):
    totals = price_lines(order.cart.line_items(), order.coupon, order.shipping_method)
    return {
        "items": [cp.as_api() for cp in order.cart.items],
        "coupon_code": order.coupon.code if order.coupon else None,
        **totals,
    }


def order_api(order: Order):
    summary = order_summary(order)
    return {
        **order.as_api(),
        "items": summary["items"],
        **{k: to_float(v) for k, v in summary.items() if k not in ("items", "coupon_code")},
    }


def lookup_order(order_id, phone) -> Order:
    order = db.session.get(Order, order_id) if order_id else None
    if not order:
        raise ApiError("Order not found", 404)
    if not phone or phone_key(phone) != order.user.phone_key:
        raise ApiError("Phone number does not match the order", 400)
    return order


def user_orders(user):
    return user.orders.order_by(Order.ordered_date.desc(), Order.id.desc()).all()


def invoice_data(order: Order):
    cfg = current_app.config
    summary = order_summary(order)
    shipping_address = order.address.as_html() if order.address else ""
    if order.shipping_method == STORE_PICKUP:
        shipping_address = cfg.get("STORE_PICKUP_ADDRESS") or "Store pickup"

    return {
        "order": order.as_api(),
        "store": {
            "name": cfg.get("STORE_NAME"),
            "email": cfg.get("STORE_EMAIL"),
            "phone": cfg.get("STORE_PHONE"),
        },
        "customer": order.user.as_dict() if order.user else None,
        "billing_address": order.address.as_html() if order.address else "",
        "shipping_address": shipping_address,
        "items": [
            {
                **cp.as_api(),
                "unit_price_formatted": format_money(cp.unit_price_dec()),
                "line_total_formatted": format_money(cp.line_total_dec()),
            }
            for cp in order.cart.items
        ],
        "coupon_code": summary["coupon_code"],
        "subtotal": to_float(summary["subtotal"]),
        "product_discount": to_float(summary["product_discount"]),
        "shipping_fee": to_float(summary["shipping_fee"]),
        "shipping_discount": to_float(summary["shipping_discount"]),
        "total": to_float(summary["total"]),
        "formatted": {
            k: format_money(summary[k])
            for k in ("subtotal", "product_discount", "shipping_fee", "shipping_discount", "total")
        },
    }


def notify_status(order: Order, headline: str) -> bool:
    user = order.user
    if not user or not user.email:
        return False
    return send_mail(
        user.email,
        f"{headline} - Order #{order.id}",
        "order_status",
        headline=headline,
        invoice=invoice_data(order),
    )


def update_status(order: Order, data: dict) -> Order:
    status = (data.get("status") or "").strip()
    if status not in ORDER_STATUSES:
        raise ApiError(f"status must be one of: {', '.join(ORDER_STATUSES)}", 422)

    if data.get("expected_delivery_date"):
        try:
            order.expected_delivery_date = datetime.strptime(str(data["expected_delivery_date"])[:10], "%Y-%m-%d")
        except ValueError:
            raise ApiError("expected_delivery_date must be YYYY-MM-DD", 422)
    if "delivery_note" in data:
        order.delivery_note = data.get("delivery_note") or ""

    changed = order.status != status
    order.status = status
    db.session.commit()
    log.info("order %s status=%s changed=%s", order.id, status, changed)

    if changed and status in (ORDER_SHIPPED, ORDER_DELIVERED):
        notify_status(order, f"Your order has been {status.lower()}")
    return order
