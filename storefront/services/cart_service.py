# storefront/services/cart_service.py
from ..errors import ApiError
from ..extensions import db
from ..logger import log
from ..model import Cart, CartProduct, PriceList
from ..model.cart import CART_CREATED
from ..utils.money import D, HOME_DELIVERY, round_money, shipping_fee_for, to_float
from .coupon_service import check_coupon, find_coupon, rules_for_coupon
from .discount_engine import compute_discounts


def _parse_lines(products):
    """Validate ``[{product_id, price_list_id, quantity}]``; the last entry per product wins."""
    if not isinstance(products, list):
        raise ApiError("products must be a list", 422)

    lines = {}
    for raw in products:
        if not isinstance(raw, dict):
            raise ApiError("each product must be an object", 422)
        try:
            product_id = int(raw.get("product_id"))
            price_list_id = int(raw.get("price_list_id"))
            quantity = int(raw.get("quantity", 1))
        except (TypeError, ValueError):
            raise ApiError("product_id, price_list_id and quantity must be integers", 422)
        if quantity < 1:
            raise ApiError("quantity must be at least 1", 422, {"product_id": product_id})
        lines[product_id] = (price_list_id, quantity)

    if lines:
        pairs = {
            (pl.id, pl.product_id)
            for pl in PriceList.query.filter(PriceList.id.in_([v[0] for v in lines.values()])).all()
        }
        unknown = [pid for pid, (plid, _) in lines.items() if (plid, pid) not in pairs]
        if unknown:
            raise ApiError("Unknown product or price list", 422, {"product_ids": unknown})
    return lines


def get_user_cart(cart_id, user) -> Cart:
    cart = db.session.get(Cart, cart_id)
    if not cart or (user is not None and cart.user_id != user.id and not user.is_admin):
        raise ApiError("Cart not found", 404)
    return cart


def save_cart(data: dict, user) -> Cart:
    """Create a cart for ``user`` or replace the contents of the cart named by ``id``."""
    lines = _parse_lines(data.get("products") or [])
    cart_id = data.get("id")

    if cart_id:
        cart = get_user_cart(cart_id, user)
        if cart.status != CART_CREATED:
            raise ApiError("Cart is already ordered", 409)
        cart.updated_by = user.username
    else:
        if not lines:
            raise ApiError("products are required", 422)
        cart = Cart(user_id=user.id, status=CART_CREATED, created_by=user.username, updated_by=user.username)
        db.session.add(cart)

    by_product = {cp.product_id: cp for cp in cart.items}
    for cp in list(cart.items):
        if cp.product_id not in lines:
            cart.items.remove(cp)
    for product_id, (price_list_id, quantity) in lines.items():
        cp = by_product.get(product_id)
        if cp:
            cp.price_list_id = price_list_id
            cp.quantity = quantity
        else:
            cart.items.append(CartProduct(product_id=product_id, price_list_id=price_list_id, quantity=quantity))

    db.session.commit()
    # relationships were loaded before the ids changed
    db.session.refresh(cart)
    log.info("cart saved id=%s user_id=%s lines=%s", cart.id, cart.user_id, len(lines))
    return cart


def pending_cart(user):
    return (Cart.query
            .filter(Cart.user_id == user.id, Cart.status == CART_CREATED)
            .order_by(Cart.created_at.desc(), Cart.id.desc())
            .first())


def apply_coupon(cart: Cart, code: str) -> Cart:
    if cart.status != CART_CREATED:
        raise ApiError("Cart is already ordered", 409)
    coupon = check_coupon(find_coupon(code), cart.user)
    cart.coupon_id = coupon.id
    db.session.commit()
    db.session.refresh(cart)
    log.info("coupon %s applied to cart %s", coupon.code, cart.id)
    return cart


def remove_coupon(cart: Cart) -> Cart:
    cart.coupon_id = None
    db.session.commit()
    db.session.refresh(cart)
    return cart


def price_lines(line_items, coupon, shipping_method):
    """Totals for line items priced with ``coupon`` under ``shipping_method``."""
    line_items = list(line_items)
    subtotal = sum((it.line_total for it in line_items), D(0))
    result = compute_discounts(line_items, rules_for_coupon(coupon))

    shipping_fee = shipping_fee_for(subtotal, shipping_method)
    # the shipping discount only reduces a fee that is actually charged
    shipping_discount = result.shipping_discount if shipping_fee > 0 else D(0)
    total = subtotal - result.total_product_discount + shipping_fee - shipping_discount

    return {
        "subtotal": round_money(subtotal),
        "product_discount": round_money(result.total_product_discount),
        "shipping_fee": round_money(shipping_fee),
        "shipping_discount": round_money(shipping_discount),
        "total": round_money(total),
    }


def cart_summary(cart: Cart, shipping_method=None, coupon=None):
    """
    Cart lines and totals. ``coupon`` previews a coupon that is not attached;
    otherwise the cart's own coupon is used.
    """
    coupon = coupon or cart.coupon
    totals = price_lines(cart.line_items(), coupon, shipping_method or HOME_DELIVERY)
    return {
        "id": cart.id,
        "user_id": cart.user_id,
        "status": cart.status,
        "items": [cp.as_api() for cp in cart.items],
        "coupon_code": coupon.code if coupon else None,
        "shipping_method": shipping_method or HOME_DELIVERY,
        **{k: to_float(v) for k, v in totals.items()},
    }
