# storefront/services/coupon_service.py
from datetime import datetime, timezone

from sqlalchemy import func

from ..errors import ApiError
from ..extensions import db
from ..logger import log
from ..model import CouponCode, CouponDiscount, CouponProduct, CouponUser, Order, Product, User
from ..utils.money import D
from .discount_engine import DiscountRule

ALL = "All"
REQUIRED_FIELDS = ("code", "start_date", "end_date", "discounts", "product_ids", "user_ids")


def parse_iso8601(s):
    if isinstance(s, datetime):
        return s
    if not s:
        return None
    s = str(s).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _flag(data, key, default):
    v = data.get(key)
    return default if v is None else bool(v)


def _wants_all(ids) -> bool:
    if isinstance(ids, str):
        return ids == ALL
    return isinstance(ids, (list, tuple)) and ALL in ids


def _to_ids(values, field):
    try:
        return [int(v) for v in values]
    except (TypeError, ValueError):
        raise ApiError(f"{field} must be a list of ids or 'All'", 400)


def _resolve_product_ids(product_ids):
    # no rows stored means the coupon applies to every product
    if _wants_all(product_ids):
        return set()
    ids = set(_to_ids(product_ids, "product_ids"))
    known = {pid for (pid,) in db.session.query(Product.id).filter(Product.id.in_(ids)).all()} if ids else set()
    missing = ids - known
    if missing:
        raise ApiError("Unknown product ids", 422, {"product_ids": sorted(missing)})
    return ids


def _resolve_user_ids(user_ids):
    if _wants_all(user_ids):
        ids = {uid for (uid,) in db.session.query(User.id).all()}
    else:
        ids = set(_to_ids(user_ids, "user_ids"))
    admins = {uid for (uid,) in db.session.query(User.id).filter(User.role == "admin").all()}
    return ids | admins


def _sync_discounts(coupon: CouponCode, discounts):
    by_name = {d.name: d for d in coupon.discounts}
    wanted = set()
    for raw in discounts:
        name = (raw.get("name") or "").strip()
        if not name:
            raise ApiError("discount name is required", 400)
        try:
            value = D(raw.get("discount"))
        except ArithmeticError:
            raise ApiError(f"discount for {name} must be numeric", 400)
        flat = bool(raw.get("flat_rate", False))
        wanted.add(name)
        row = by_name.get(name)
        if row:
            row.discount = value
            row.flat_rate = flat
        else:
            coupon.discounts.append(CouponDiscount(name=name, discount=value, flat_rate=flat))

    for row in list(coupon.discounts):
        if row.name not in wanted:
            coupon.discounts.remove(row)


def _sync_links(rows, wanted, key, make):
    existing = {getattr(r, key) for r in rows}
    for r in list(rows):
        if getattr(r, key) not in wanted:
            rows.remove(r)
    for v in sorted(wanted - existing):
        rows.append(make(v))


def save_coupon(data: dict):
    """
    Create a coupon, or update the one named by ``coupon_id``.

    Returns ``(coupon, created)``. Discounts are matched by name, product and
    user links are replaced by the requested sets. Admin accounts are always
    linked so staff can test any coupon.
    """
    missing = [f for f in REQUIRED_FIELDS if data.get(f) in (None, "", [])]
    if missing:
        raise ApiError(f"Missing required fields: {', '.join(missing)}", 400)

    code = str(data["code"]).strip()
    start_date = parse_iso8601(data.get("start_date"))
    end_date = parse_iso8601(data.get("end_date"))
    if not start_date or not end_date:
        raise ApiError("start_date and end_date must be ISO-8601 dates", 400)
    if end_date < start_date:
        raise ApiError("end_date must not be before start_date", 400)

    coupon = None
    coupon_id = data.get("coupon_id")
    if coupon_id:
        coupon = db.session.get(CouponCode, int(coupon_id))
        if not coupon:
            raise ApiError("Coupon not found.", 404)

    clash = CouponCode.query.filter(func.lower(CouponCode.code) == code.lower())
    if coupon:
        clash = clash.filter(CouponCode.id != coupon.id)
    if clash.first():
        raise ApiError("Coupon code already exists", 409)

    created = coupon is None
    if created:
        coupon = CouponCode()
        db.session.add(coupon)

    coupon.code = code
    coupon.start_date = start_date
    coupon.end_date = end_date
    coupon.is_active = _flag(data, "is_active", True)
    coupon.is_groupable = _flag(data, "is_groupable", True)
    coupon.is_for_new_users = _flag(data, "is_for_new_users", False)
    coupon.is_for_all_users = _flag(data, "is_for_all_users", False)

    _sync_discounts(coupon, data["discounts"])
    _sync_links(coupon.products, _resolve_product_ids(data["product_ids"]), "product_id",
                lambda pid: CouponProduct(product_id=pid))
    _sync_links(coupon.users, _resolve_user_ids(data["user_ids"]), "user_id",
                lambda uid: CouponUser(user_id=uid))

    db.session.commit()
    log.info("coupon %s id=%s code=%s", "created" if created else "updated", coupon.id, coupon.code)
    return coupon, created


def find_coupon(code: str | None):
    code = (code or "").strip()
    if not code:
        return None
    return CouponCode.query.filter(func.lower(CouponCode.code) == code.lower()).first()


def check_coupon(coupon: CouponCode | None, user: User | None, now: datetime | None = None,
                 exclude_order_id: int | None = None):
    """Raise ApiError(422) unless ``user`` may use ``coupon`` at ``now``.

    ``exclude_order_id`` is left out of the new-users check, so an order placed
    with a new-users coupon can still be edited.
    """
    if not coupon:
        raise ApiError("Invalid coupon code.", 422)
    now = now or datetime.utcnow()

    if not coupon.is_active:
        raise ApiError("Coupon is not active.", 422)
    if now < coupon.start_date or now > coupon.end_date:
        raise ApiError("Coupon is not valid at this time.", 422)

    if coupon.is_for_new_users and user is not None:
        q = db.session.query(Order.id).filter(Order.user_id == user.id)
        if exclude_order_id is not None:
            q = q.filter(Order.id != exclude_order_id)
        if q.first() is not None:
            raise ApiError("Coupon is only for new users.", 422)

    if not coupon.is_for_all_users:
        if user is None or user.id not in coupon.user_ids:
            raise ApiError("Coupon is not available for this user.", 422)
    return coupon


def rules_for_coupon(coupon: CouponCode | None) -> list[DiscountRule]:
    if not coupon:
        return []
    applies_to = coupon.product_ids
    return [
        DiscountRule(
            name=d.name,
            discount_value=D(d.discount),
            is_flat_rate=bool(d.flat_rate),
            applies_to=applies_to,
        )
        for d in coupon.discounts
    ]
