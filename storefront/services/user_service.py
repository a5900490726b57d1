# storefront/services/user_service.py
import re
import secrets

from sqlalchemy import func, or_
from werkzeug.security import generate_password_hash

from ..errors import ApiError
from ..extensions import db
from ..logger import log
from ..model import Order, User, UserAddress

_LEADING_COUNTRY_CODE = re.compile(r"^\+\d{1,2}|\s+")
ROLES = ("user", "admin")
MIN_PASSWORD = 6
ADDRESS_FIELDS = ("address_line1", "city", "state", "pincode")


def normalize_phone(raw: str | None) -> str:
    """'+91 98765 43210' -> '9876543210' (drops a 1-2 digit country code and spaces)."""
    return _LEADING_COUNTRY_CODE.sub("", (raw or "").strip())


def phone_key(raw: str | None) -> str:
    return re.sub(r"\D", "", raw or "")[-10:]


def generate_otp(length: int = 4) -> str:
    if length <= 0:
        raise ValueError("Length must be a positive integer.")
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(10 ** length - low))


def mask_email(email: str | None) -> str:
    return re.sub(r"(.{2}).*(@.*)", r"\1***\2", email or "")


def find_user(identifier=None, phone=None, email=None, username=None):
    """First user matching username, email or the last ten digits of the phone."""
    conds = []
    if username:
        conds.append(User.username == username.strip())
    if identifier:
        ident = identifier.strip()
        conds.append(User.username == ident)
        conds.append(func.lower(User.email) == ident.lower())
        if "@" not in ident and phone_key(ident):
            conds.append(User.phone_key == phone_key(ident))
    if phone:
        conds.append(User.username == normalize_phone(phone))
        if phone_key(phone):
            conds.append(User.phone_key == phone_key(phone))
    if email:
        conds.append(func.lower(User.email) == email.strip().lower())
    if not conds:
        return None
    return User.query.filter(or_(*conds)).order_by(User.id.asc()).first()


def find_or_create_user(name=None, mobile=None, email=None) -> User:
    """Guest checkout: reuse an account matching the phone/email or open a passwordless one."""
    user = find_user(phone=mobile, email=email)
    if user:
        return user

    phone = normalize_phone(mobile)
    if not phone:
        raise ValueError("mobile is required")

    user = User(
        name=(name or "").strip() or "User",
        username=phone,
        email=(email or "").strip().lower() or None,
        phone=phone,
        password_hash="",
        otp=generate_otp(4),
    )
    db.session.add(user)
    db.session.flush()
    log.info("guest user created id=%s", user.id)
    return user


def set_role(user: User, role: str):
    role = (role or "").strip().lower()
    if role not in ROLES:
        raise ApiError("Invalid role", 400)
    # Prevent demoting the LAST admin
    if user.role == "admin" and role != "admin":
        if db.session.query(User).filter_by(role="admin").count() <= 1:
            raise ApiError("Cannot demote the last admin", 400)
    user.role = role


def _sync_addresses(user: User, addresses):
    keep = {int(a["id"]) for a in addresses if a.get("id")}
    for addr in list(user.addresses):
        if addr.id in keep:
            continue
        if Order.query.filter_by(user_address_id=addr.id).first():
            raise ApiError("Address is used by an order and cannot be deleted", 409, {"address_id": addr.id})
        user.addresses.remove(addr)

    by_id = {a.id: a for a in user.addresses}
    default = None
    for raw in addresses:
        if raw.get("id"):
            addr = by_id.get(int(raw["id"]))
            if not addr:
                raise ApiError("Address not found", 404, {"address_id": raw["id"]})
        else:
            missing = [f for f in ADDRESS_FIELDS if not str(raw.get(f) or "").strip()]
            if missing:
                raise ApiError(f"Missing address fields: {', '.join(missing)}", 400)
            addr = UserAddress(name=user.name, phone=user.phone)
            user.addresses.append(addr)
        for field in ("name", "address_line1", "city", "state", "country", "pincode", "phone"):
            if raw.get(field) not in (None, ""):
                setattr(addr, field, str(raw[field]).strip())
        if raw.get("is_default"):
            default = addr

    default = default or next((a for a in user.addresses if a.is_default), None) or \
        (user.addresses[0] if user.addresses else None)
    for addr in user.addresses:
        addr.is_default = addr is default


def save_user(data: dict):
    """
    Admin upsert of an account and its whole address book.

    ``data`` is ``{"user": {...}, "addresses": [...]}``. The account is matched
    by id, then phone, then email. Addresses missing from the list are removed.
    Returns ``(user, created, otp_issued)``; an OTP is issued for a new account
    without a password, or when ``reset_password`` is set.
    """
    fields = data.get("user")
    addresses = data.get("addresses")
    if not isinstance(fields, dict) or not fields:
        raise ApiError("User data is required.", 400)
    if not isinstance(addresses, list):
        raise ApiError("Addresses array is required.", 400)

    name = (fields.get("name") or "").strip()
    phone = normalize_phone(fields.get("phone"))
    email = (fields.get("email") or "").strip().lower() or None
    password = fields.get("password") or ""
    if not name or not phone:
        raise ApiError("Name and phone are required", 400)
    if password and len(password) < MIN_PASSWORD:
        raise ApiError(f"Password required, min {MIN_PASSWORD} chars", 400)

    user = None
    if fields.get("id"):
        user = db.session.get(User, int(fields["id"]))
        if not user:
            raise ApiError("User not found", 404)
    user = user or find_user(phone=phone) or (find_user(email=email) if email else None)

    # omitted fields keep their stored values
    username = (fields.get("username") or "").strip() or (user.username if user else phone)
    if user and "email" not in fields:
        email = user.email

    conds = [User.username == username, User.phone_key == phone_key(phone)]
    if email:
        conds.append(func.lower(User.email) == email)
    clash = User.query.filter(or_(*conds))
    if user:
        clash = clash.filter(User.id != user.id)
    if clash.first():
        raise ApiError("User with provided email, username, or phone already exists.", 409)

    created = user is None
    if created:
        user = User(password_hash="")
        db.session.add(user)

    user.name = name
    user.phone = phone
    user.email = email
    user.username = username
    if password:
        user.password_hash = generate_password_hash(password)
        user.otp = None
    if fields.get("role"):
        set_role(user, fields["role"])

    db.session.flush()
    _sync_addresses(user, addresses)

    otp_issued = not password and ((created and not user.has_password) or bool(fields.get("reset_password")))
    if otp_issued:
        user.otp = generate_otp(4)

    db.session.commit()
    log.info("user %s by admin id=%s addresses=%s", "created" if created else "updated", user.id, len(addresses))
    return user, created, otp_issued
