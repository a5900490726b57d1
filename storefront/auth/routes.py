# storefront/auth/routes.py
from flask import g, request
from werkzeug.security import check_password_hash, generate_password_hash

from . import bp
from ..errors import ApiError
from ..extensions import db
from ..logger import log
from ..model import Order, User, UserAddress
from ..services.mail_service import send_mail
from ..services.session_service import (
    close_sessions, open_session, parse_bearer_token, renew_session, validate_session,
)
from ..services.user_service import (
    ADDRESS_FIELDS, MIN_PASSWORD, find_user, generate_otp, mask_email, normalize_phone,
)
from ..utils.api import ok
from ..utils.decorators import session_required


def _body():
    return request.get_json(silent=True) or {}


def _token_from_request(data):
    return (data.get("token") or "").strip() or parse_bearer_token(request.headers.get("Authorization"))


def _check_new_password(password):
    if not password or len(password) < MIN_PASSWORD:
        raise ApiError(f"Password required, min {MIN_PASSWORD} chars", 400)


def _send_otp(user, reason):
    send_mail(
        user.email,
        f"Your OTP for {reason}",
        "otp",
        name=user.name,
        otp=user.otp,
        email=user.email,
        phone=user.phone,
    )


@bp.post("/register")
def register():
    data = _body()
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    phone = normalize_phone(data.get("phone"))
    username = (data.get("username") or "").strip() or phone
    password = data.get("password") or ""

    if not name:
        raise ApiError("Name required", 400)
    if not email:
        raise ApiError("Email required", 400)
    if not phone:
        raise ApiError("Phone required", 400)
    _check_new_password(password)

    if find_user(identifier=username, phone=phone, email=email):
        raise ApiError("User with provided email, username, or phone already exists.", 409)

    # Bootstrap: very first account becomes admin
    is_first_user = db.session.query(User.id).count() == 0
    user = User(
        name=name,
        username=username,
        email=email,
        phone=phone,
        password_hash=generate_password_hash(password),
        role="admin" if is_first_user else "user",
    )
    db.session.add(user)
    db.session.flush()

    if all((data.get(f) or "") for f in ADDRESS_FIELDS):
        db.session.add(UserAddress(
            user_id=user.id,
            name=name,
            address_line1=data["address_line1"],
            city=data["city"],
            state=data["state"],
            country=data.get("country") or "India",
            pincode=str(data["pincode"]),
            phone=phone,
            is_default=True,
        ))

    db.session.commit()
    log.info("user registered id=%s role=%s", user.id, user.role)
    return ok("Account created successfully", {"user": user.as_dict()}, 201)


@bp.post("/check-availability")
def check_availability():
    """
    Body: { username?, email?, phone? }
    409 with one message per taken field, else 200.
    """
    data = _body()
    username = (data.get("username") or "").strip()
    email = (data.get("email") or "").strip().lower()
    phone = normalize_phone(data.get("phone"))
    if not (username or email or phone):
        raise ApiError("Missing required fields", 400)

    taken = {}
    if username and find_user(username=username):
        taken["username"] = "Username is already in use"
    if email and find_user(email=email):
        taken["email"] = "Email is already in use"
    if phone and find_user(phone=phone):
        taken["phone"] = "Phone number is already in use"
    if taken:
        raise ApiError("Some details are already in use", 409, taken)
    return ok("Available")


@bp.post("/login")
def login():
    data = _body()
    identifier = (data.get("identifier") or "").strip()
    password = data.get("password") or ""
    if not identifier:
        raise ApiError("Username, email or phone number is required", 400)

    user = find_user(identifier=identifier)
    if not user:
        raise ApiError("Invalid username, email or phone number.", 403)

    # accounts opened by guest checkout have no password yet
    if not user.has_password:
        if not user.email:
            raise ApiError("No password is set for this account. Please contact support.", 403)
        user.otp = generate_otp(4)
        db.session.commit()
        _send_otp(user, "setting your password")
        return ok(
            f"OTP has been sent to your registered email id : {mask_email(user.email)}.",
            {"otp_sent": True, "user_logged_in": False},
        )

    if not password or not check_password_hash(user.password_hash, password):
        raise ApiError("Invalid password.", 403)

    token = open_session(user)
    db.session.commit()
    log.info("login user_id=%s", user.id)
    return ok("You've logged in successfully", {
        "token": token,
        "user": user.as_dict(),
        "role": user.role,
        "user_logged_in": True,
    })


@bp.post("/verify-token")
def verify_token():
    session = validate_session(_token_from_request(_body()), allow_previous=True)
    new_token = renew_session(session)
    data = {"status": "ok", "role": session.user.role}
    if new_token:
        data["new_token"] = new_token
    return ok("Token is valid", data)


@bp.post("/logout")
def logout():
    token = _token_from_request(_body())
    if not token:
        raise ApiError("Token is required.", 400)
    session = validate_session(token)
    n = close_sessions(session.user_id)
    log.info("logout user_id=%s sessions=%s", session.user_id, n)
    return ok("Logged out", {"status": "ok"})


@bp.post("/forgot-password")
def forgot_password():
    data = _body()
    user = find_user(identifier=(data.get("identifier") or "").strip())
    if not user:
        raise ApiError("User not found.", 404)
    if not user.email:
        raise ApiError("No email address on this account.", 422)
    user.otp = generate_otp(4)
    db.session.commit()
    _send_otp(user, "resetting your password")
    return ok(f"OTP has been sent to your registered email id : {mask_email(user.email)}.")


@bp.post("/reset-password")
def reset_password():
    data = _body()
    otp = str(data.get("otp") or "").strip()
    password = data.get("password") or ""
    user = find_user(identifier=(data.get("identifier") or "").strip())
    if not user:
        raise ApiError("User not found.", 404)
    if not otp or not user.otp or otp != user.otp:
        raise ApiError("Invalid OTP.", 400)
    _check_new_password(password)

    user.password_hash = generate_password_hash(password)
    user.otp = None
    db.session.commit()
    close_sessions(user.id)
    return ok("Password has been reset successfully.")


@bp.post("/change-password")
@session_required
def change_password():
    data = _body()
    user = g.current_user
    old = data.get("old_password") or ""
    new = data.get("new_password") or ""
    if user.has_password and not check_password_hash(user.password_hash, old):
        raise ApiError("Old password is incorrect.", 403)
    _check_new_password(new)
    user.password_hash = generate_password_hash(new)
    db.session.commit()
    return ok("Password changed successfully.")


@bp.get("/me")
@session_required
def me():
    user = g.current_user
    return ok("OK", {
        "user": user.as_dict(),
        "addresses": [a.as_api() for a in user.addresses],
    })


# ---- address book ----------------------------------------------------------

def _own_address(address_id) -> UserAddress:
    addr = db.session.get(UserAddress, address_id)
    if not addr or addr.user_id != g.current_user.id:
        raise ApiError("Address not found", 404)
    return addr


def _make_default(addr: UserAddress):
    (UserAddress.query
     .filter(UserAddress.user_id == addr.user_id, UserAddress.id != addr.id)
     .update({UserAddress.is_default: False}, synchronize_session=False))
    addr.is_default = True


@bp.get("/addresses")
@session_required
def list_addresses():
    items = (UserAddress.query
             .filter_by(user_id=g.current_user.id)
             .order_by(UserAddress.is_default.desc(), UserAddress.id.asc())
             .all())
    return ok("OK", {"addresses": [a.as_api() for a in items]})


@bp.post("/addresses")
@session_required
def save_address():
    data = _body()
    user = g.current_user

    if data.get("id"):
        addr = _own_address(int(data["id"]))
    else:
        missing = [f for f in ADDRESS_FIELDS if not str(data.get(f) or "").strip()]
        if missing:
            raise ApiError(f"Missing address fields: {', '.join(missing)}", 400)
        addr = UserAddress(user_id=user.id, name=user.name, phone=user.phone)
        db.session.add(addr)

    for field in ("name", "address_line1", "city", "state", "country", "pincode", "phone"):
        if data.get(field) not in (None, ""):
            setattr(addr, field, str(data[field]).strip())

    db.session.flush()
    first = UserAddress.query.filter_by(user_id=user.id).count() == 1
    if data.get("is_default") or first:
        _make_default(addr)
    db.session.commit()
    return ok("Address saved", {"address": addr.as_api()}, 201 if not data.get("id") else 200)


@bp.post("/addresses/<int:address_id>/default")
@session_required
def set_default_address(address_id):
    addr = _own_address(address_id)
    _make_default(addr)
    db.session.commit()
    return ok("Default address updated", {"address": addr.as_api()})


@bp.delete("/addresses/<int:address_id>")
@session_required
def delete_address(address_id):
    addr = _own_address(address_id)
    if Order.query.filter_by(user_address_id=addr.id).first():
        raise ApiError("Address is used by an order and cannot be deleted", 409)
    db.session.delete(addr)
    db.session.commit()
    return ok("Address deleted")
