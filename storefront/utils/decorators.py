# ------- storefront/utils/decorators.py -------
from functools import wraps

from flask import g, request

from ..errors import ApiError
from ..logger import log
from ..services.session_service import parse_bearer_token, validate_session


def _load_session():
    token = parse_bearer_token(request.headers.get("Authorization"))
    session = validate_session(token)
    g.user_session = session
    g.current_user = session.user
    return session.user


def session_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        _load_session()
        return fn(*args, **kwargs)
    return wrapper


def session_optional(fn):
    """Use the caller's session when a valid Bearer token is sent; otherwise continue as a guest."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        g.user_session = None
        g.current_user = None
        if request.headers.get("Authorization"):
            try:
                _load_session()
            except ApiError as e:
                log.info("ignoring session on %s: %s", request.path, e.message)
        return fn(*args, **kwargs)
    return wrapper


def role_required(*roles, message: str | None = None):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = _load_session()
            if user.role not in roles:
                raise ApiError(message or "Forbidden", 403)
            return fn(*args, **kwargs)
        return wrapper
    return decorator


admin_required = role_required("admin", message="Admin access required")
