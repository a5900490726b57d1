# storefront/services/session_service.py
"""
Token sessions.

A login issues a JWT and persists it in ``usersessions`` together with an
expiry. A request is authenticated only when the JWT verifies *and* its
session row is still open, so logout can revoke tokens before they expire.
"""
from datetime import datetime, timedelta

from flask import current_app
from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt import ExpiredSignatureError, InvalidTokenError
from sqlalchemy import or_

from ..errors import ApiError
from ..extensions import db
from ..logger import log
from ..model import User, UserSession


def _ttl():
    return timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 24))


def _issue_token(user: User) -> str:
    return create_access_token(identity=str(user.id), expires_delta=_ttl())


def open_session(user: User) -> str:
    token = _issue_token(user)
    db.session.add(UserSession(
        user_id=user.id,
        token=token,
        prev_token=token,
        expiry=datetime.utcnow() + _ttl(),
    ))
    return token


def parse_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2:
        return None
    scheme, token = parts[0].strip().lower(), parts[1].strip()
    if scheme != "bearer" or not token:
        return None
    return token


def validate_session(token: str | None, allow_previous: bool = False) -> UserSession:
    if not token:
        raise ApiError("Authorization token is required.", 401)

    try:
        decode_token(token)
    except ExpiredSignatureError:
        raise ApiError("Token expired", 401)
    except (InvalidTokenError, JWTExtendedException):
        raise ApiError("Invalid or expired token.", 401)

    match = UserSession.token == token
    if allow_previous:
        match = or_(match, UserSession.prev_token == token)
    session = UserSession.query.filter(match, UserSession.is_expired.is_(False)).first()
    if not session:
        raise ApiError("Session not found or expired.", 403)

    if datetime.utcnow() > session.expiry:
        session.is_expired = True
        db.session.commit()
        raise ApiError("Session expired.", 403)

    if not session.user:
        raise ApiError("User not found.", 404)
    return session


def renew_session(session: UserSession) -> str | None:
    """Rotate the token when it is about to lapse; returns the new token if one was issued."""
    now = datetime.utcnow()
    window = timedelta(minutes=current_app.config.get("SESSION_RENEW_WINDOW_MINUTES", 60))

    new_token = None
    if session.expiry <= now + window:
        new_token = _issue_token(session.user)
        session.prev_token = session.token
        session.token = new_token
        session.expiry = now + _ttl()
        log.info("session renewed user_id=%s", session.user_id)
    elif session.token != session.prev_token:
        session.prev_token = session.token
        session.expiry = now + _ttl()
    db.session.commit()
    return new_token


def close_sessions(user_id: int) -> int:
    n = (UserSession.query
         .filter(UserSession.user_id == user_id, UserSession.is_expired.is_(False))
         .update({UserSession.is_expired: True}, synchronize_session=False))
    db.session.commit()
    return n
