# storefront/message/routes.py
from flask import current_app, g, request

from . import bp
from ..errors import ApiError
from ..extensions import db
from ..logger import log
from ..model import Message
from ..services.mail_service import send_mail
from ..utils.api import ok
from ..utils.decorators import session_optional


@bp.post("")
@session_optional
def create_message():
    """
    Body: { name, phone, email?, message }
    Stores the message and forwards it to the store's inbox.
    """
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    phone = (data.get("phone") or "").strip()
    email = (data.get("email") or "").strip().lower() or None
    text = (data.get("message") or "").strip()
    if not (name and phone and text):
        raise ApiError("Name, phone and message are required", 400)

    msg = Message(
        user_id=g.current_user.id if g.current_user else None,
        name=name,
        phone=phone,
        email=email,
        message=text,
    )
    db.session.add(msg)
    db.session.commit()
    log.info("contact message id=%s user_id=%s", msg.id, msg.user_id)

    cfg = current_app.config
    send_mail(
        cfg.get("STORE_EMAIL") or cfg.get("SMTP_USER"),
        f"{cfg.get('STORE_NAME')} - Message from {name}",
        "message",
        name=name,
        phone=phone,
        email=email,
        message=text,
    )
    return ok("Message sent", {"message": msg.as_api()}, 201)
