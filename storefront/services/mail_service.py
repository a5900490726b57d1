# storefront/services/mail_service.py
import smtplib
from datetime import datetime
from email.message import EmailMessage

from flask import current_app, render_template

from ..logger import log


def _smtp_settings():
    cfg = current_app.config
    return {
        "host": (cfg.get("SMTP_HOST") or "").strip(),
        "port": int(cfg.get("SMTP_PORT") or 587),
        "user": (cfg.get("SMTP_USER") or "").strip(),
        "password": (cfg.get("SMTP_PASSWORD") or "").strip().replace(" ", ""),
        "sender": (cfg.get("MAIL_FROM") or "").strip(),
        "tls": bool(cfg.get("SMTP_USE_TLS", True)),
    }


def send_mail(to: str | None, subject: str, template: str, **context) -> bool:
    """
    Render ``templates/<template>.html`` and deliver it over SMTP.

    Returns False when mail is disabled, not configured, there is no
    recipient, or delivery fails. Failures are logged and never raised.
    """
    if not current_app.config.get("MAIL_ENABLED", True):
        log.info("[MAIL] disabled, skipping template=%s to=%s", template, to)
        return False
    if not to:
        log.info("[MAIL] no recipient for template=%s", template)
        return False

    s = _smtp_settings()
    if not (s["host"] and s["user"] and s["password"] and s["sender"]):
        log.info(
            "[MAIL] smtp_missing host=%s user=%s password=%s from=%s",
            bool(s["host"]), bool(s["user"]), bool(s["password"]), bool(s["sender"]),
        )
        return False

    context.setdefault("store_name", current_app.config.get("STORE_NAME"))
    context.setdefault("year", str(datetime.utcnow().year))
    html = render_template(f"{template}.html", **context)

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = s["sender"]
    msg["To"] = to
    msg.set_content("This message requires an HTML capable mail client.")
    msg.add_alternative(html, subtype="html")

    try:
        with smtplib.SMTP(s["host"], s["port"], timeout=10) as server:
            server.ehlo()
            if s["tls"]:
                server.starttls()
                server.ehlo()
            server.login(s["user"], s["password"])
            server.send_message(msg)
    except (smtplib.SMTPException, OSError):
        log.exception("[MAIL] SMTP send failed template=%s to=%s", template, to)
        return False

    log.info("[MAIL] sent template=%s to=%s", template, to)
    return True
