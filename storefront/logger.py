# --- storefront/logger.py ---
import logging
import os
import uuid
from logging.handlers import TimedRotatingFileHandler

from flask import g, request

LOG_FORMAT = "[%(asctime)s] - [%(levelname)s] %(message)s"

log = logging.getLogger("storefront")


def configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    log.setLevel(level)

    if not log.handlers:
        formatter = logging.Formatter(LOG_FORMAT)

        console = logging.StreamHandler()
        console.setFormatter(formatter)
        log.addHandler(console)

        log_path = app.config.get("LOG_PATH")
        if log_path:
            os.makedirs(log_path, exist_ok=True)
            for name, lvl in (("storefront-api.log", logging.NOTSET), ("storefront-api-error.log", logging.ERROR)):
                fh = TimedRotatingFileHandler(
                    os.path.join(log_path, name), when="midnight", backupCount=14, encoding="utf-8"
                )
                fh.setLevel(lvl)
                fh.setFormatter(formatter)
                log.addHandler(fh)

    @app.before_request
    def _assign_request_id():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _log_request(response):
        rid = getattr(g, "request_id", None) or uuid.uuid4().hex[:12]
        response.headers["X-Request-ID"] = rid
        log.info("rid=%s method=%s path=%s status=%s", rid, request.method, request.path, response.status_code)
        return response
