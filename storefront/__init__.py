# --- storefront/__init__.py ---
from flask import Flask

from .config import Config
from .errors import register_error_handlers
from .extensions import db, jwt, cors, migrate
from .logger import configure_logging, log
from .utils.api import ok


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)

    config_object = config_object or Config
    app.config.from_object(config_object)
    config_object.init_app(app)

    # Init extensions
    db.init_app(app)
    jwt.init_app(app)
    cors.init_app(app, resources={r"/*": {"origins": app.config.get("CORS_ORIGINS", "*")}})
    migrate.init_app(app, db)

    configure_logging(app)
    register_error_handlers(app)

    # Register blueprints
    from .auth import bp as auth_bp; app.register_blueprint(auth_bp)
    from .category import bp as category_bp; app.register_blueprint(category_bp)
    from .product import bp as product_bp; app.register_blueprint(product_bp)
    from .cart import bp as cart_bp; app.register_blueprint(cart_bp)
    from .coupon import bp as coupon_bp; app.register_blueprint(coupon_bp)
    from .order import bp as order_bp; app.register_blueprint(order_bp)
    from .admin import bp as admin_bp; app.register_blueprint(admin_bp)
    from .message import bp as message_bp; app.register_blueprint(message_bp)

    from .cli import register_cli
    register_cli(app)

    @app.get("/")
    def health():
        return ok("API running")

    if not app.config.get("TESTING"):
        from . import model  # noqa: F401  (register tables)
        with app.app_context():
            db.create_all()

    log.info("storefront app created env=%s", app.config.get("ENV"))
    return app
