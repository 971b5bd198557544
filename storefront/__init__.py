import logging

from flask import Flask, jsonify

from .config import Config
from .extensions import db, jwt, cors, migrate


def create_app(config_object=Config, overrides=None):
    app = Flask(__name__, instance_relative_config=True)

    app.config.from_object(config_object)
    config_object.init_app(app)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Init extensions
    db.init_app(app)
    jwt.init_app(app)
    cors.init_app(app, resources={r"/*": {"origins": "*"}})
    migrate.init_app(app, db)

    # Collaborators the order core talks to; tests swap these out
    from .services.shipping_service import ShippingCalculator
    from .services.notification_service import NotificationSink
    app.extensions["shipping"] = ShippingCalculator(
        free_threshold=app.config["FREE_SHIPPING_THRESHOLD"],
        default_fee=app.config["DEFAULT_SHIPPING_FEE"],
    )
    app.extensions["notifier"] = NotificationSink()

    # Register blueprints
    from .cart import bp as cart_bp; app.register_blueprint(cart_bp)
    from .checkout import bp as checkout_bp; app.register_blueprint(checkout_bp)
    from .order import bp as order_bp; app.register_blueprint(order_bp)
    from .voucher import bp as voucher_bp; app.register_blueprint(voucher_bp)
    from .notification import bp as notification_bp; app.register_blueprint(notification_bp)

    from .errors import register_error_handlers
    register_error_handlers(app)

    from .cli import register_cli
    register_cli(app)

    @app.get("/")
    def health():
        return jsonify(ok=True, msg="API running")

    with app.app_context():
        from . import model  # noqa: F401  (register tables)
        db.create_all()

    return app
