# backend/lastmile/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate, socketio


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    socketio.init_app(
        app,
        async_mode=app.config["SOCKETIO_ASYNC_MODE"],
        cors_allowed_origins=sorted(app.config["CORS_ALLOWED_ORIGINS"]),
    )

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.notification_service import init_notifications
    init_notifications(app)

    from .realtime import register_socket_handlers
    register_socket_handlers(socketio)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.delivery_routes import routes_bp
    from .routes.driver import driver_bp
    from .routes.customer import customer_bp
    from .routes.orders import orders_bp
    from .routes.clients import clients_bp
    from .routes.loyalty import loyalty_bp
    from .routes.push import push_bp
    from .routes.settings import settings_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(routes_bp)
    app.register_blueprint(driver_bp)
    app.register_blueprint(customer_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(clients_bp)
    app.register_blueprint(loyalty_bp)
    app.register_blueprint(push_bp)
    app.register_blueprint(settings_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
