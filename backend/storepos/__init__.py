# backend/storepos/__init__.py
import atexit

from flask import Flask, request

from .config import Config
from .extensions import db, migrate, ANALYTICS_CACHE_KEY, PUSH_BROKER_KEY, DISPATCHER_KEY


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Analytics components live on the app, not in module globals
    from .services.analytics_cache import AnalyticsCache
    from .services.broadcast_service import AnalyticsDispatcher
    from .services.push_service import PushBroker

    cache = AnalyticsCache(ttl_seconds=app.config["ANALYTICS_CACHE_TTL_SECONDS"])
    broker = PushBroker()
    dispatcher = AnalyticsDispatcher(
        app,
        cache,
        broker,
        async_refresh=app.config["ANALYTICS_ASYNC_REFRESH"],
    )
    app.extensions[ANALYTICS_CACHE_KEY] = cache
    app.extensions[PUSH_BROKER_KEY] = broker
    app.extensions[DISPATCHER_KEY] = dispatcher

    # Register blueprints
    from .routes.system import system_bp
    from .routes.transactions import transactions_bp
    from .routes.analytics import analytics_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(analytics_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-User-Id, X-User-Name, X-User-Role"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config["ANALYTICS_BACKGROUND_REFRESH"] and not app.testing:
        dispatcher.start_background_refresh(app.config["ANALYTICS_REFRESH_INTERVAL_SECONDS"])
    atexit.register(dispatcher.stop, False)

    return app
