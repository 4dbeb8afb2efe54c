"""
UniSync ShowSet Tracker
Flask Application Factory.

Usage:
    from unisync import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from unisync.config import config
from unisync.models import db
from unisync.middleware.logging_config import configure_logging
from unisync.middleware.rate_limiter import init_rate_limits
from unisync.middleware.timing import init_request_timing
from unisync.workflow import WorkflowEngine, get_variant

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit - apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()],
             expose_headers=["ETag", "X-Request-ID"])
    else:
        CORS(app, expose_headers=["ETag", "X-Request-ID"])

    # ── Workflow engine (one per app, variant chosen by config) ──────────
    variant = get_variant(
        app.config.get("WORKFLOW_VARIANT", "standard"),
        app.config.get("BIM_COORDINATOR_SCOPE"),
    )
    app.extensions["workflow_engine"] = WorkflowEngine(variant)
    app.logger.info("Workflow engine ready: variant=%s bim_coordinator_scope=%s",
                    variant.name, variant.bim_coordinator_scope)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length) ────────────────────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from unisync.models import showset as _showset_models    # noqa: F401
    from unisync.models import activity as _activity_models  # noqa: F401

    # ── Auto-create tables outside of migration-managed deployments ──────
    if app.config.get("TESTING") or app.config.get("DEBUG"):
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from unisync.blueprints.health_bp import health_bp
    from unisync.blueprints.showset_bp import showset_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(showset_bp)

    # ── Health check (short form) ────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "UniSync ShowSet Tracker"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
