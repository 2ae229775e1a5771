"""
WorkPro Maintenance Core
Flask Application Factory.

Usage:
    from workpro import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine, event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from workpro.config import config
from workpro.core.exceptions import WorkProError
from workpro.middleware.logging_config import configure_logging
from workpro.middleware.rate_limiter import init_rate_limits
from workpro.middleware.tenant_context import init_tenant_context
from workpro.middleware.timing import init_request_timing
from workpro.models import db
from workpro.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL") or "memory://",
)


def _import_models():
    """Import all model modules so metadata (and Alembic) sees every table."""
    from workpro.models import tenant as _tenant_models                      # noqa: F401
    from workpro.models import work_order_template as _template_models       # noqa: F401
    from workpro.models import work_order as _work_order_models              # noqa: F401
    from workpro.models import inventory as _inventory_models                # noqa: F401
    from workpro.models import notification as _notification_models         # noqa: F401
    from workpro.models import scheduling as _scheduling_models              # noqa: F401


def _register_error_handlers(app):
    @app.errorhandler(WorkProError)
    def _domain_error(exc):
        db.session.rollback()
        logger.info("Request rejected: %s", exc.message,
                    extra={"error_code": exc.code, "path": request.path,
                           "status": exc.status})
        return api_error(exc.code, exc.message, status=exc.status, details=exc.details)

    @app.errorhandler(SQLAlchemyError)
    def _database_error(exc):
        db.session.rollback()
        logger.exception("Database error on %s", request.path)
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def _not_found(e):
        return api_error(E.NOT_FOUND, "Not found")

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.METHOD_NOT_ALLOWED, "Method not allowed")

    @app.errorhandler(413)
    def _too_large(e):
        return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(500)
    def _server_error(e):
        db.session.rollback()
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


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
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing + tenant context middleware ───────────────────────
    init_request_timing(app)
    init_tenant_context(app)

    # ── Content-Type guard for mutating API calls ────────────────────────
    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                return api_error(E.VALIDATION_INVALID, "Content-Type must be application/json",
                                 status=415)
        return None

    # ── Models + tables ──────────────────────────────────────────────────
    _import_models()
    if app.config.get("SQLALCHEMY_DATABASE_URI", "").startswith("sqlite"):
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from workpro.blueprints.health_bp import health_bp
    from workpro.blueprints.work_order_bp import work_order_bp
    from workpro.blueprints.work_order_parts_bp import work_order_parts_bp
    from workpro.blueprints.work_order_template_bp import work_order_template_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(work_order_template_bp)
    app.register_blueprint(work_order_bp)
    app.register_blueprint(work_order_parts_bp)

    _register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler + SLA monitor ──────────────────────────────────────────
    importlib.import_module("workpro.services.scheduled_jobs")  # registers @register_job handlers
    from workpro.services.scheduler_service import SchedulerService
    from workpro.services.sla_monitor import monitor_from_config

    SchedulerService.init_app(app)
    SchedulerService.ensure_jobs_registered()
    monitor = monitor_from_config(app)
    app.extensions["sla_monitor"] = monitor
    if app.config.get("SLA_MONITOR_ENABLED"):
        monitor.start()

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("sla-sweep")
    def sla_sweep_cmd():
        """Run one SLA sweep now and print the summary."""
        outcome = SchedulerService.run_job("sla_monitor")
        logger.info("SLA sweep finished: %s", outcome)

    return app
