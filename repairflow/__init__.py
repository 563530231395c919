"""
Repairflow — Maintenance Issue Workflow
Flask application factory.

Usage:
    from repairflow import create_app
    app = create_app()           # APP_ENV or "development"
    app = create_app("testing")
"""

import logging
import os

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from repairflow.config import config
from repairflow.middleware.logging_config import configure_logging
from repairflow.middleware.rate_limiter import init_rate_limits
from repairflow.middleware.timing import init_request_timing
from repairflow.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()
# Limits are attached per blueprint in init_rate_limits
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores FOREIGN KEY clauses unless asked per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """
    Build the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV env var, then "development".
    """
    config_name = config_name or os.getenv("APP_ENV", "development")
    config_cls = config[config_name]
    if hasattr(config_cls, "validate"):
        config_cls.validate()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_cls)
    os.makedirs(app.instance_path, exist_ok=True)

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    _create_tables(app)
    _register_blueprints(app)
    _register_cli(app)
    _register_error_handlers(app)
    init_rate_limits(app, limiter)

    return app


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _create_tables(app):
    """CREATE IF NOT EXISTS for every model; migrations own later changes."""
    from repairflow.models import debt, issue, user  # noqa: F401

    with app.app_context():
        try:
            db.create_all()
        except Exception as exc:
            app.logger.warning("db.create_all() failed: %s", exc)


def _register_blueprints(app):
    from repairflow.blueprints.health_bp import health_bp
    from repairflow.blueprints.issue_bp import issue_bp

    app.register_blueprint(issue_bp)
    app.register_blueprint(health_bp)


def _register_cli(app):
    @app.cli.command("reconcile-debt")
    def reconcile_debt_cmd():
        """Apply tenant debt accruals still pending after their transition."""
        from repairflow.services.debt_ledger import reconcile_pending_accruals

        summary = reconcile_pending_accruals()
        logger.info(
            "reconcile-debt: processed=%d applied=%d still_pending=%d failed=%d",
            summary["processed"], summary["applied"],
            summary["still_pending"], summary["failed"],
        )


def _register_error_handlers(app):
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found", "path": request.path}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests", "retry_after": e.description}), 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return jsonify({"error": "Internal server error"}), 500
