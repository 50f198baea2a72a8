"""
GrantDesk
Flask Application Factory.

Usage:
    from grantdesk import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from grantdesk.config import config
from grantdesk.middleware.diagnostics import run_startup_diagnostics
from grantdesk.middleware.jwt_auth import init_jwt_middleware
from grantdesk.middleware.logging_config import configure_logging
from grantdesk.middleware.rate_limiter import init_rate_limits
from grantdesk.middleware.security_headers import init_security_headers
from grantdesk.middleware.timing import init_request_timing
from grantdesk.models import db

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
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri="memory://",
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
    # Instantiated so ProductionConfig can refuse a missing DATABASE_URL / SECRET_KEY
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

    # ── Middleware ───────────────────────────────────────────────────────
    init_security_headers(app)
    init_request_timing(app)
    init_jwt_middleware(app)

    @app.before_request
    def _guard_request():
        # Content-Type validation for mutating methods
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from grantdesk.models import auth as _auth_models        # noqa: F401
    from grantdesk.models import finance as _finance_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from grantdesk.blueprints.admin_bp import admin_bp
    from grantdesk.blueprints.auth_bp import auth_bp
    from grantdesk.blueprints.employee_loans_bp import employee_loans_bp
    from grantdesk.blueprints.engagements_bp import engagements_bp
    from grantdesk.blueprints.grants_bp import grants_bp
    from grantdesk.blueprints.health_bp import health_bp
    from grantdesk.blueprints.notifications_bp import notifications_bp
    from grantdesk.blueprints.payments_bp import payments_bp
    from grantdesk.blueprints.prefinancing_bp import prefinancing_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(grants_bp)
    app.register_blueprint(engagements_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(prefinancing_bp)
    app.register_blueprint(employee_loans_bp)
    app.register_blueprint(notifications_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-roles")
    def seed_roles_cmd():
        """Create the built-in roles that are missing."""
        from grantdesk.services.auth_service import ensure_default_roles
        roles = ensure_default_roles()
        db.session.commit()
        click.echo(f"{len(roles)} roles available: {', '.join(sorted(roles))}")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Ressource introuvable", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Méthode non autorisée", "code": "ERR_METHOD"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Requête trop volumineuse", "code": "ERR_TOO_LARGE"}, 413

    @app.errorhandler(415)
    def unsupported_media(e):
        return {"error": e.description, "code": "ERR_MEDIA_TYPE"}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Trop de requêtes", "code": "ERR_RATE_LIMIT", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Erreur interne du serveur", "code": "ERR_INTERNAL"}, 500

    # ── Startup diagnostics ──────────────────────────────────────────────
    run_startup_diagnostics(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
