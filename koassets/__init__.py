"""
KO Assets Rights Review Service
Flask Application Factory.

Usage:
    from koassets import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from koassets.auth import init_auth
from koassets.config import config
from koassets.middleware.logging_config import configure_logging
from koassets.middleware.rate_limiter import init_rate_limits
from koassets.middleware.security_headers import init_security_headers
from koassets.middleware.timing import init_request_timing
from koassets.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)

# Portal hosts allowed to call the API with credentials (regexes for preview hosts)
DEFAULT_CORS_ORIGINS = [
    "https://koassets.adobeaem.workers.dev",
    r"https://.*-koassets\.adobeaem\.workers\.dev",
    r"https://.*-koassets--aemsites\.aem\.(live|page)",
    r"http://localhost:(3000|8787)",
]


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
    config_class = config[config_name]
    # ProductionConfig validates required env vars on instantiation
    app.config.from_object(config_class() if config_name == "production" else config_class)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "")
    origins = [o.strip() for o in cors_origins.split(",") if o.strip()] or DEFAULT_CORS_ORIGINS
    CORS(
        app,
        resources={r"/api/*": {"origins": origins}},
        supports_credentials=True,
        methods=["GET", "POST", "DELETE", "OPTIONS"],
        max_age=600,
    )

    # ── Request timing (first before_request: times every API call) ──────
    init_request_timing(app)

    # ── Authentication & CSRF middleware ──────────────────────────────────
    init_auth(app)

    # ── Security headers ─────────────────────────────────────────────────
    init_security_headers(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from koassets.models import audit as _audit_models                  # noqa: F401
    from koassets.models import notification as _notification_models    # noqa: F401
    from koassets.models import rights_request as _rights_request_models  # noqa: F401
    from koassets.models import user as _user_models                    # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if not app.config.get("TESTING"):
        with app.app_context():
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from koassets.blueprints.health_bp import health_bp
    from koassets.blueprints.notification_bp import notification_bp
    from koassets.blueprints.rights_requests_bp import rights_requests_bp
    from koassets.blueprints.user_bp import user_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(rights_requests_bp)
    app.register_blueprint(notification_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("sync-permissions")
    @click.option("--remove-missing", is_flag=True,
                  help="Clear permissions of users absent from the sheet.")
    def sync_permissions_cmd(remove_missing):
        """Load user permissions from the content origin's permission sheet."""
        from koassets.integrations.helix_gateway import HelixGateway
        from koassets.services.user_service import sync_user_permissions

        gateway = HelixGateway.from_config(app.config)
        result = gateway.fetch_sheet(
            app.config["PERMISSIONS_SHEET_PATH"], key="email", arrays=["permissions"],
        )
        if not result.ok:
            raise click.ClickException(f"Could not fetch permission sheet: {result.error}")
        counts = sync_user_permissions(result.data, remove_missing=remove_missing)
        click.echo(
            f"created={counts['created']} updated={counts['updated']} "
            f"cleared={counts['cleared']} unchanged={counts['unchanged']} skipped={counts['skipped']}"
        )

    @app.cli.command("grant-permissions")
    @click.argument("email")
    @click.argument("tokens", default="")
    def grant_permissions_cmd(email, tokens):
        """Set EMAIL's permission tokens (comma-separated; empty clears them)."""
        from koassets.core.exceptions import ValidationError
        from koassets.services.user_service import set_user_permissions

        try:
            user = set_user_permissions(email, tokens, actor="cli")
        except ValidationError as e:
            raise click.ClickException(str(e))
        db.session.commit()
        click.echo(f"{user.email}: {', '.join(user.permissions) or '(none)'}")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"success": False, "error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"success": False, "error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"success": False, "error": "Request body too large"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"success": False, "error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"success": False, "error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
