"""
premium_freight/__init__.py

Flask application factory for the Premium Freight approval system.

Architecture:
- models.py            Flask-SQLAlchemy tables
- services/            approval core (ledger, resolver, tokens, state machine,
                       notifications, bulk actions); no Flask request access
- blueprints/          HTTP boundary: session endpoints (orders, auth) and
                       e-mail link endpoints (actions)

Security:
- Session endpoints are login protected and CSRF protected.
- E-mail link endpoints are GET-only and authorised by their token alone.
- Client IPs come from the socket unless TRUSTED_PROXY_COUNT enables ProxyFix.
- Authorization is always enforced server-side, in the services.
"""

from __future__ import annotations

import click
from flask import Flask, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix

from .extensions import MAIL_TRANSPORT_KEY, csrf, db, login_manager, migrate
from .logging_config import configure_logging
from .models import User
from .services.notifications import LoggingMailTransport, SmtpMailTransport


def create_app(config_object: object | str = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"), app.config.get("LOG_JSON", False))

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    login_manager.init_app(app)

    proxies = app.config.get("TRUSTED_PROXY_COUNT", 0)
    if proxies:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=proxies, x_proto=proxies, x_host=proxies)

    if app.config.get("MAIL_SERVER"):
        app.extensions.setdefault(MAIL_TRANSPORT_KEY, SmtpMailTransport.from_config(app.config))
    else:
        app.extensions.setdefault(MAIL_TRANSPORT_KEY, LoggingMailTransport())

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login."""
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "UNAUTHENTICATED", "message": "Login required."}), 401

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.actions import actions_bp
    from .blueprints.auth import auth_bp
    from .blueprints.orders import orders_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(actions_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("seed-demo")
    def seed_demo_command():
        """Seed demo users and approvers (plant 3310 + regional)."""
        from .seed import seed_demo

        seed_demo()
        click.echo("Demo users and approvers seeded.")

    @app.cli.command("send-weekly-summary")
    def send_weekly_summary_command():
        """Send the weekly pending-orders digest to every approver."""
        from .errors import NotificationError
        from .services import build_services

        try:
            sent = build_services().dispatcher.send_weekly_digest()
        except NotificationError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"Weekly summary sent to {sent} approver(s).")

    @app.cli.command("purge-expired-tokens")
    def purge_expired_tokens_command():
        """Delete expired e-mail action tokens."""
        from .services import build_services

        removed = build_services().tokens.purge_expired()
        click.echo(f"Removed {removed} expired token(s).")

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "app": app.config.get("APP_NAME")})

    return app
