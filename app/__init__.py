"""Application factory and bootstrap helpers."""
from __future__ import annotations

from typing import Optional

import click
from flask import Flask, jsonify
from flask.cli import AppGroup
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import AppConfig
from extensions import db, login_manager, migrate
from services.base import ServiceException


# Código de ServiceException -> status HTTP
ERROR_STATUS = {
    "VALIDATION_ERROR": 400,
    "PAYMENT_NOT_COMPLETED": 402,
    "GATEWAY_REJECTED": 402,
    "PERMISSION_DENIED": 403,
    "NOT_FOUND": 404,
    "REFERRER_NOT_FOUND": 404,
    "GATEWAY_UNREACHABLE": 503,
    "GATEWAY_AUTH_ERROR": 500,
    "ATTRIBUTION_PERSISTENCE_ERROR": 500,
}


def status_for(error: ServiceException) -> int:
    return ERROR_STATUS.get(error.code, 500)


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ServiceException)
    def handle_service_exception(error):
        status = status_for(error)
        if status >= 500:
            app.logger.error(f"[{error.code}] {error.message}")
            # Los detalles internos no salen al cliente
            body = {"success": False, "error": "Error interno del servidor", "code": error.code}
        else:
            app.logger.info(f"[{error.code}] {error.message}")
            body = {"success": False, "error": error.message, "code": error.code}
            if error.details:
                body["details"] = error.details
        return jsonify(body), status

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        return jsonify({"success": False, "error": error.description, "code": error.name}), error.code


def _register_login(app: Flask) -> None:
    from models.core import User

    login_manager.login_view = None

    @login_manager.user_loader
    def load_user(user_id):
        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"success": False, "error": "Autenticación requerida"}), 401


def _register_commissions_cli(app: Flask) -> None:
    commissions_cli = AppGroup("commissions", help="Gestión de comisiones de referidos")

    @commissions_cli.command("mark-paid")
    @click.argument("commission_id")
    def mark_paid(commission_id):
        """Marca una comisión como pagada."""
        from services.commission_ledger import CommissionLedger

        try:
            referral = CommissionLedger().mark_paid(commission_id)
        except ServiceException as exc:
            raise click.ClickException(exc.message) from exc
        click.echo(f"Comisión {referral.id}: {referral.status.value} (${referral.commission})")

    app.cli.add_command(commissions_cli)


def _register_webhooks_cli(app: Flask) -> None:
    webhooks_cli = AppGroup("webhooks", help="Mantenimiento de webhooks procesados")

    @webhooks_cli.command("cleanup")
    @click.option("--days", default=30, show_default=True, type=int, help="Antigüedad mínima en días")
    def cleanup(days):
        """Elimina los registros de webhooks más antiguos que --days."""
        from utils.webhook_validator import cleanup_old_webhooks

        deleted = cleanup_old_webhooks(days=days)
        click.echo(f"Webhooks eliminados: {deleted}")

    app.cli.add_command(webhooks_cli)


def _register_clis(app: Flask) -> None:
    _register_commissions_cli(app)
    _register_webhooks_cli(app)


def _register_blueprints(app: Flask) -> None:
    from mailing.routes import mailing_bp
    from payments.routes import payments_bp
    from referrals.routes import referrals_bp, short_links_bp

    app.register_blueprint(payments_bp, url_prefix="/payments")
    app.register_blueprint(referrals_bp, url_prefix="/referrals")
    app.register_blueprint(short_links_bp, url_prefix="/short-links")
    app.register_blueprint(mailing_bp, url_prefix="/mail")


def _register_routes(app: Flask) -> None:
    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})


def create_app(config: Optional[AppConfig] = None) -> Flask:
    app = Flask(__name__)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)

    cfg = config or AppConfig()
    cfg.init_app(app)

    from config.logging_config import setup_logging
    from config.rate_limiter_config import setup_rate_limiter
    from middleware.request_timing import setup_request_timing
    from middleware.security_headers import setup_security_headers

    setup_logging(app)

    from services.gateways.providers.stripe_provider import configure_stripe_http_client

    configure_stripe_http_client(app.config["GATEWAY_TIMEOUT_SECONDS"])

    if not app.config["MP_ACCESS_TOKEN"]:
        app.logger.warning(
            "Mercado Pago access token (MP_ACCESS_TOKEN) is not configured; Mercado Pago operations will fail."
        )
    if not app.config["STRIPE_SECRET_KEY"]:
        app.logger.warning(
            "Stripe secret key (STRIPE_SECRET_KEY) is not configured; Stripe operations will fail."
        )

    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db, compare_type=True, directory="migrations")

    import models  # noqa: F401  registra todas las tablas en el metadata

    setup_rate_limiter(app)
    setup_request_timing(app)
    setup_security_headers(app)

    _register_login(app)
    _register_error_handlers(app)
    _register_clis(app)
    _register_blueprints(app)
    _register_routes(app)

    return app


__all__ = ["create_app", "db", "login_manager", "migrate", "status_for"]
