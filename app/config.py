"""Application configuration helpers and defaults.

Centralizes environment handling for the marketplace backend: database
connection, payment gateway credentials, SMTP settings and the knobs that
bound gateway calls and the notification fan-out.
"""
from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from sqlalchemy.engine.url import make_url


load_dotenv()


class InvalidDatabaseURL(RuntimeError):
    """Raised when DATABASE_URL does not meet the expected requirements."""


def _normalize_db_url(raw_url: str, allow_sqlite: bool = False) -> str:
    """Return a normalised PostgreSQL connection URL using psycopg v3.

    Legacy ``postgres://`` URLs are converted to ``postgresql+psycopg://``.
    SQLite URLs are only accepted when ``allow_sqlite`` is set (test runs).
    """

    if not raw_url:
        raise InvalidDatabaseURL("DATABASE_URL is required and must not be empty")

    candidate = raw_url.strip()
    if candidate.startswith("postgres://"):
        candidate = "postgresql://" + candidate[len("postgres://") :]

    try:
        url = make_url(candidate)
    except Exception as exc:  # pragma: no cover - formatting delegated to SQLAlchemy
        raise InvalidDatabaseURL(f"Invalid DATABASE_URL provided: {candidate!r}") from exc

    driver = url.drivername or ""
    if driver.startswith("sqlite"):
        if allow_sqlite:
            return str(url)
        raise InvalidDatabaseURL(
            "SQLite URLs are only supported for tests. Provide a PostgreSQL connection string."
        )

    if driver in {"postgres", "postgresql"} or (
        driver.startswith("postgresql+") and driver != "postgresql+psycopg"
    ):
        url = url.set(drivername="postgresql+psycopg")

    query = dict(url.query)
    if not query.get("sslmode"):
        query["sslmode"] = os.getenv("DB_SSLMODE", "require")
        url = url.set(query=query)

    return url.render_as_string(hide_password=False)


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:  # pragma: no cover - validated during configuration load
        raise RuntimeError(f"Environment variable {name} must be an integer") from exc


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as exc:  # pragma: no cover
        raise RuntimeError(f"Environment variable {name} must be a number") from exc


def _bool_from_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _str_from_env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


@dataclass
class AppConfig:
    """Collection of configuration defaults applied to the Flask app."""

    flask_env: str = field(default_factory=lambda: _str_from_env("FLASK_ENV", "development").lower())
    testing: bool = field(default_factory=lambda: _bool_from_env("TESTING", False))
    database_url: Optional[str] = field(default_factory=lambda: os.getenv("DATABASE_URL"))
    secret_key: Optional[str] = field(default_factory=lambda: os.getenv("SECRET_KEY"))
    engine_options: Dict[str, Any] = field(
        default_factory=lambda: {
            "pool_recycle": _int_from_env("DB_POOL_RECYCLE", 1800),
            "pool_pre_ping": _bool_from_env("DB_POOL_PRE_PING", True),
        }
    )

    # Pasarelas de pago
    stripe_secret_key: str = field(default_factory=lambda: _str_from_env("STRIPE_SECRET_KEY"))
    stripe_publishable_key: str = field(default_factory=lambda: _str_from_env("STRIPE_PUBLISHABLE_KEY"))
    mp_access_token: str = field(default_factory=lambda: _str_from_env("MP_ACCESS_TOKEN"))
    mp_webhook_secret: str = field(default_factory=lambda: _str_from_env("MP_WEBHOOK_SECRET"))
    mp_webhook_public_url: str = field(default_factory=lambda: _str_from_env("MP_WEBHOOK_PUBLIC_URL"))
    frontend_url: str = field(default_factory=lambda: _str_from_env("FRONTEND_URL", "http://localhost:5173"))
    backend_url: str = field(default_factory=lambda: _str_from_env("BACKEND_URL", "http://localhost:5000"))
    gateway_timeout_seconds: float = field(default_factory=lambda: _float_from_env("GATEWAY_TIMEOUT_SECONDS", 8.0))
    gateway_min_amount: int = field(default_factory=lambda: _int_from_env("GATEWAY_MIN_AMOUNT", 50))

    # Correo
    smtp_host: str = field(default_factory=lambda: _str_from_env("SMTP_HOST", "smtp.gmail.com"))
    smtp_port: int = field(default_factory=lambda: _int_from_env("SMTP_PORT", 587))
    mail_user: str = field(default_factory=lambda: _str_from_env("MAIL_USER"))
    mail_password: str = field(default_factory=lambda: _str_from_env("MAIL_PASSWORD"))
    mail_from: str = field(default_factory=lambda: _str_from_env("MAIL_FROM"))
    notification_max_workers: int = field(default_factory=lambda: _int_from_env("NOTIFICATION_MAX_WORKERS", 4))

    rate_limiter_storage: str = field(default_factory=lambda: _str_from_env("RATE_LIMITER_STORAGE", "memory://"))

    def init_app(self, app) -> None:
        """Apply the configuration to the provided Flask app instance."""

        secret = self.secret_key
        if self.flask_env == "production" and not secret:
            raise RuntimeError(
                "SECRET_KEY no configurada. Definila en tus variables de entorno"
                " antes de iniciar la aplicación en producción."
            )
        if not secret:
            secret = secrets.token_hex(32)
            logging.warning(
                "SECRET_KEY no definida. Se generó una clave temporal solo para"
                " este proceso."
            )
        self.secret_key = secret

        app.secret_key = secret
        app.config["SECRET_KEY"] = secret
        app.config["FLASK_ENV"] = self.flask_env
        app.config["TESTING"] = self.testing

        if self.database_url:
            app.config.setdefault(
                "SQLALCHEMY_DATABASE_URI",
                _normalize_db_url(self.database_url, allow_sqlite=self.testing),
            )
        if not self.testing:
            app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", self.engine_options)
        app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)

        app.config["STRIPE_SECRET_KEY"] = self.stripe_secret_key
        app.config["STRIPE_PUBLISHABLE_KEY"] = self.stripe_publishable_key
        app.config["MP_ACCESS_TOKEN"] = self.mp_access_token
        app.config["MP_WEBHOOK_SECRET"] = self.mp_webhook_secret
        app.config["MP_WEBHOOK_PUBLIC_URL"] = self.mp_webhook_public_url
        app.config["FRONTEND_URL"] = self.frontend_url.rstrip("/")
        app.config["BACKEND_URL"] = self.backend_url.rstrip("/")
        app.config["GATEWAY_TIMEOUT_SECONDS"] = self.gateway_timeout_seconds
        app.config["GATEWAY_MIN_AMOUNT"] = self.gateway_min_amount

        app.config["SMTP_HOST"] = self.smtp_host
        app.config["SMTP_PORT"] = self.smtp_port
        app.config["MAIL_USER"] = self.mail_user
        app.config["MAIL_PASSWORD"] = self.mail_password
        app.config["MAIL_FROM"] = self.mail_from or self.mail_user
        app.config["NOTIFICATION_MAX_WORKERS"] = self.notification_max_workers

        app.config["RATE_LIMITER_STORAGE"] = self.rate_limiter_storage


__all__ = [
    "AppConfig",
    "InvalidDatabaseURL",
    "_normalize_db_url",
]
