"""Alembic environment for the marketplace backend."""

from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import os
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool

from extensions import db

config = context.config
target_metadata = db.metadata


def _configure_logging() -> None:
    candidates = []
    if config.config_file_name:
        candidates.append(Path(config.config_file_name))
    candidates.append(Path(__file__).resolve().parent / "alembic.ini")
    for candidate in candidates:
        if candidate and candidate.exists():
            fileConfig(str(candidate), disable_existing_loggers=False)
            break


def _escape_percent(url: str) -> str:
    return url.replace("%", "%%") if "%" in url else url


def _get_url() -> str:
    """ALEMBIC_DATABASE_URL > app Flask activa > DATABASE_URL > alembic.ini."""
    env_url = os.getenv("ALEMBIC_DATABASE_URL")
    if env_url:
        from app.config import _normalize_db_url

        return _normalize_db_url(env_url, allow_sqlite=True)

    try:
        from flask import current_app

        return current_app.config["SQLALCHEMY_DATABASE_URI"]
    except (RuntimeError, KeyError):
        pass

    database_url = os.getenv("DATABASE_URL")
    if database_url:
        from app.config import _normalize_db_url

        return _normalize_db_url(database_url, allow_sqlite=True)

    ini_url = config.get_main_option("sqlalchemy.url")
    if ini_url:
        return ini_url
    raise RuntimeError("No database URL available for Alembic")


def _ensure_models_loaded() -> None:
    import models  # noqa: F401


def run_migrations_offline() -> None:
    _ensure_models_loaded()
    context.configure(
        url=_get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    _ensure_models_loaded()
    section = dict(config.get_section(config.config_ini_section) or {})
    section["sqlalchemy.url"] = _escape_percent(_get_url())

    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


_configure_logging()
if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
