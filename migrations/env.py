# migrations/env.py
from __future__ import annotations

import os
import sys
import logging
from logging.config import fileConfig

from alembic import context

# -----------------------------------------------------------------------------
# Make "import opsdesk" work when alembic is run from any directory.
# This file lives at: <project_root>/migrations/env.py
# -----------------------------------------------------------------------------
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

config = context.config

if config.config_file_name:
    try:
        fileConfig(config.config_file_name, disable_existing_loggers=False)
    except KeyError:
        # alembic.ini without logging sections
        pass

logger = logging.getLogger("alembic.env")

# -----------------------------------------------------------------------------
# Two ways in:
#   flask db upgrade          -> engine + metadata from the running app
#   DATABASE_URL=... alembic  -> plain engine, metadata imported directly
# -----------------------------------------------------------------------------
DB_URL = os.getenv("DATABASE_URL")

# Tables that share the database but are not owned by OpsDesk
# (comma separated). Autogenerate never emits DROP/ALTER for them.
UNMANAGED_TABLES = {t.strip() for t in os.getenv("ALEMBIC_IGNORE_TABLES", "").split(",") if t.strip()}


def _normalized(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


def _flask_db():
    """The Flask-SQLAlchemy instance Flask-Migrate is running under, or None."""
    from flask import current_app

    try:
        return current_app.extensions["migrate"].db
    except (RuntimeError, KeyError):
        # No app context: plain alembic invocation.
        return None


def _metadata():
    flask_db = _flask_db()
    if flask_db is not None:
        return flask_db.metadata

    from opsdesk import models  # noqa: F401  (registers every table)
    from opsdesk.extensions import db

    return db.metadata


def _require_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError("No sqlalchemy.url configured. Set DATABASE_URL or run via `flask db`.")
    return url


def include_object(object_, name, type_, reflected, compare_to):
    if type_ == "table" and name in UNMANAGED_TABLES:
        return False
    return True


def process_revision_directives(ctx, revision, directives):
    # No empty autogenerate revisions.
    cmd_opts = getattr(config, "cmd_opts", None)
    if cmd_opts and getattr(cmd_opts, "autogenerate", False):
        script = directives[0]
        if script.upgrade_ops.is_empty():
            directives[:] = []
            logger.info("No changes in schema detected.")


def _configure_args(url: str) -> dict:
    args = {
        "target_metadata": _metadata(),
        "include_object": include_object,
        "process_revision_directives": process_revision_directives,
        "compare_type": True,
        "compare_server_default": True,
        # SQLite can't ALTER constraints in place.
        "render_as_batch": url.startswith("sqlite"),
    }
    flask_db = _flask_db()
    if flask_db is not None:
        from flask import current_app

        for key, value in (current_app.extensions["migrate"].configure_args or {}).items():
            args.setdefault(key, value)
    return args


# -----------------------------------------------------------------------------
# Resolve sqlalchemy.url
# -----------------------------------------------------------------------------
if DB_URL:
    config.set_main_option("sqlalchemy.url", _normalized(DB_URL).replace("%", "%%"))
elif _flask_db() is not None:
    config.set_main_option(
        "sqlalchemy.url",
        _flask_db().engine.url.render_as_string(hide_password=False).replace("%", "%%"),
    )


def run_migrations_offline():
    url = _require_url()
    context.configure(url=url, literal_binds=True, **_configure_args(url))
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    flask_db = _flask_db()
    if flask_db is not None and not DB_URL:
        engine = flask_db.engine
    else:
        from sqlalchemy import create_engine

        engine = create_engine(_require_url())

    with engine.connect() as connection:
        context.configure(connection=connection, **_configure_args(str(engine.url)))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
