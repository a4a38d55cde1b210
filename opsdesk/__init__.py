# opsdesk/__init__.py
from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .settings import Config
from .extensions import db, migrate, login_manager, limiter
from .errors import OpsDeskError


def create_app(config_object=None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    # ======================
    # Logging
    # ======================
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # ======================
    # Initialize Extensions
    # ======================
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # ======================
    # Import Models (CRITICAL)
    # ======================
    from . import models  # noqa: F401

    # ======================
    # Register Blueprints
    # ======================
    from .api import api
    from .auth import auth

    app.register_blueprint(api)
    app.register_blueprint(auth)

    # ======================
    # CLI
    # ======================
    from .cli import register_commands

    register_commands(app)

    # ======================
    # Domain errors -> {"error": message}
    # ======================
    @app.errorhandler(OpsDeskError)
    def domain_error(e: OpsDeskError):
        db.session.rollback()
        if e.status_code >= 500:
            app.logger.error("Internal error: %s", e.message)
            return jsonify({"error": "Internal server error"}), 500
        return jsonify(e.to_dict()), e.status_code

    # ======================
    # Rate limit error handler
    # ======================
    @app.errorhandler(429)
    def ratelimit_handler(e):
        return jsonify({"error": "Too many requests. Please try again later."}), 429

    # ======================
    # Other HTTP errors (404 route, 405, bad JSON...)
    # ======================
    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        return jsonify({"error": e.description or e.name}), e.code

    # ======================
    # Anything else: log everything, leak nothing
    # ======================
    @app.errorhandler(Exception)
    def unhandled(e: Exception):
        db.session.rollback()
        app.logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error"}), 500

    return app
