"""Flask application factory."""

import logging

import sentry_sdk
from flask import Flask, jsonify
from flask_cors import CORS
from flask_migrate import Migrate
from flask_restx import Api, fields
from sentry_sdk.integrations.flask import FlaskIntegration

from app.database import db
from app.routes.api.v1.checkout import checkout_ns
from app.routes.api.v1.licenses import licenses_ns
from app.routes.api.v1.queue import queue_ns
from app.routes.api.v1.stripe import stripe_ns
from consentbit.logging import configure_logging


def _init_sentry(app: Flask) -> None:
    dsn = app.config.get("SENTRY_DSN")
    if not dsn or app.config.get("TESTING"):
        return
    sentry_sdk.init(
        dsn=dsn,
        environment=app.config.get("SENTRY_ENVIRONMENT"),
        integrations=[FlaskIntegration()],
        traces_sample_rate=1.0,
    )
    logging.info("Sentry initialized")


def create_app(config=None):
    """Create Flask application.

    Parameters
    ----------
    config : object | str | dict, optional
        A config class or its import path, or a mapping of overrides applied on top of
        ``config.Config``.
    """
    app = Flask(__name__)

    # Load configuration
    if config is None:
        app.config.from_object("config.Config")
    elif isinstance(config, dict):
        app.config.from_object("config.Config")
        app.config.update(config)
    else:
        app.config.from_object(config)

    configure_logging(app)
    _init_sentry(app)

    # Initialize extensions
    CORS(app)
    db.init_app(app)
    Migrate(app, db)

    # Register CLI commands
    from app.cli import (
        enqueue_cycle_command,
        init_db_command,
        process_queue_command,
        reclaim_stuck_command,
        refund_sweep_command,
        run_worker_command,
    )

    app.cli.add_command(init_db_command)
    app.cli.add_command(process_queue_command)
    app.cli.add_command(refund_sweep_command)
    app.cli.add_command(reclaim_stuck_command)
    app.cli.add_command(enqueue_cycle_command)
    app.cli.add_command(run_worker_command)

    @app.after_request
    def add_security_headers(response):
        """Add security headers to all responses."""
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        return response

    # Initialize API
    api = Api(
        app,
        version="1.0",
        title="ConsentBit API",
        description="""
        License provisioning for ConsentBit.

        ## Authentication
        End-user authentication is handled by the identity provider in front of this
        service. Queue triggers and job inspection require the `X-Cron-Secret` header.

        ## Errors
        The API uses standard HTTP response codes:
        - 2xx: Success
        - 4xx: Client errors (invalid input, unauthorized)
        - 5xx: Server errors

        Error responses include a message field with details.
        """,
        doc="/swagger",
        prefix="/api/v1",
        ordered=True,
        default_mediatype="application/json",
        default="ConsentBit API",
        license="Proprietary",
    )

    api.response(
        400,
        "Validation Error",
        api.model(
            "Error",
            {
                "message": fields.String(description="Error message"),
                "errors": fields.Raw(description="Detailed validation errors"),
            },
        ),
    )

    # Add namespaces
    api.add_namespace(checkout_ns)
    api.add_namespace(licenses_ns)
    api.add_namespace(queue_ns)
    api.add_namespace(stripe_ns)

    # Error handlers
    @app.errorhandler(401)
    def unauthorized(error):
        """Handle unauthorized access."""
        logging.error("Unauthorized access attempt - %s", error)
        return jsonify({"message": "Unauthorized access"}), 401

    @app.errorhandler(403)
    def forbidden(error):
        """Handle forbidden access."""
        logging.error("Forbidden access attempt - %s", error)
        return jsonify({"message": "Forbidden"}), 403

    @app.errorhandler(404)
    def not_found(error):
        """Handle not found error."""
        logging.error("Resource not found - %s", error)
        return jsonify({"message": "Resource not found"}), 404

    @app.errorhandler(500)
    def internal_error(error):
        """Handle internal server error."""
        logging.error("Internal server error - %s", error)
        return jsonify({"message": "Internal server error"}), 500

    return app
