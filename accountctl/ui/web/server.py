"""
Provisioning API server — Flask app factory.

Creates the Flask application that fronts a ProvisioningService: the
operator's wizard posts requests here and polls job status.
"""

from __future__ import annotations

import logging

from flask import Flask

from accountctl.core.use_cases.provision import ProvisioningService

logger = logging.getLogger(__name__)

SERVICE_KEY = "provisioning"


def create_app(service: ProvisioningService, *, testing: bool = False) -> Flask:
    """Create and configure the Flask application.

    Args:
        service: The provisioning service every route delegates to.
        testing: Set Flask's TESTING flag.

    Returns:
        Configured Flask application.
    """
    app = Flask(__name__)
    app.config["TESTING"] = testing
    app.config["MAX_CONTENT_LENGTH"] = 1024 * 1024  # requests are small JSON documents
    app.extensions[SERVICE_KEY] = service

    from accountctl.ui.web.routes_provisioning import provisioning_bp

    app.register_blueprint(provisioning_bp, url_prefix="/api/provisioning")

    logger.info("Provisioning API app created (mock=%s)", service.registry.mock_mode)
    return app


def run_server(
    app: Flask,
    host: str = "127.0.0.1",
    port: int = 8000,
    debug: bool = False,
) -> None:
    """Run the Flask development server."""
    logger.info("Starting provisioning API on %s:%d", host, port)
    app.run(host=host, port=port, debug=debug, use_reloader=False)
