"""Web routes for SAMLGate."""

from __future__ import annotations

import logging

from flask import Flask, request

from samlgate.core.config import GatewayConfig
from samlgate.dispatch.bridge import DispatchBridge

logger = logging.getLogger("samlgate.web")


def log_request() -> None:
    """Log every inbound request."""
    logger.info(f"{request.method} {request.path}")


def init_app(app: Flask, config: GatewayConfig, bridge: DispatchBridge | None = None) -> None:
    """Register request logging and the enabled services with the Flask app."""
    from samlgate.web.routes.saml import create_saml_service

    app.before_request(log_request)

    if config.saml.enabled:
        service = create_saml_service(config, bridge)
        app.register_blueprint(service.blueprint)
        app.extensions["samlgate.services"] = {service.name: service}
