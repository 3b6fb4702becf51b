"""Flask application factory."""

from __future__ import annotations

import logging
import ssl
from pathlib import Path

from flask import Flask

from samlgate.core.config import GatewayConfig, load_config
from samlgate.core.errors import ConfigError
from samlgate.core.logging import configure_logging
from samlgate.dispatch.bridge import DispatchBridge

logger = logging.getLogger(__name__)


def create_app(
    config: GatewayConfig | None = None,
    bridge: DispatchBridge | None = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Gateway configuration. Loads from file/env if not provided.
        bridge: Dispatch bridge for the SAML service. Built from the
            configuration if not provided.

    Returns:
        Configured Flask application instance.
    """
    if config is None:
        config = load_config()

    app = Flask(__name__)
    app.config.from_mapping(
        GATEWAY=config,
        APPLICATION_ROOT=config.server.base_path or "/",
    )
    app.debug = config.debug

    from samlgate.web import routes

    routes.init_app(app, config, bridge)

    return app


def create_ssl_context(
    cert_path: Path,
    key_path: Path,
) -> ssl.SSLContext:
    """Create an SSL context for HTTPS.

    Args:
        cert_path: Path to the certificate file (PEM format).
        key_path: Path to the private key file (PEM format).

    Returns:
        Configured SSL context.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(str(cert_path), str(key_path))
    return context


def run_server(
    config: GatewayConfig | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the gateway with optional TLS.

    Args:
        config: Gateway configuration. Loads from file/env if not provided.
        host: Override host from config.
        port: Override port from config.

    Raises:
        ConfigError: If TLS is enabled without certificate and key paths.
    """
    if config is None:
        config = load_config()

    configure_logging(debug=config.debug)

    server_host = host or config.server.host
    server_port = port or config.server.port
    tls = config.server.tls

    ssl_context: ssl.SSLContext | None = None
    if tls.enabled:
        if not tls.cert_path or not tls.key_path:
            raise ConfigError("TLS is enabled but cert_path or key_path is not set")
        ssl_context = create_ssl_context(tls.cert_path, tls.key_path)
        protocol = "https"
    else:
        protocol = "http"
        logger.warning("TLS is disabled. Identity Providers usually require HTTPS endpoints.")

    app = create_app(config)

    logger.info(f"Starting SAMLGate at {protocol}://{server_host}:{server_port}{config.server.base_path}")
    app.run(
        host=server_host,
        port=server_port,
        ssl_context=ssl_context,
        debug=False,
        threaded=True,
    )
