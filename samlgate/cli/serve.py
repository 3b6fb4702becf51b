"""Server CLI commands."""

from __future__ import annotations

from pathlib import Path

import click


@click.command()
@click.option(
    "--host",
    "-h",
    default=None,
    help="Host to bind to (default: from config or 127.0.0.1)",
)
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    help="Port to bind to (default: from config or 8080)",
)
@click.option(
    "--no-tls",
    is_flag=True,
    help="Disable TLS even if enabled in the configuration",
)
@click.option(
    "--cert",
    type=click.Path(exists=True, path_type=Path),  # type: ignore[type-var]
    help="Path to TLS certificate (PEM format)",
)
@click.option(
    "--key",
    type=click.Path(exists=True, path_type=Path),  # type: ignore[type-var]
    help="Path to TLS private key (PEM format)",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug mode (real error messages in responses)",
)
@click.pass_context
def serve(
    ctx: click.Context,
    host: str | None,
    port: int | None,
    no_tls: bool,
    cert: Path | None,
    key: Path | None,
    debug: bool,
) -> None:
    """Start the SAMLGate web server.

    Examples:

        # Start with settings from config.yaml
        samlgate serve

        # Start on custom port with a TLS certificate
        samlgate serve --port 8443 --cert /path/to/cert.pem --key /path/to/key.pem
    """
    from samlgate.app import run_server
    from samlgate.cli.main import get_config
    from samlgate.core.errors import ConfigError

    if cert and not key:
        raise click.ClickException("--key is required when --cert is provided")
    if key and not cert:
        raise click.ClickException("--cert is required when --key is provided")

    config = get_config(ctx)

    if cert and key:
        config.server.tls.enabled = True
        config.server.tls.cert_path = cert
        config.server.tls.key_path = key

    if no_tls:
        config.server.tls.enabled = False

    if debug:
        config.server.debug = True

    try:
        run_server(config=config, host=host, port=port)
    except ConfigError as e:
        raise click.ClickException(str(e)) from None
