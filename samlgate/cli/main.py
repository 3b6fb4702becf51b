"""CLI entry point for SAMLGate."""

from __future__ import annotations

from pathlib import Path

import click

from samlgate import __version__
from samlgate.cli import certs as certs_commands
from samlgate.cli import db as db_commands
from samlgate.cli import idp as idp_commands
from samlgate.cli import serve as serve_commands
from samlgate.core.config import (
    DEFAULT_CONFIG_FILE,
    GatewayConfig,
    get_default_config_yaml,
    load_config,
)
from samlgate.core.errors import ConfigError


def get_config(ctx: click.Context) -> GatewayConfig:
    """Load the configuration selected by the global ``--config`` option."""
    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        raise click.ClickException(str(e)) from None


@click.group()
@click.version_option(version=__version__, prog_name="samlgate")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),  # type: ignore[type-var]
    default=None,
    help=f"Configuration file (default: {DEFAULT_CONFIG_FILE})",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """SAMLGate - SAML Service Provider gateway for legacy applications."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite an existing configuration file.",
)
@click.pass_context
def init(ctx: click.Context, force: bool) -> None:
    """Write an example configuration file."""
    path: Path = ctx.obj.get("config_path") or DEFAULT_CONFIG_FILE

    if path.exists() and not force:
        click.echo("SAMLGate is already initialized.")
        click.echo(f"  Configuration: {path}")
        click.echo("")
        click.echo("Use --force to overwrite it")
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_default_config_yaml())
    click.echo(f"Configuration written to: {path}")
    click.echo("")
    click.echo("Next steps:")
    click.echo("  1. Run 'samlgate certs generate' to create the SP key pair")
    click.echo("  2. Run 'samlgate idp import <name> <metadata>' for each Identity Provider")
    click.echo("  3. Run 'samlgate db init' to create the session table")


@cli.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),  # type: ignore[type-var]
    help="Write metadata to a file instead of stdout",
)
@click.pass_context
def metadata(ctx: click.Context, output: Path | None) -> None:
    """Print the Service Provider metadata XML."""
    from samlgate.core.errors import GatewayError
    from samlgate.dispatch.bridge import RequestDescriptor
    from samlgate.dispatch.units import Endpoint, SAMLUnit

    config = get_config(ctx)
    request = RequestDescriptor(settings=config, service_name="SAML", debug=True)
    try:
        xml = SAMLUnit(request).run(Endpoint.METADATA)
    except GatewayError as e:
        raise click.ClickException(e.message) from None

    if output:
        output.write_text(xml)
        click.echo(f"Metadata written to: {output}")
    else:
        click.echo(xml, nl=False)


cli.add_command(db_commands.db)
cli.add_command(certs_commands.certs)
cli.add_command(idp_commands.idp)
cli.add_command(serve_commands.serve)
