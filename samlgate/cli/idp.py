"""Identity Provider CLI commands."""

from __future__ import annotations

from pathlib import Path

import click


@click.group()
def idp() -> None:
    """Manage trusted Identity Providers."""
    pass


@idp.command("import")
@click.argument("name")
@click.argument("source")
@click.option(
    "--save",
    is_flag=True,
    help="Add or update the IdP entry in the configuration file",
)
@click.pass_context
def idp_import(ctx: click.Context, name: str, source: str, save: bool) -> None:
    """Import IdP metadata from a file or URL.

    Writes the IdP signing certificates to <credentials_dir>/idps/NAME/ and
    prints (or, with --save, stores) the matching configuration entry.
    """
    from samlgate.cli.main import get_config
    from samlgate.core.config import NAME_PATTERN, IdentityProviderSettings
    from samlgate.core.saml.idp_metadata import (
        fetch_idp_metadata,
        parse_idp_metadata,
        write_idp_certificates,
    )

    if not NAME_PATTERN.match(name):
        raise click.ClickException(f"Invalid identity provider name: {name!r}")

    if source.startswith(("http://", "https://")):
        result = fetch_idp_metadata(source)
    else:
        path = Path(source)
        if not path.is_file():
            raise click.ClickException(f"Metadata file not found: {source}")
        result = parse_idp_metadata(path.read_bytes())

    if not result.success:
        raise click.ClickException(result.error or "Invalid metadata")
    if not result.certificates:
        raise click.ClickException("Metadata does not contain a signing certificate")

    config = get_config(ctx)
    written = write_idp_certificates(result, config.saml.credentials_dir, name)

    click.echo(f"Identity provider: {name}")
    click.echo(f"  Entity ID: {result.entity_id}")
    click.echo(f"  Login endpoint: {result.sso_url}")
    click.echo(f"  Logout endpoint: {result.slo_url or '-'}")
    for cert_path in written:
        click.echo(f"  Certificate: {cert_path}")

    settings = IdentityProviderSettings(
        login_endpoint=result.sso_url or "",
        logout_endpoint=result.slo_url or "",
        certificates=written if len(written) > 1 else [],
    )

    if save:
        config.identity_providers[name] = settings
        target = ctx.obj.get("config_path") or config.config_path
        config.save(target)
        click.echo(f"Configuration updated: {target or 'default location'}")
    else:
        import yaml

        click.echo("")
        click.echo("Add to the configuration file:")
        click.echo(yaml.safe_dump({"identity_providers": {name: settings.to_dict()}}, default_flow_style=False))
