"""Service Provider certificate CLI commands."""

from __future__ import annotations

from pathlib import Path

import click


@click.group()
def certs() -> None:
    """Manage the Service Provider key pair.

    The SP signs login requests and decrypts assertions with the key in
    <credentials_dir>/sp/key.pem; Identity Providers receive the matching
    certificate <credentials_dir>/sp/cert.cer through the SP metadata.
    """
    pass


@certs.command("generate")
@click.option(
    "--common-name",
    "-cn",
    default=None,
    help="Common Name (CN) for the certificate (default: entity ID host)",
)
@click.option(
    "--days",
    "-d",
    type=int,
    default=730,
    help="Days the certificate is valid",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),  # type: ignore[type-var]
    help="Credentials directory (default: saml.credentials_dir)",
)
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite existing key pair",
)
@click.pass_context
def certs_generate(
    ctx: click.Context,
    common_name: str | None,
    days: int,
    output: Path | None,
    force: bool,
) -> None:
    """Generate a new SP key pair and self-signed certificate."""
    from urllib.parse import urlsplit

    from samlgate.cli.main import get_config
    from samlgate.core.crypto.certs import CertificateError, generate_sp_credentials

    config = get_config(ctx)
    credentials_dir = output or config.saml.credentials_dir
    if common_name is None:
        common_name = urlsplit(config.saml.entity_id).hostname or "localhost"

    try:
        cert_path, key_path = generate_sp_credentials(
            credentials_dir, common_name, days_valid=days, overwrite=force
        )
    except CertificateError as e:
        raise click.ClickException(f"{e}. Use --force to overwrite") from None

    click.echo("Generated SP key pair:")
    click.echo(f"  Certificate: {cert_path}")
    click.echo(f"  Private key: {key_path}")
    click.echo("  Key file permissions: 0600 (owner read/write only)")


@certs.command("show")
@click.argument(
    "cert_path",
    required=False,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),  # type: ignore[type-var]
)
@click.pass_context
def certs_show(ctx: click.Context, cert_path: Path | None) -> None:
    """Show certificate details (default: the SP certificate)."""
    from samlgate.cli.main import get_config
    from samlgate.core.crypto.certs import (
        CertificateLoadError,
        get_certificate_info,
        load_certificate,
    )

    if cert_path is None:
        cert_path = get_config(ctx).saml.sp_certificate_path

    try:
        cert = load_certificate(cert_path)
    except CertificateLoadError as e:
        raise click.ClickException(str(e)) from None

    info = get_certificate_info(cert)

    click.echo(f"Certificate: {cert_path}")
    click.echo(f"  Subject: {info.subject}")
    click.echo(f"  Issuer: {info.issuer}")
    click.echo(f"  Not Before: {info.not_before.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    click.echo(f"  Not After: {info.not_after.strftime('%Y-%m-%d %H:%M:%S UTC')}")

    status = "VALID" if info.is_valid else "EXPIRED"
    status_color = "green" if info.is_valid else "red"
    click.echo(click.style(f"  Status: {status}", fg=status_color))

    click.echo(f"  Key: {info.key_type} {info.key_size} bits")
    click.echo(f"  SHA-256: {info.fingerprint_sha256}")
