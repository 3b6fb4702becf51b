"""Service Provider key pair management.

Generates the SP signing/encryption key pair and stores it in the
credentials directory layout read by :mod:`samlgate.core.crypto.credentials`.
"""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID


class CertificateError(Exception):
    """Base exception for certificate-related errors."""


class CertificateLoadError(CertificateError):
    """Raised when a certificate cannot be loaded."""


class KeyLoadError(CertificateError):
    """Raised when a private key cannot be loaded."""


@dataclass
class CertificateInfo:
    """Information extracted from an X.509 certificate."""

    subject: str
    issuer: str
    serial_number: str
    not_before: datetime
    not_after: datetime
    fingerprint_sha256: str
    key_type: str
    key_size: int

    @property
    def is_valid(self) -> bool:
        """Whether the certificate is inside its validity window."""
        now = datetime.now(UTC)
        return self.not_before <= now <= self.not_after


def generate_private_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key.

    Args:
        key_size: RSA key size in bits. Default 2048.

    Returns:
        RSA private key.
    """
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def generate_signing_certificate(
    private_key: rsa.RSAPrivateKey,
    common_name: str,
    organization: str = "SAMLGate",
    days_valid: int = 730,
) -> x509.Certificate:
    """Generate a self-signed certificate for SAML signing and encryption.

    SAML peers pin the certificate itself rather than a chain, so a
    self-signed certificate is sufficient.

    Args:
        private_key: RSA private key to sign the certificate.
        common_name: Common Name (CN), usually the SP host name.
        organization: Organization (O) for the certificate subject.
        days_valid: Number of days the certificate is valid.

    Returns:
        Self-signed X.509 certificate.
    """
    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])

    now = datetime.now(UTC)

    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=days_valid))
        .add_extension(
            x509.BasicConstraints(ca=False, path_length=None),
            critical=True,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=True,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(private_key, hashes.SHA256())
    )


def save_private_key(private_key: rsa.RSAPrivateKey, path: Path) -> None:
    """Save a private key to an unencrypted PEM file with 0600 permissions.

    Args:
        private_key: RSA private key to save.
        path: Path to write the key file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    pem_data = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )

    path.touch(mode=0o600)
    path.write_bytes(pem_data)
    # Ensure permissions are correct even if file existed
    os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)


def save_certificate(cert: x509.Certificate, path: Path) -> None:
    """Save a certificate to a PEM file.

    Args:
        cert: X.509 certificate to save.
        path: Path to write the certificate file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))


def load_certificate(path: Path) -> x509.Certificate:
    """Load a certificate from a PEM file.

    Raises:
        CertificateLoadError: If the certificate cannot be loaded.
    """
    try:
        return x509.load_pem_x509_certificate(path.read_bytes())
    except (OSError, ValueError) as e:
        raise CertificateLoadError(f"Failed to load certificate from {path}: {e}") from e


def load_private_key_pem(pem: str) -> rsa.RSAPrivateKey:
    """Parse an unencrypted PEM RSA private key.

    The error message never includes the key text.

    Raises:
        KeyLoadError: If the text is not an RSA private key.
    """
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError) as e:
        raise KeyLoadError(f"Failed to parse private key: {type(e).__name__}") from None
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyLoadError(f"Expected RSA private key, got {type(key).__name__}")
    return key


def get_certificate_info(cert: x509.Certificate) -> CertificateInfo:
    """Extract information from an X.509 certificate."""
    public_key = cert.public_key()
    if isinstance(public_key, rsa.RSAPublicKey):
        key_type = "RSA"
        key_size = public_key.key_size
    else:
        key_type = type(public_key).__name__
        key_size = 0

    return CertificateInfo(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        serial_number=format(cert.serial_number, "x"),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        fingerprint_sha256=cert.fingerprint(hashes.SHA256()).hex(),
        key_type=key_type,
        key_size=key_size,
    )


def get_certificate_pem(cert: x509.Certificate) -> str:
    """Get PEM-encoded string of a certificate."""
    return cert.public_bytes(serialization.Encoding.PEM).decode("utf-8")


def certificate_body(cert_pem: str) -> str:
    """Base64 body of a PEM certificate, as embedded in ``ds:X509Certificate``."""
    lines = [
        line.strip()
        for line in cert_pem.strip().splitlines()
        if line.strip() and not line.startswith("-----")
    ]
    return "".join(lines)


def pem_from_body(body: str) -> str:
    """Rebuild PEM text from a base64 certificate body."""
    compact = "".join(body.split())
    lines = [compact[i:i + 64] for i in range(0, len(compact), 64)]
    return "-----BEGIN CERTIFICATE-----\n" + "\n".join(lines) + "\n-----END CERTIFICATE-----\n"


def generate_sp_credentials(
    credentials_dir: Path,
    common_name: str,
    days_valid: int = 730,
    overwrite: bool = False,
) -> tuple[Path, Path]:
    """Create ``sp/cert.cer`` and ``sp/key.pem`` under a credentials directory.

    Args:
        credentials_dir: Root of the credentials layout.
        common_name: Common Name for the certificate.
        days_valid: Days the certificate is valid.
        overwrite: Replace existing files.

    Returns:
        Tuple of (cert_path, key_path).

    Raises:
        CertificateError: If the files exist and overwrite is not set.
    """
    cert_path = credentials_dir / "sp" / "cert.cer"
    key_path = credentials_dir / "sp" / "key.pem"

    if not overwrite and (cert_path.exists() or key_path.exists()):
        raise CertificateError(f"SP credentials already exist in {cert_path.parent}")

    private_key = generate_private_key()
    cert = generate_signing_certificate(private_key, common_name, days_valid=days_valid)
    save_private_key(private_key, key_path)
    save_certificate(cert, cert_path)
    return cert_path, key_path
