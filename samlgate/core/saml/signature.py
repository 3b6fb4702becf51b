"""XML signature verification and HTTP-Redirect binding signatures.

Assertions are verified with signxml against each certificate of an IdP's
trusted set in turn; login requests are signed for the Redirect binding
with the SP private key.
"""

from __future__ import annotations

import base64
import logging
from enum import StrEnum

from cryptography import exceptions as crypto_exceptions
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from lxml import etree
from signxml import XMLVerifier
from signxml.exceptions import InvalidInput, InvalidSignature

from samlgate.core.crypto.certs import KeyLoadError, load_private_key_pem
from samlgate.core.errors import InvalidAssertion, ProtocolConfigError

logger = logging.getLogger(__name__)

# XML namespace for signatures
DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"


class SignatureAlgorithm(StrEnum):
    """Redirect binding signature algorithms supported for signing."""

    RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"


def has_signature(element: etree._Element) -> bool:
    """Whether ``element`` carries an enveloped ds:Signature as a direct child."""
    return element.find(f"{{{DSIG_NS}}}Signature") is not None


def verify_with_trusted(data: bytes, certificates: tuple[str, ...] | list[str]) -> etree._Element:
    """Verify an enveloped XML signature against a trusted certificate set.

    The first certificate that verifies wins; no ordering is implied.

    Args:
        data: Serialized XML whose signature covers the root element.
        certificates: PEM certificates trusted for the issuer.

    Returns:
        The element covered by the signature, re-parsed from the verified
        bytes. Only this element may be trusted.

    Raises:
        ProtocolConfigError: If no trusted certificate is configured.
        InvalidAssertion: If no certificate verifies the signature.
    """
    if not certificates:
        raise ProtocolConfigError("Identity provider has no trusted certificates")

    failures: list[str] = []
    for index, cert_pem in enumerate(certificates):
        try:
            result = XMLVerifier().verify(data, x509_cert=cert_pem)
        except (InvalidSignature, crypto_exceptions.InvalidSignature, InvalidInput, ValueError) as e:
            failures.append(f"certificate {index}: {e}")
            continue
        logger.debug(f"Signature verified with trusted certificate {index}")
        # A single signature is expected, signxml may still return a list
        if isinstance(result, list):
            result = result[0]
        return result.signed_xml

    logger.info(f"Signature verification failed against {len(certificates)} certificate(s)")
    raise InvalidAssertion(
        "Signature validation failed against all trusted certificates: " + "; ".join(failures)
    )


def sign_redirect_query(
    query: str,
    private_key_pem: str,
    algorithm: SignatureAlgorithm = SignatureAlgorithm.RSA_SHA256,
) -> str:
    """Sign an HTTP-Redirect binding query string.

    Args:
        query: The URL-encoded ``SAMLRequest=..&RelayState=..&SigAlg=..`` string.
        private_key_pem: SP private key in PEM form.
        algorithm: Signature algorithm named in ``SigAlg``.

    Returns:
        Base64 signature value for the ``Signature`` parameter.

    Raises:
        ProtocolConfigError: If the key is missing or cannot be parsed.
    """
    if not private_key_pem:
        raise ProtocolConfigError("Service Provider private key is not configured")
    try:
        key = load_private_key_pem(private_key_pem)
    except KeyLoadError as e:
        raise ProtocolConfigError(f"Service Provider private key is unusable: {e}") from None

    signature = key.sign(query.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")
