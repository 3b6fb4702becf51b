"""XML Encryption support for ``saml:EncryptedAssertion``.

Only decryption with the SP private key is implemented. Supported
algorithms:

- key transport: RSA-OAEP (``rsa-oaep-mgf1p`` and ``xmlenc11#rsa-oaep``), RSA PKCS#1 v1.5
- content: AES-128/192/256-CBC, AES-128/192/256-GCM
"""

from __future__ import annotations

import base64
import binascii

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from lxml import etree

from samlgate.core.crypto.certs import KeyLoadError, load_private_key_pem
from samlgate.core.errors import InvalidAssertion, ProtocolConfigError

XENC_NS = "http://www.w3.org/2001/04/xmlenc#"
XENC11_NS = "http://www.w3.org/2009/xmlenc11#"
DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"

NS = {"xenc": XENC_NS, "xenc11": XENC11_NS, "ds": DSIG_NS}

RSA_OAEP_MGF1P = f"{XENC_NS}rsa-oaep-mgf1p"
RSA_OAEP = f"{XENC11_NS}rsa-oaep"
RSA_1_5 = f"{XENC_NS}rsa-1_5"

CBC_ALGORITHMS = {
    f"{XENC_NS}aes128-cbc": 16,
    f"{XENC_NS}aes192-cbc": 24,
    f"{XENC_NS}aes256-cbc": 32,
}

GCM_ALGORITHMS = {
    f"{XENC11_NS}aes128-gcm": 16,
    f"{XENC11_NS}aes192-gcm": 24,
    f"{XENC11_NS}aes256-gcm": 32,
}

DIGESTS: dict[str, type[hashes.HashAlgorithm]] = {
    "http://www.w3.org/2000/09/xmldsig#sha1": hashes.SHA1,
    "http://www.w3.org/2001/04/xmlenc#sha256": hashes.SHA256,
    "http://www.w3.org/2001/04/xmldsig-more#sha384": hashes.SHA384,
    "http://www.w3.org/2001/04/xmlenc#sha512": hashes.SHA512,
}

MGFS: dict[str, type[hashes.HashAlgorithm]] = {
    f"{XENC11_NS}mgf1sha1": hashes.SHA1,
    f"{XENC11_NS}mgf1sha256": hashes.SHA256,
    f"{XENC11_NS}mgf1sha384": hashes.SHA384,
    f"{XENC11_NS}mgf1sha512": hashes.SHA512,
}


def _cipher_value(element: etree._Element) -> bytes:
    value = element.findtext("xenc:CipherData/xenc:CipherValue", namespaces=NS)
    if not value:
        raise InvalidAssertion("Encrypted element has no CipherValue")
    try:
        return base64.b64decode("".join(value.split()), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidAssertion("CipherValue is not valid base64") from None


def _algorithm(element: etree._Element) -> str:
    method = element.find("xenc:EncryptionMethod", NS)
    if method is None or not method.get("Algorithm"):
        raise InvalidAssertion("Encrypted element has no EncryptionMethod")
    return method.get("Algorithm")


def _find_encrypted_key(encrypted: etree._Element, data: etree._Element) -> etree._Element:
    """EncryptedKey lives either in the data's KeyInfo or next to it."""
    key = data.find("ds:KeyInfo/xenc:EncryptedKey", NS)
    if key is None:
        key = encrypted.find("xenc:EncryptedKey", NS)
    if key is None:
        raise InvalidAssertion("EncryptedAssertion carries no EncryptedKey")
    return key


def _oaep_padding(encrypted_key: etree._Element, algorithm: str) -> padding.OAEP:
    method = encrypted_key.find("xenc:EncryptionMethod", NS)
    digest_uri = method.find("ds:DigestMethod", NS)
    digest = DIGESTS.get(digest_uri.get("Algorithm"), hashes.SHA1) if digest_uri is not None else hashes.SHA1

    mgf = hashes.SHA1
    if algorithm == RSA_OAEP:
        mgf_elem = method.find("xenc11:MGF", NS)
        if mgf_elem is not None:
            mgf = MGFS.get(mgf_elem.get("Algorithm"), hashes.SHA1)

    return padding.OAEP(mgf=padding.MGF1(algorithm=mgf()), algorithm=digest(), label=None)


def _decrypt_key(encrypted_key: etree._Element, private_key_pem: str) -> bytes:
    try:
        key = load_private_key_pem(private_key_pem)
    except KeyLoadError as e:
        raise ProtocolConfigError(f"Service Provider private key is unusable: {e}") from None

    algorithm = _algorithm(encrypted_key)
    if algorithm in (RSA_OAEP_MGF1P, RSA_OAEP):
        scheme = _oaep_padding(encrypted_key, algorithm)
    elif algorithm == RSA_1_5:
        scheme = padding.PKCS1v15()
    else:
        raise InvalidAssertion(f"Unsupported key transport algorithm: {algorithm}")

    try:
        return key.decrypt(_cipher_value(encrypted_key), scheme)
    except ValueError:
        raise InvalidAssertion("EncryptedKey could not be decrypted with the SP key") from None


def _decrypt_content(algorithm: str, key: bytes, payload: bytes) -> bytes:
    if algorithm in CBC_ALGORITHMS:
        if len(key) != CBC_ALGORITHMS[algorithm] or len(payload) < 32 or len(payload) % 16:
            raise InvalidAssertion("Malformed AES-CBC encrypted data")
        decryptor = Cipher(algorithms.AES(key), modes.CBC(payload[:16])).decryptor()
        plain = decryptor.update(payload[16:]) + decryptor.finalize()
        # XML Encryption padding: last byte counts the padding bytes
        pad = plain[-1]
        if pad < 1 or pad > 16:
            raise InvalidAssertion("Invalid AES-CBC padding")
        return plain[:-pad]

    if algorithm in GCM_ALGORITHMS:
        if len(key) != GCM_ALGORITHMS[algorithm] or len(payload) < 28:
            raise InvalidAssertion("Malformed AES-GCM encrypted data")
        try:
            return AESGCM(key).decrypt(payload[:12], payload[12:], None)
        except InvalidTag:
            raise InvalidAssertion("AES-GCM authentication tag mismatch") from None

    raise InvalidAssertion(f"Unsupported content encryption algorithm: {algorithm}")


def decrypt_assertion(
    encrypted: etree._Element,
    private_key_pem: str,
    parser: etree.XMLParser,
) -> etree._Element:
    """Decrypt a ``saml:EncryptedAssertion`` element.

    Args:
        encrypted: The EncryptedAssertion element.
        private_key_pem: SP private key in PEM form.
        parser: Parser used for the decrypted XML.

    Returns:
        The decrypted ``saml:Assertion`` element as a standalone tree.

    Raises:
        InvalidAssertion: If the structure is malformed or decryption fails.
        ProtocolConfigError: If the SP private key is unusable.
    """
    data = encrypted.find("xenc:EncryptedData", NS)
    if data is None:
        raise InvalidAssertion("EncryptedAssertion carries no EncryptedData")

    session_key = _decrypt_key(_find_encrypted_key(encrypted, data), private_key_pem)
    plain = _decrypt_content(_algorithm(data), session_key, _cipher_value(data))

    try:
        return etree.fromstring(plain, parser)
    except etree.XMLSyntaxError as e:
        raise InvalidAssertion(f"Decrypted assertion is not valid XML: {e}") from None
