"""Credential Store Loader.

Reads key and certificate files and attaches their text to a descriptor
field, either replacing a single value or appending to a certificate set.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from samlgate.core.errors import CredentialUnreadable, ProtocolConfigError

logger = logging.getLogger(__name__)

PRIVATE_KEY_MARKER = "PRIVATE KEY-----"


class CredentialLoader:
    """Load PEM material for SP and IdP descriptors.

    Filesystem and parse errors are reported verbatim only in debug mode;
    otherwise they are replaced by the generic ``CredentialUnreadable``
    message so paths never reach a client.
    """

    def __init__(self, debug: bool = False) -> None:
        self.debug = debug

    def read(self, path: Path) -> str:
        """Read and validate one PEM file.

        Raises:
            CredentialUnreadable: If the file is missing, unreadable or not PEM.
        """
        try:
            text = path.read_text(encoding="utf-8")
            self._validate(text)
        except (OSError, UnicodeDecodeError, ValueError, TypeError) as e:
            logger.debug(f"Credential file {path} could not be loaded: {type(e).__name__}")
            if self.debug:
                raise CredentialUnreadable(str(e)) from e
            raise CredentialUnreadable() from None
        return text

    def attach(self, fields: dict[str, Any], name: str, path: Path) -> None:
        """Read ``path`` into ``fields[name]``.

        List-valued fields accumulate certificates; other fields are replaced.

        Raises:
            ProtocolConfigError: If ``name`` is not a field of the descriptor.
            CredentialUnreadable: If the file cannot be read.
        """
        if name not in fields:
            raise ProtocolConfigError(f"Invalid option property provided for file content: {name!r}")
        text = self.read(path)
        if isinstance(fields[name], list):
            fields[name].append(text)
        else:
            fields[name] = text

    @staticmethod
    def _validate(text: str) -> None:
        """Raise ValueError or TypeError unless ``text`` parses as a key or certificate."""
        data = text.encode("utf-8")
        if PRIVATE_KEY_MARKER in text:
            # ValueError messages from cryptography do not echo key material
            serialization.load_pem_private_key(data, password=None)
        else:
            x509.load_pem_x509_certificate(data)
