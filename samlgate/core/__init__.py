"""Core gateway building blocks: configuration, errors, logging and SAML."""

from samlgate.core.logging import (
    LogLevel,
    RedactingFilter,
    configure_logging,
    redact_sensitive,
)

__all__ = [
    "LogLevel",
    "RedactingFilter",
    "configure_logging",
    "redact_sensitive",
]
