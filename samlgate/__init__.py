"""SAMLGate - SAML Service Provider gateway for legacy backends."""

__version__ = "0.1.0"
