"""Error taxonomy shared by the router, the dispatch bridge and execution units.

Every error takes a single message argument so instances survive pickling
across the process boundary of an execution unit.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base exception for all gateway failures."""

    status_code: int = 500
    generic_message: str = "The request could not be processed."

    @property
    def message(self) -> str:
        """The human-readable error message."""
        return str(self.args[0]) if self.args else self.generic_message

    def public_message(self, debug: bool) -> str:
        """Message to expose to clients.

        Args:
            debug: Whether verbose error details may be exposed.

        Returns:
            The real message in debug mode, the generic message otherwise.
        """
        return self.message if debug else self.generic_message


class ConfigError(GatewayError):
    """Raised when the configuration file cannot be accepted at load time."""

    generic_message = "Invalid gateway configuration."


class ProtocolConfigError(GatewayError):
    """Malformed or missing Service Provider / Identity Provider descriptor."""

    generic_message = "Service Provider or Identity Provider is misconfigured."


class InvalidAssertion(GatewayError):
    """The IdP response failed signature, schema or time validation."""

    generic_message = "The SAML assertion could not be validated."


class MissingSessionIndex(GatewayError):
    """The assertion carries no SessionIndex although one is required."""

    generic_message = "The SAML assertion does not carry a session index."


class InvalidRelayState(GatewayError):
    """The RelayState is malformed or its seal does not verify."""

    status_code = 400
    generic_message = "Invalid RelayState."


class CredentialUnreadable(GatewayError):
    """Key or certificate material could not be read."""

    generic_message = (
        "Cannot read Service Provider or Identity Provider settings. "
        "Check file paths and permissions."
    )


class StoreError(GatewayError):
    """Base exception for session store failures."""


class StoreUnavailable(StoreError):
    """The session store connection could not be opened."""

    generic_message = "Cannot connect to database for SAML session storage."


class StoreWriteFailed(StoreError):
    """The session upsert statement failed."""

    generic_message = "Cannot execute SQL statement for SAML session storage."


class UnknownEndpoint(GatewayError):
    """An endpoint name outside the unit's closed endpoint set was requested."""

    generic_message = "Unknown endpoint."


class DispatchTimeout(GatewayError):
    """An execution unit did not reply before its deadline."""

    status_code = 504
    generic_message = "The request timed out."


class ExecutionFault(GatewayError):
    """An execution unit failed outside the known error taxonomy."""

    generic_message = "The request could not be processed."
