"""Value objects exchanged between the SAML engine, the units and the router.

All of them are frozen dataclasses: they are built once per request inside
an execution unit and cross the process boundary by value.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from samlgate.core.errors import InvalidRelayState, ProtocolConfigError


@dataclass(frozen=True)
class ServiceProviderDescriptor:
    """This system's own SAML identity."""

    entity_id: str
    assert_endpoint: str
    certificate: str
    private_key: str = field(repr=False)
    allow_unencrypted_assertion: bool = True

    def __post_init__(self) -> None:
        if not self.entity_id:
            raise ProtocolConfigError("Service Provider entity_id is not configured")


@dataclass(frozen=True)
class IdentityProviderDescriptor:
    """One trusted Identity Provider."""

    name: str
    login_url: str
    logout_url: str = ""
    certificates: tuple[str, ...] = ()


@dataclass(frozen=True)
class IdentityClaims:
    """Identity extracted from a validated assertion. The name id is raw."""

    name_id: str
    session_index: str | None
    name_id_format: str | None = None
    issuer: str | None = None
    attributes: dict[str, list[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class RelayState:
    """Routing context carried round-trip through the IdP.

    Serialized as JSON ``{"origin", "appName", "idpName"}``. When a secret is
    configured the JSON additionally carries a ``sig`` member holding an
    HMAC-SHA256 over the unsealed JSON.
    """

    origin: str
    app_name: str
    idp_name: str

    def to_dict(self) -> dict[str, str]:
        return {"origin": self.origin, "appName": self.app_name, "idpName": self.idp_name}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def seal(self, secret: str) -> str:
        """JSON form with an HMAC ``sig`` member appended."""
        data: dict[str, str] = self.to_dict()
        data["sig"] = _relay_signature(self.to_json(), secret)
        return json.dumps(data, separators=(",", ":"))

    @classmethod
    def parse(cls, raw: str | None, secret: str | None = None) -> RelayState:
        """Parse a RelayState string.

        Args:
            raw: The JSON text as received.
            secret: When set, a valid ``sig`` member is required.

        All three members must be present. ``origin`` and ``appName`` may be
        empty strings; ``idpName`` may not.

        Raises:
            InvalidRelayState: If the text is malformed or the seal does not verify.
        """
        if not raw:
            raise InvalidRelayState("RelayState is missing")
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise InvalidRelayState(f"RelayState is not valid JSON: {e}") from None
        if not isinstance(data, dict):
            raise InvalidRelayState("RelayState must be a JSON object")

        values = {}
        for key in ("origin", "appName", "idpName"):
            if key not in data:
                raise InvalidRelayState(f"RelayState member {key!r} is missing")
            value = data[key]
            if not isinstance(value, str):
                raise InvalidRelayState(f"RelayState member {key!r} must be a string")
            values[key] = value

        relay_state = cls(
            origin=values["origin"],
            app_name=values["appName"],
            idp_name=values["idpName"],
        )

        if secret:
            sig = data.get("sig")
            expected = _relay_signature(relay_state.to_json(), secret)
            if not isinstance(sig, str) or not hmac.compare_digest(sig, expected):
                raise InvalidRelayState("RelayState seal is missing or invalid")

        if not relay_state.idp_name:
            raise InvalidRelayState("RelayState does not name an identity provider")
        return relay_state


def _relay_signature(payload: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class CookiePolicy:
    """Attributes of an issued session cookie. ``max_age`` is in milliseconds."""

    secure: bool
    domain: str | None
    path: str
    same_site: str
    max_age: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "secure": self.secure,
            "domain": self.domain,
            "path": self.path,
            "sameSite": self.same_site,
            "maxAge": self.max_age,
        }


@dataclass(frozen=True)
class AuthenticationRecord:
    """A successful login, keyed by the hashed subject identifier."""

    name_id: str
    session_index: str
    auth_time: datetime
    relay_state: RelayState | None = None
    cookie_options: CookiePolicy | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name_id": self.name_id,
            "session_index": self.session_index,
            "auth_time": self.auth_time.isoformat(),
        }
        if self.relay_state is not None:
            data["relay_state"] = self.relay_state.to_dict()
        if self.cookie_options is not None:
            data["cookie_options"] = self.cookie_options.to_dict()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def hash_name_id(name_id: str) -> str:
    """One-way hash of an IdP-supplied subject identifier."""
    return hashlib.sha256(name_id.encode("utf-8")).hexdigest()
