"""Gateway configuration management.

Loads configuration from config.yaml files and environment variables.
Environment variables take precedence over config file settings.

Application and Identity Provider names form a closed set: they are
validated when the configuration is loaded, and every later lookup goes
through :meth:`GatewayConfig.application` or
:meth:`GatewayConfig.identity_provider`.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from samlgate.core.errors import ConfigError, ProtocolConfigError

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".samlgate"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_DATABASE_URL = f"sqlite:///{DEFAULT_CONFIG_DIR / 'sessions.db'}"

# Environment variable prefix
ENV_PREFIX = "SAMLGATE_"

# Names used as configuration keys and RelayState members
NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")


@dataclass
class TLSSettings:
    """TLS/HTTPS configuration settings."""

    enabled: bool = False
    cert_path: Path | None = None
    key_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TLSSettings:
        """Create TLSSettings from a dictionary."""
        return cls(
            enabled=data.get("enabled", False),
            cert_path=Path(data["cert_path"]) if data.get("cert_path") else None,
            key_path=Path(data["key_path"]) if data.get("key_path") else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "enabled": self.enabled,
            "cert_path": str(self.cert_path) if self.cert_path else None,
            "key_path": str(self.key_path) if self.key_path else None,
        }


@dataclass
class ServerSettings:
    """HTTP front end settings."""

    host: str = "127.0.0.1"
    port: int = 8080
    path: str = ""
    debug: bool = False
    tls: TLSSettings = field(default_factory=TLSSettings)

    @property
    def base_path(self) -> str:
        """Normalized base path, either empty or starting with a slash."""
        stripped = self.path.strip("/")
        return f"/{stripped}" if stripped else ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerSettings:
        """Create ServerSettings from a dictionary."""
        tls_data = data.get("tls", {})
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=data.get("port", 8080),
            path=data.get("path", "") or "",
            debug=data.get("debug", False),
            tls=TLSSettings.from_dict(tls_data) if tls_data else TLSSettings(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "host": self.host,
            "port": self.port,
            "path": self.path,
            "debug": self.debug,
            "tls": self.tls.to_dict(),
        }


@dataclass
class DatabaseSettings:
    """Connection parameters for the shared session store."""

    url: str = DEFAULT_DATABASE_URL
    echo: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DatabaseSettings:
        """Create DatabaseSettings from a dictionary."""
        return cls(
            url=data.get("url", DEFAULT_DATABASE_URL),
            echo=data.get("echo", False),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"url": self.url, "echo": self.echo}


@dataclass
class SAMLSettings:
    """Settings of the SAML Service Provider service."""

    enabled: bool = True
    title: str = "SAML Service Provider Middleware"
    entity_id: str = ""
    assert_endpoint: str = ""
    allow_unencrypted_assertion: bool = True
    cookie_secure: bool = True
    cookie_timeout: int = 1
    credentials_dir: Path = Path(".")
    relay_state_secret: str | None = None
    dispatch_timeout: float | None = 30.0
    start_method: str = "spawn"
    clock_skew: int = 0
    database: DatabaseSettings = field(default_factory=DatabaseSettings)

    @property
    def sp_certificate_path(self) -> Path:
        """Location of the SP certificate."""
        return self.credentials_dir / "sp" / "cert.cer"

    @property
    def sp_private_key_path(self) -> Path:
        """Location of the SP private key."""
        return self.credentials_dir / "sp" / "key.pem"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SAMLSettings:
        """Create SAMLSettings from a dictionary."""
        db_data = data.get("database", {})
        timeout = data.get("dispatch_timeout", 30.0)
        return cls(
            enabled=data.get("enabled", True),
            title=data.get("title", "SAML Service Provider Middleware"),
            entity_id=data.get("entity_id", ""),
            assert_endpoint=data.get("assert_endpoint", ""),
            allow_unencrypted_assertion=data.get("allow_unencrypted_assertion", True),
            cookie_secure=data.get("cookie_secure", True),
            cookie_timeout=data.get("cookie_timeout") or 1,
            credentials_dir=Path(data.get("credentials_dir", ".")),
            relay_state_secret=data.get("relay_state_secret"),
            dispatch_timeout=float(timeout) if timeout else None,
            start_method=data.get("start_method", "spawn"),
            clock_skew=data.get("clock_skew", 0),
            database=DatabaseSettings.from_dict(db_data) if db_data else DatabaseSettings(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "enabled": self.enabled,
            "title": self.title,
            "entity_id": self.entity_id,
            "assert_endpoint": self.assert_endpoint,
            "allow_unencrypted_assertion": self.allow_unencrypted_assertion,
            "cookie_secure": self.cookie_secure,
            "cookie_timeout": self.cookie_timeout,
            "credentials_dir": str(self.credentials_dir),
            "dispatch_timeout": self.dispatch_timeout,
            "start_method": self.start_method,
            "clock_skew": self.clock_skew,
            "database": self.database.to_dict(),
        }
        if self.relay_state_secret:
            data["relay_state_secret"] = self.relay_state_secret
        return data


@dataclass
class ApplicationSettings:
    """Cookie and return-URL settings of one legacy application."""

    cookie_domain: str | None = None
    cookie_path: str = "/"
    local_client_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApplicationSettings:
        """Create ApplicationSettings from a dictionary."""
        return cls(
            cookie_domain=data.get("cookie_domain"),
            cookie_path=data.get("cookie_path") or "/",
            local_client_url=data.get("local_client_url"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "cookie_domain": self.cookie_domain,
            "cookie_path": self.cookie_path,
            "local_client_url": self.local_client_url,
        }


@dataclass
class IdentityProviderSettings:
    """Endpoints and certificate locations of one trusted IdP."""

    login_endpoint: str
    logout_endpoint: str = ""
    certificates: list[Path] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IdentityProviderSettings:
        """Create IdentityProviderSettings from a dictionary."""
        return cls(
            login_endpoint=data.get("login_endpoint", ""),
            logout_endpoint=data.get("logout_endpoint", ""),
            certificates=[Path(p) for p in data.get("certificates") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "login_endpoint": self.login_endpoint,
            "logout_endpoint": self.logout_endpoint,
        }
        if self.certificates:
            data["certificates"] = [str(p) for p in self.certificates]
        return data


@dataclass
class GatewayConfig:
    """Main gateway configuration.

    Instances are plain values: a snapshot is copied into every execution
    unit along with the request it serves.
    """

    server: ServerSettings = field(default_factory=ServerSettings)
    saml: SAMLSettings = field(default_factory=SAMLSettings)
    applications: dict[str, ApplicationSettings] = field(default_factory=dict)
    identity_providers: dict[str, IdentityProviderSettings] = field(default_factory=dict)
    config_path: Path | None = None

    def __post_init__(self) -> None:
        self.validate()

    @property
    def debug(self) -> bool:
        """Global verbose flag gating error detail exposure."""
        return self.server.debug

    def validate(self) -> None:
        """Check the closed sets of application and IdP names.

        Raises:
            ConfigError: If a name is invalid or an IdP has no login endpoint.
        """
        for kind, names in (
            ("application", self.applications),
            ("identity provider", self.identity_providers),
        ):
            for name in names:
                if not NAME_PATTERN.match(name):
                    raise ConfigError(f"Invalid {kind} name: {name!r}")

        for name, idp in self.identity_providers.items():
            if not idp.login_endpoint:
                raise ConfigError(f"Identity provider {name!r} has no login_endpoint")

    def application(self, name: str) -> ApplicationSettings:
        """Look up a configured application.

        Raises:
            ProtocolConfigError: If the application is not configured.
        """
        try:
            return self.applications[name]
        except KeyError:
            raise ProtocolConfigError(f"Unknown application: {name!r}") from None

    def identity_provider(self, name: str) -> IdentityProviderSettings:
        """Look up a configured Identity Provider.

        Raises:
            ProtocolConfigError: If the IdP is not configured.
        """
        try:
            return self.identity_providers[name]
        except KeyError:
            raise ProtocolConfigError(f"Unknown identity provider: {name!r}") from None

    def idp_certificate_paths(self, name: str) -> list[Path]:
        """Certificate files trusted for an IdP.

        Explicitly configured paths win; otherwise the conventional
        ``<credentials_dir>/idps/<name>/cert.cer`` location is used.
        """
        idp = self.identity_provider(name)
        if idp.certificates:
            return list(idp.certificates)
        return [self.saml.credentials_dir / "idps" / name / "cert.cer"]

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> GatewayConfig:
        """Create GatewayConfig from a dictionary."""
        server_data = data.get("server", {})
        saml_data = data.get("saml", {})
        return cls(
            server=ServerSettings.from_dict(server_data) if server_data else ServerSettings(),
            saml=SAMLSettings.from_dict(saml_data) if saml_data else SAMLSettings(),
            applications={
                str(name): ApplicationSettings.from_dict(app or {})
                for name, app in (data.get("applications") or {}).items()
            },
            identity_providers={
                str(name): IdentityProviderSettings.from_dict(idp or {})
                for name, idp in (data.get("identity_providers") or {}).items()
            },
            config_path=config_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "server": self.server.to_dict(),
            "saml": self.saml.to_dict(),
            "applications": {k: v.to_dict() for k, v in self.applications.items()},
            "identity_providers": {
                k: v.to_dict() for k, v in self.identity_providers.items()
            },
        }

    def save(self, path: Path | None = None) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_env_float(key: str, default: float | None) -> float | None:
    """Get a float from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def load_config(config_path: Path | None = None) -> GatewayConfig:
    """Load gateway configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        GatewayConfig with merged settings.

    Raises:
        ConfigError: If the file exists but is not valid YAML or fails validation.
    """
    config = GatewayConfig()

    file_path = config_path or DEFAULT_CONFIG_FILE
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid configuration file {file_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file {file_path} must contain a mapping")
        config = GatewayConfig.from_dict(data, config_path=file_path)

    # Server settings
    server = config.server

    if os.environ.get(f"{ENV_PREFIX}HOST"):
        server.host = os.environ[f"{ENV_PREFIX}HOST"]

    if os.environ.get(f"{ENV_PREFIX}PORT"):
        server.port = _get_env_int(f"{ENV_PREFIX}PORT", server.port)

    if os.environ.get(f"{ENV_PREFIX}PATH") is not None:
        server.path = os.environ[f"{ENV_PREFIX}PATH"]

    server.debug = _get_env_bool(f"{ENV_PREFIX}DEBUG", server.debug)

    # TLS settings
    tls = server.tls

    tls.enabled = _get_env_bool(f"{ENV_PREFIX}TLS_ENABLED", tls.enabled)

    if os.environ.get(f"{ENV_PREFIX}TLS_CERT"):
        tls.cert_path = Path(os.environ[f"{ENV_PREFIX}TLS_CERT"])

    if os.environ.get(f"{ENV_PREFIX}TLS_KEY"):
        tls.key_path = Path(os.environ[f"{ENV_PREFIX}TLS_KEY"])

    # SAML service settings
    saml = config.saml

    if os.environ.get(f"{ENV_PREFIX}DATABASE_URL"):
        saml.database.url = os.environ[f"{ENV_PREFIX}DATABASE_URL"]

    if os.environ.get(f"{ENV_PREFIX}RELAY_STATE_SECRET"):
        saml.relay_state_secret = os.environ[f"{ENV_PREFIX}RELAY_STATE_SECRET"]

    saml.dispatch_timeout = _get_env_float(
        f"{ENV_PREFIX}DISPATCH_TIMEOUT", saml.dispatch_timeout
    )

    return config


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string.

    Useful for generating example configuration files.
    """
    return """\
# SAMLGate Configuration File
# Environment variables override these settings (prefix: SAMLGATE_)

server:
  # Bind address and port of the front end
  host: "127.0.0.1"
  port: 8080

  # Base path prepended to every service route (e.g. "middleware")
  path: ""

  # Verbose mode: exposes real error messages and logs issued cookies
  debug: false

  tls:
    enabled: false
    # cert_path: /etc/samlgate/ssl/cert.cer
    # key_path: /etc/samlgate/ssl/key.pem

saml:
  enabled: true
  title: "SAML Service Provider Middleware"

  # Entity ID and Assertion Consumer Service URL of this Service Provider
  entity_id: "https://sp.example.com/saml/metadata"
  assert_endpoint: "https://sp.example.com/saml/acs"

  # Accept assertions that are not encrypted to the SP certificate
  allow_unencrypted_assertion: true

  # Session cookie policy shared by all applications
  cookie_secure: true
  cookie_timeout: 1   # minutes

  # Directory holding sp/cert.cer, sp/key.pem and idps/<name>/cert.cer
  credentials_dir: "."

  # Seal RelayState with HMAC-SHA256 (recommended)
  # relay_state_secret: "change-me"

  # Seconds an execution unit may run before it is killed
  dispatch_timeout: 30

  database:
    url: "sqlite:///sessions.db"

applications:
  acme:
    cookie_domain: ".acme.test"
    cookie_path: "/"
    local_client_url: "https://acme.test/app"

identity_providers:
  okta:
    login_endpoint: "https://idp.example.com/sso/saml"
    logout_endpoint: "https://idp.example.com/slo/saml"
"""
