"""Logging for the gateway and its execution units.

Log levels:
- ERROR: Only log failures
- INFO: Log inbound requests and flow milestones
- DEBUG: Log dispatch lifecycle, outbound HTTP details and issued cookies
- TRACE: Log full outbound bodies (still redacted)

Every handler installed by :func:`configure_logging` carries a
:class:`RedactingFilter`, so key material and SAML payloads never reach
a log sink in clear text.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum

import httpx

# Custom log level for TRACE (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Root of the package logger hierarchy
ROOT_LOGGER = "samlgate"

logger = logging.getLogger(f"{ROOT_LOGGER}.http")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class LogLevel(IntEnum):
    """Gateway logging levels."""

    ERROR = logging.ERROR  # 40
    INFO = logging.INFO  # 20
    DEBUG = logging.DEBUG  # 10
    TRACE = TRACE  # 5


# Patterns for sensitive data redaction
SENSITIVE_PATTERNS = [
    # PEM private keys, whole block
    (
        re.compile(
            r"-----BEGIN ([A-Z ]*)PRIVATE KEY-----.*?-----END \1PRIVATE KEY-----",
            re.DOTALL,
        ),
        "[REDACTED PRIVATE KEY]",
    ),
    # SAML protocol parameters (query strings and form bodies)
    (re.compile(r"(SAMLResponse=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"(SAMLRequest=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"(Signature=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"'(SAMLResponse)'\s*:\s*'[^']+'"), r"'\1': '[REDACTED]'"),
    # Cookies
    (re.compile(r"(Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Set-Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    # API keys
    (re.compile(r"(x-api-key:\s*)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    # Credentials embedded in database URLs
    (re.compile(r"(\b[a-z][a-z0-9+]*://[^:/@\s]+:)[^@\s]+(@)", re.IGNORECASE), r"\1[REDACTED]\2"),
    # JSON fields
    (re.compile(r'"(password)"\s*:\s*"[^"]+"', re.IGNORECASE), r'"\1": "[REDACTED]"'),
    (re.compile(r'"(relay_state_secret)"\s*:\s*"[^"]+"', re.IGNORECASE), r'"\1": "[REDACTED]"'),
]


def redact_sensitive(text: str) -> str:
    """Redact sensitive information from text.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Text with sensitive data redacted.
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


class RedactingFilter(logging.Filter):
    """Logging filter that redacts the fully formatted message of a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_sensitive(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


@dataclass
class HTTPExchange:
    """A single outbound HTTP request/response exchange."""

    id: str
    timestamp: datetime
    method: str
    url: str
    request_headers: dict[str, str] = field(default_factory=dict)
    response_status: int | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    response_body: str | None = None
    duration_ms: float | None = None
    error: str | None = None

    def format_log(self, level: int) -> str:
        """Format the exchange for logging.

        Args:
            level: Log level determines how much detail to include.

        Returns:
            Formatted, redacted log string.
        """
        status = self.response_status or "ERROR"
        lines = [f"HTTP {self.method} {redact_sensitive(self.url)} -> {status}"]

        if self.duration_ms is not None:
            lines.append(f"  Duration: {self.duration_ms:.1f}ms")
        if self.error:
            lines.append(f"  Error: {self.error}")

        if level <= LogLevel.DEBUG:
            lines.append("  Request Headers:")
            for name, value in self.request_headers.items():
                lines.append(f"    {name}: {redact_sensitive(value)}")
            if self.response_headers:
                lines.append("  Response Headers:")
                for name, value in self.response_headers.items():
                    lines.append(f"    {name}: {redact_sensitive(value)}")

        if level <= LogLevel.TRACE and self.response_body:
            body = redact_sensitive(self.response_body)
            lines.append("  Response Body:")
            lines.append(f"    {body[:2000]}{'...' if len(body) > 2000 else ''}")

        return "\n".join(lines)


class LoggingTransport(httpx.BaseTransport):
    """HTTPX transport that logs all outbound exchanges."""

    def __init__(self, transport: httpx.BaseTransport | None = None) -> None:
        """Initialize the logging transport.

        Args:
            transport: Transport to delegate to. Defaults to ``httpx.HTTPTransport``.
        """
        self._transport = transport or httpx.HTTPTransport()
        self._exchange_counter = 0

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        """Handle an HTTP request with logging."""
        self._exchange_counter += 1
        exchange = HTTPExchange(
            id=f"http_{self._exchange_counter:04d}",
            timestamp=datetime.now(UTC),
            method=request.method,
            url=str(request.url),
            request_headers=dict(request.headers),
        )
        start_time = time.perf_counter()

        try:
            response = self._transport.handle_request(request)
        except httpx.HTTPError as e:
            exchange.duration_ms = (time.perf_counter() - start_time) * 1000
            exchange.error = str(e)
            logger.error(exchange.format_log(LogLevel.INFO))
            raise

        exchange.duration_ms = (time.perf_counter() - start_time) * 1000
        exchange.response_status = response.status_code
        exchange.response_headers = dict(response.headers)
        if logger.isEnabledFor(TRACE):
            response.read()
            exchange.response_body = response.text

        level = logger.getEffectiveLevel()
        if level <= LogLevel.DEBUG:
            logger.debug(exchange.format_log(level))
        else:
            logger.info(exchange.format_log(LogLevel.INFO))
        return response

    def close(self) -> None:
        """Close the underlying transport."""
        self._transport.close()


def create_http_client(timeout: float = 10.0) -> httpx.Client:
    """Create an httpx client whose exchanges are logged.

    Args:
        timeout: Request timeout in seconds.

    Returns:
        Configured httpx.Client.
    """
    return httpx.Client(
        transport=LoggingTransport(),
        timeout=timeout,
        follow_redirects=True,
    )


def parse_level(level: LogLevel | str | int) -> int:
    """Convert a level name or number to a logging level."""
    if isinstance(level, str):
        level_map = {
            "ERROR": LogLevel.ERROR,
            "INFO": LogLevel.INFO,
            "DEBUG": LogLevel.DEBUG,
            "TRACE": LogLevel.TRACE,
        }
        return level_map.get(level.upper(), LogLevel.INFO)
    return int(level)


def configure_logging(
    level: LogLevel | str | int = LogLevel.INFO,
    debug: bool = False,
    log_file: str | None = None,
) -> logging.Logger:
    """Configure the ``samlgate`` logger hierarchy.

    Called once by the front end and once inside every execution unit, since
    a spawned unit starts with a fresh interpreter.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or string name.
        debug: Verbose mode. Lowers the level to DEBUG if it is higher.
        log_file: Optional file path to write logs to.

    Returns:
        The configured package root logger.
    """
    resolved = parse_level(level)
    if debug:
        resolved = min(resolved, LogLevel.DEBUG)

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(resolved)

    # Remove existing handlers
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    redacting = RedactingFilter()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(resolved)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(redacting)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(resolved)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(redacting)
        root.addHandler(file_handler)

    if debug:
        root.warning("Debug mode enabled - real error messages are returned to clients")

    return root
