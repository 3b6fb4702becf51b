"""Storage module for SAMLGate.

Holds the shared ``auth_sessions`` table read by the legacy backend.
"""

from samlgate.storage.models import AuthSession, Base
from samlgate.storage.sessions import SessionStore

__all__ = [
    "AuthSession",
    "Base",
    "SessionStore",
]
