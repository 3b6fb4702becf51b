"""Per-request isolated execution of service endpoints."""

from samlgate.dispatch.bridge import DispatchBridge, Reply, RequestDescriptor
from samlgate.dispatch.units import Endpoint, SAMLUnit

__all__ = [
    "DispatchBridge",
    "Endpoint",
    "Reply",
    "RequestDescriptor",
    "SAMLUnit",
]
