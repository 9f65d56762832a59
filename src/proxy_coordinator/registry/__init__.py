"""
Node registries for the proxy coordinator.

RegistrationStore keeps node credentials, ActiveRegistry keeps the nodes
that are connected right now.
"""

from .models import (
    ProxyNode,
    RegisteredNode,
    RegisteredNodeView,
    RegisterRequest,
    RegisterResponse,
    node_display_name,
)
from .registration_store import RegistrationStore
from .active_registry import ActiveRegistry

__all__ = [
    "ProxyNode",
    "RegisteredNode",
    "RegisteredNodeView",
    "RegisterRequest",
    "RegisterResponse",
    "node_display_name",
    "RegistrationStore",
    "ActiveRegistry",
]
