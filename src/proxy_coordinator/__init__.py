"""
Proxy Coordinator.

Proxy nodes register credentials once, then keep a WebSocket open on
which they authenticate and report their reachable address.
"""

from .config import CoordinatorConfig
from .registry import ActiveRegistry, ProxyNode, RegisteredNode, RegistrationStore
from .session import NodeSession, SessionState

__version__ = "1.0.0"

__all__ = [
    "CoordinatorConfig",
    "ActiveRegistry",
    "ProxyNode",
    "RegisteredNode",
    "RegistrationStore",
    "NodeSession",
    "SessionState",
]
