"""
Per-connection node sessions and their wire protocol.
"""

from .messages import (
    AuthMessage,
    SetAddressMessage,
    UnrecognizedMessage,
    parse_session_message,
)
from .node_session import NodeSession, SessionReply, SessionState

__all__ = [
    "AuthMessage",
    "SetAddressMessage",
    "UnrecognizedMessage",
    "parse_session_message",
    "NodeSession",
    "SessionReply",
    "SessionState",
]
