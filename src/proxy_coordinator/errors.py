"""
Exceptions raised by the coordinator core and its token subsystem.

The HTTP layer maps them to status codes, the WebSocket layer to notices.
"""


class CoordinatorError(Exception):
    """Base class for all coordinator errors."""


class AlreadyRegisteredError(CoordinatorError):
    """A node with this ID is already in the Registration Store."""

    def __init__(self, node_id):
        super().__init__(f"Node {node_id} already registered")
        self.node_id = node_id


class AuthenticationError(CoordinatorError):
    """Unknown node ID or wrong password on a session."""


class MessageFormatError(CoordinatorError):
    """A session message could not be parsed."""


class StateViolationError(CoordinatorError):
    """A valid message that is not allowed in the session's current state."""


class NodeNotFoundError(CoordinatorError):
    """No live Active Registry entry for the targeted node."""


class InvalidTokenError(CoordinatorError):
    """Bearer token is malformed, forged or expired."""


class InvalidCredentialsError(CoordinatorError):
    """Username/password (or node ID/password) rejected at login."""
