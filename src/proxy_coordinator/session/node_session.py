"""
NodeSession — authentication/address-update state machine for one connection.

    UNAUTHENTICATED --Auth ok--> AUTHENTICATED
           |                           |
           +--Auth failed--+           |
                           v           v
                         CLOSED <--transport close--

The session never goes back from AUTHENTICATED to UNAUTHENTICATED.
It only shares the two registries; it owns nothing but its own state.
The transport feeds it one message at a time and must call close()
when the connection ends, whatever the reason.
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID

from ..errors import (
    AuthenticationError,
    CoordinatorError,
    MessageFormatError,
    NodeNotFoundError,
    StateViolationError,
)
from ..registry import ActiveRegistry, ProxyNode, RegisteredNode, RegistrationStore
from . import messages as m


logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionReply:
    """What the transport should send back, and whether to hang up after."""
    notice: Optional[str] = None
    close: bool = False


class NodeSession:
    """
    State of one live node connection.

    Not meant to be driven concurrently by two message loops; close()
    however may be called from anywhere, any number of times.
    """

    def __init__(
        self,
        registered: RegistrationStore,
        active: ActiveRegistry,
        close_on_malformed_first_message: bool = False,
        peer: Optional[str] = None,
    ):
        self.session_id = uuid.uuid4().hex
        self.peer = peer
        self._registered = registered
        self._active = active
        self._strict_first_message = close_on_malformed_first_message

        self.state = SessionState.UNAUTHENTICATED
        self.node_id: Optional[UUID] = None
        self.mac_id: Optional[str] = None
        self.messages_handled = 0

        self._state_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"NodeSession({self.session_id[:8]}, state={self.state.value}, node={self.node_id})"

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    @property
    def is_closed(self) -> bool:
        return self.state == SessionState.CLOSED

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, preauthenticated_id: Optional[UUID] = None) -> SessionReply:
        """
        Called once when the connection opens.

        Args:
            preauthenticated_id: Node ID vouched for by the transport (node
                token). None for the normal in-band Auth flow.

        Returns:
            Empty reply for the normal flow. For a pre-authenticated open,
            either an empty reply (entry registered) or a closing
            "Authentication required" reply.
        """
        if preauthenticated_id is None:
            logger.debug(f"Session {self.session_id[:8]} opened (peer={self.peer})")
            return SessionReply()

        registered = self._registered.lookup(preauthenticated_id)
        if registered is None:
            logger.warning(
                f"Session {self.session_id[:8]} rejected: token for unknown node "
                f"{preauthenticated_id}"
            )
            self.close()
            return SessionReply(notice=m.NOTICE_AUTH_REQUIRED, close=True)

        try:
            self._become_authenticated(registered)
        except CoordinatorError:
            self.close()
            return SessionReply(notice=m.NOTICE_AUTH_REQUIRED, close=True)
        logger.info(f"Session {self.session_id[:8]} opened pre-authenticated as {self.node_id}")
        return SessionReply()

    def close(self) -> bool:
        """
        Move to CLOSED and drop this session's Active Registry entry.

        Returns:
            True on the first call, False on every later call.
        """
        with self._state_lock:
            if self.state == SessionState.CLOSED:
                return False
            was_authenticated = self.state == SessionState.AUTHENTICATED
            self.state = SessionState.CLOSED

        if was_authenticated and self.node_id is not None:
            removed = self._active.remove(self.node_id, owner=self.session_id)
            if removed:
                logger.info(f"Node disconnected: {self.node_id}")
            else:
                logger.info(f"Node {self.node_id} disconnected (entry already taken over)")
        else:
            logger.debug(f"Session {self.session_id[:8]} closed before authentication")
        return True

    # =========================================================================
    # Message handling
    # =========================================================================

    def handle_text(self, text: str) -> SessionReply:
        """Parse and handle one inbound text frame."""
        return self.handle(m.parse_session_message(text))

    def handle(self, message: m.ParsedMessage) -> SessionReply:
        """
        Apply one parsed message to the state machine.

        Errors are turned into notices here; only an authentication failure
        (or, in strict mode, a malformed first message) ends the session.
        """
        if self.is_closed:
            return SessionReply()

        first = self.messages_handled == 0
        self.messages_handled += 1

        try:
            if isinstance(message, m.AuthMessage):
                self.authenticate(message.id, message.password)
                return SessionReply(notice=m.NOTICE_AUTHENTICATED)
            if isinstance(message, m.SetAddressMessage):
                self.set_address(message.ip, message.port)
                return SessionReply(notice=m.NOTICE_ADDRESS_UPDATED)
            raise MessageFormatError(getattr(message, "reason", "unrecognized message"))

        except AuthenticationError:
            self.close()
            return SessionReply(notice=m.NOTICE_AUTH_FAILED, close=True)

        except StateViolationError as e:
            return SessionReply(notice=str(e))

        except NodeNotFoundError:
            return SessionReply(notice=m.NOTICE_ADDRESS_UPDATE_FAILED)

        except MessageFormatError as e:
            logger.debug(f"Session {self.session_id[:8]}: bad message ({e})")
            if first and self._strict_first_message:
                self.close()
                return SessionReply(notice=m.NOTICE_INVALID_FORMAT, close=True)
            return SessionReply(notice=m.NOTICE_INVALID_FORMAT)

        except CoordinatorError as e:
            logger.error(f"Session {self.session_id[:8]}: unexpected error: {e}")
            return SessionReply(notice=m.NOTICE_INVALID_FORMAT)

    def authenticate(self, node_id: UUID, password: str) -> ProxyNode:
        """
        Check credentials and publish this node in the Active Registry.

        Raises:
            StateViolationError: Already authenticated (no mutation).
            AuthenticationError: Unknown ID or wrong password (no mutation).
        """
        if self.state == SessionState.AUTHENTICATED:
            raise StateViolationError(m.NOTICE_ALREADY_AUTHENTICATED)

        registered = self._registered.verify(node_id, password)
        if registered is None:
            logger.warning(f"Authentication failed for node {node_id} (peer={self.peer})")
            raise AuthenticationError(f"Authentication failed for node {node_id}")

        node = self._become_authenticated(registered)
        logger.info(f"Node authenticated: {node.name} (session={self.session_id[:8]})")
        return node

    def set_address(self, ip: str, port: int) -> ProxyNode:
        """
        Update the reachable address of this session's node.

        Raises:
            StateViolationError: Not authenticated yet.
            NodeNotFoundError: The entry is gone or belongs to another session.
        """
        if self.state != SessionState.AUTHENTICATED:
            raise StateViolationError(m.NOTICE_NOT_AUTHENTICATED)

        updated = self._active.update_address(self.node_id, ip, port, owner=self.session_id)
        if updated is None:
            raise NodeNotFoundError(f"No active entry for node {self.node_id}")

        logger.debug(f"Address updated: {updated.name} -> {ip}:{port}")
        return updated

    def _become_authenticated(self, registered: RegisteredNode) -> ProxyNode:
        # Held across the upsert so a concurrent close() either runs first
        # (and we refuse) or waits and then removes what we inserted.
        node = ProxyNode.connected(registered)
        with self._state_lock:
            if self.state == SessionState.CLOSED:
                raise AuthenticationError("Session already closed")
            if self.state == SessionState.AUTHENTICATED:
                raise StateViolationError(m.NOTICE_ALREADY_AUTHENTICATED)
            self.node_id = registered.id
            self.mac_id = registered.mac_id
            self.state = SessionState.AUTHENTICATED
            self._active.upsert(node, owner=self.session_id)
        return node
