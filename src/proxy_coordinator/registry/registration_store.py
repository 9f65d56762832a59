"""
Registration Store — in-memory map of node ID to credentials.

Records live for the lifetime of the process. There is no update or
delete path: the first successful registration for an ID wins.
"""

import logging
import threading
from typing import Dict, List, Optional
from uuid import UUID

from ..errors import AlreadyRegisteredError
from .models import RegisteredNode


logger = logging.getLogger(__name__)


class RegistrationStore:
    """
    Credentials of nodes allowed to open a session.

    Thread-safe. Every method holds the lock for a short synchronous
    section only, so it is also safe to call from coroutines.
    """

    def __init__(self):
        self._nodes: Dict[UUID, RegisteredNode] = {}
        self._lock = threading.Lock()

    def register(self, node: RegisteredNode) -> None:
        """
        Store credentials for a new node.

        Args:
            node: Credential record to store.

        Raises:
            AlreadyRegisteredError: If the ID already has a record. The
                existing record is left untouched.
        """
        with self._lock:
            if node.id in self._nodes:
                raise AlreadyRegisteredError(node.id)
            self._nodes[node.id] = node

        logger.info(f"Node registered: {node.id} (mac_id={node.mac_id})")

    def lookup(self, node_id: UUID) -> Optional[RegisteredNode]:
        """Return the record for ``node_id``, or None."""
        with self._lock:
            return self._nodes.get(node_id)

    def verify(self, node_id: UUID, password: str) -> Optional[RegisteredNode]:
        """Return the record if ``password`` matches, else None."""
        node = self.lookup(node_id)
        if node is None or not node.check_password(password):
            return None
        return node

    def list_nodes(self) -> List[RegisteredNode]:
        """Snapshot of all records (records are frozen, so sharing is safe)."""
        with self._lock:
            return list(self._nodes.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def __contains__(self, node_id: UUID) -> bool:
        with self._lock:
            return node_id in self._nodes
