"""
Active Registry — nodes that currently hold an authenticated session.

Each entry remembers the session that wrote it (its owner). A second
session authenticating with the same ID takes the entry over; the
displaced session can then neither update nor remove it.
"""

import logging
import threading
from typing import Dict, List, Optional
from uuid import UUID

from .models import ProxyNode


logger = logging.getLogger(__name__)


class ActiveRegistry:
    """
    In-memory map of node ID to ProxyNode.

    Thread-safe. Entries are copied on the way in and on the way out so
    no caller ever holds a reference that another writer can mutate.
    """

    def __init__(self):
        self._nodes: Dict[UUID, ProxyNode] = {}
        self._owners: Dict[UUID, str] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # Mutations
    # =========================================================================

    def upsert(self, node: ProxyNode, owner: Optional[str] = None) -> bool:
        """
        Insert or replace the entry for ``node.id``.

        Args:
            node: Entry to store.
            owner: Session ID that owns the entry.

        Returns:
            True if an existing entry was replaced.
        """
        entry = node.model_copy()
        with self._lock:
            replaced = node.id in self._nodes
            self._nodes[node.id] = entry
            if owner is None:
                self._owners.pop(node.id, None)
            else:
                self._owners[node.id] = owner

        if replaced:
            logger.warning(f"Active node {node.name} replaced by session {owner}")
        return replaced

    def remove(self, node_id: UUID, owner: Optional[str] = None) -> bool:
        """
        Remove the entry for ``node_id``.

        Args:
            node_id: ID of the entry.
            owner: If given, only remove the entry when this session owns it.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            if node_id not in self._nodes:
                return False
            if owner is not None and self._owners.get(node_id) != owner:
                return False
            del self._nodes[node_id]
            self._owners.pop(node_id, None)
        return True

    def update_address(
        self,
        node_id: UUID,
        ip: str,
        port: int,
        owner: Optional[str] = None,
    ) -> Optional[ProxyNode]:
        """
        Set ``ip``/``port`` of an existing entry.

        Returns:
            Copy of the updated entry, or None if there is no entry (or it
            belongs to another session).
        """
        with self._lock:
            current = self._nodes.get(node_id)
            if current is None:
                return None
            if owner is not None and self._owners.get(node_id) != owner:
                return None
            updated = current.model_copy(update={"ip": ip, "port": port})
            self._nodes[node_id] = updated
            return updated.model_copy()

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, node_id: UUID) -> Optional[ProxyNode]:
        with self._lock:
            node = self._nodes.get(node_id)
            return node.model_copy() if node else None

    def owner_of(self, node_id: UUID) -> Optional[str]:
        with self._lock:
            return self._owners.get(node_id)

    def list_nodes(self) -> List[ProxyNode]:
        """Consistent snapshot of all entries, in insertion order."""
        with self._lock:
            return [node.model_copy() for node in self._nodes.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)
