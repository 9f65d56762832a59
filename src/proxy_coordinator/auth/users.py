"""
In-memory user store for password login.
"""

import logging
import threading
from typing import Dict

from .passwords import hash_password, verify_password

logger = logging.getLogger(__name__)


class UserStore:
    """username -> password hash. Re-adding a user replaces the hash."""

    def __init__(self):
        self._users: Dict[str, str] = {}
        self._lock = threading.Lock()

    def add_user(self, username: str, password: str) -> None:
        # Hashing is slow; keep it outside the lock.
        hashed = hash_password(password)
        with self._lock:
            self._users[username] = hashed
        logger.info(f"User added: {username}")

    def verify(self, username: str, password: str) -> bool:
        with self._lock:
            hashed = self._users.get(username)
        if hashed is None:
            return False
        return verify_password(password, hashed)

    def __contains__(self, username: str) -> bool:
        with self._lock:
            return username in self._users

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)
