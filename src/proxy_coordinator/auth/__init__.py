"""
Token subsystem: password login, signed bearer tokens, user store.
"""

from .passwords import hash_password, verify_password
from .tokens import TokenClaims, TokenKind, TokenService
from .users import UserStore

__all__ = [
    "hash_password",
    "verify_password",
    "TokenClaims",
    "TokenKind",
    "TokenService",
    "UserStore",
]
