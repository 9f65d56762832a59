"""
Signed, time-limited bearer tokens.

A token is ``<base64url(claims json)>.<hmac-sha256 hex>``. Claims carry the
subject (username or node ID), the token kind and an expiry timestamp.
"""

import base64
import hashlib
import hmac
import json
import time
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ValidationError

from ..errors import InvalidTokenError


class TokenKind(str, Enum):
    USER = "user"
    NODE = "node"


class TokenClaims(BaseModel):
    sub: str
    kind: TokenKind = TokenKind.USER
    exp: int

    @property
    def node_id(self) -> Optional[UUID]:
        """Node ID for node tokens whose subject is a valid UUID, else None."""
        if self.kind != TokenKind.NODE:
            return None
        try:
            return UUID(self.sub)
        except ValueError:
            return None


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


class TokenService:
    """Issues and validates tokens signed with a shared secret."""

    def __init__(self, secret: str, ttl_hours: int = 24, clock=time.time):
        self._secret = secret.encode("utf-8")
        self.ttl_seconds = ttl_hours * 3600
        self._clock = clock

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode("ascii"), hashlib.sha256).hexdigest()

    def issue(self, subject: str, kind: TokenKind = TokenKind.USER) -> str:
        claims = TokenClaims(
            sub=subject,
            kind=kind,
            exp=int(self._clock()) + self.ttl_seconds,
        )
        serialized = json.dumps(claims.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        payload = _b64encode(serialized.encode("utf-8"))
        return f"{payload}.{self._sign(payload)}"

    def validate(self, token: str) -> TokenClaims:
        """
        Verify signature and expiry.

        Raises:
            InvalidTokenError: Malformed, forged or expired token.
        """
        payload, sep, signature = token.partition(".")
        if not sep or not payload or not signature or not token.isascii():
            raise InvalidTokenError("Malformed token")

        expected = self._sign(payload)
        if not hmac.compare_digest(expected, signature):
            raise InvalidTokenError("Bad token signature")

        try:
            claims = TokenClaims.model_validate_json(_b64decode(payload))
        except (ValueError, ValidationError) as e:
            raise InvalidTokenError(f"Unreadable token claims: {e}")

        if claims.exp < int(self._clock()):
            raise InvalidTokenError("Token expired")

        return claims
