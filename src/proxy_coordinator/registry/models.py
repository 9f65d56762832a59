"""
Pydantic models for registered and active proxy nodes.

RegisteredNode — long-lived credential record (Registration Store)
ProxyNode      — live connection metadata (Active Registry)
"""

import hmac
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


def node_display_name(node_id: UUID) -> str:
    """Display name derived from the node ID: ``node-`` + first 8 hex chars."""
    return f"node-{str(node_id)[:8]}"


# =============================================================================
# Registration Store
# =============================================================================

class RegisteredNode(BaseModel):
    """
    Credential record for a node allowed to connect.

    Immutable once stored; the password is only ever compared, never
    serialized back to clients (see RegisteredNodeView).
    """
    model_config = {"frozen": True}

    id: UUID = Field(..., description="Node ID, chosen by the node")
    password: str = Field(..., description="Shared secret checked on Auth")
    mac_id: str = Field(..., description="Hardware/device identifier")

    def check_password(self, password: str) -> bool:
        return hmac.compare_digest(self.password.encode("utf-8"), password.encode("utf-8"))


class RegisteredNodeView(BaseModel):
    """Public projection of RegisteredNode (no password)."""
    id: UUID
    mac_id: str

    @classmethod
    def from_node(cls, node: RegisteredNode) -> "RegisteredNodeView":
        return cls(id=node.id, mac_id=node.mac_id)


# =============================================================================
# Active Registry
# =============================================================================

class ProxyNode(BaseModel):
    """A connected, authenticated proxy node."""
    id: UUID = Field(..., description="Node ID (matches a RegisteredNode)")
    name: str = Field(..., description="Display name derived from the ID")
    ip: str = Field(default="unknown", description="Reported IP address")
    port: int = Field(default=0, ge=0, le=65535, description="Reported port")
    active: bool = Field(default=True)
    mac_id: str = Field(..., description="Copied from the RegisteredNode")

    @classmethod
    def connected(cls, registered: RegisteredNode) -> "ProxyNode":
        """Fresh entry for a node that has just authenticated."""
        return cls(
            id=registered.id,
            name=node_display_name(registered.id),
            ip="unknown",
            port=0,
            active=True,
            mac_id=registered.mac_id,
        )


# =============================================================================
# HTTP request bodies
# =============================================================================

class RegisterRequest(BaseModel):
    """Body of POST /register."""
    id: UUID
    password: str
    mac_id: str
    api_key: Optional[str] = Field(default=None, description="Shared deployment secret")


class RegisterResponse(BaseModel):
    status: str = "registered"
    id: UUID
