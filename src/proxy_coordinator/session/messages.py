"""
Session wire protocol.

Client → server: JSON text frames tagged by ``"type"``::

    {"type": "Auth", "id": "<uuid>", "password": "..."}
    {"type": "SetAddress", "ip": "10.0.0.5", "port": 9000}

Server → client: short human-readable notices (the NOTICE_* constants).
"""

from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


NOTICE_AUTHENTICATED = "Authenticated"
NOTICE_AUTH_FAILED = "Authentication failed"
NOTICE_AUTH_REQUIRED = "Authentication required"
NOTICE_ALREADY_AUTHENTICATED = "Already authenticated"
NOTICE_NOT_AUTHENTICATED = "Not authenticated"
NOTICE_ADDRESS_UPDATED = "Address updated"
NOTICE_ADDRESS_UPDATE_FAILED = "Address update failed"
NOTICE_INVALID_FORMAT = "Invalid message format"


class AuthMessage(BaseModel):
    model_config = ConfigDict(strict=True)

    type: Literal["Auth"]
    id: UUID
    password: str


class SetAddressMessage(BaseModel):
    model_config = ConfigDict(strict=True)

    type: Literal["SetAddress"]
    ip: str
    port: int = Field(..., ge=0, le=65535)


class UnrecognizedMessage(BaseModel):
    """Anything that did not parse as one of the known messages."""
    raw: str
    reason: str


SessionMessage = Annotated[
    Union[AuthMessage, SetAddressMessage],
    Field(discriminator="type"),
]

ParsedMessage = Union[AuthMessage, SetAddressMessage, UnrecognizedMessage]

_message_adapter = TypeAdapter(SessionMessage)


def parse_session_message(text: str) -> ParsedMessage:
    """Parse one text frame. Never raises; bad input becomes UnrecognizedMessage."""
    try:
        return _message_adapter.validate_json(text)
    except ValidationError as e:
        errors = e.errors()
        reason = errors[0]["msg"] if errors else str(e)
        return UnrecognizedMessage(raw=text, reason=reason)
