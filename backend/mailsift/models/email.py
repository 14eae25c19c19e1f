"""
Pydantic models for the inbound message and its resolved sender.

The message shape follows the Gmail API `users.messages.get` resource, so the
camelCase keys a Gmail trigger delivers (mimeType, attachmentId,
parsedHeaders) are accepted as aliases alongside the snake_case names.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class PartBody(BaseModel):
    """Body of a MIME part. Inline text arrives base64url-encoded in `data`."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    attachment_id: Optional[str] = Field(default=None, alias="attachmentId")
    size: int = 0
    data: Optional[str] = None


class MessagePart(BaseModel):
    """A node in the MIME part tree."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    part_id: Optional[str] = Field(default=None, alias="partId")
    mime_type: str = Field(default="", alias="mimeType")
    filename: str = ""
    body: PartBody = Field(default_factory=PartBody)
    parts: list["MessagePart"] = []


MessagePart.model_rebuild()


class ParsedAddress(BaseModel):
    name: Optional[str] = None
    email: str = ""


class ParsedHeaders(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    from_: Optional[ParsedAddress] = Field(default=None, alias="from")


class EmailMessage(BaseModel):
    """
    A message as supplied by the workflow host.

    Read-only for the duration of a run.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    subject: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    parsed_headers: Optional[ParsedHeaders] = Field(default=None, alias="parsedHeaders")
    payload: MessagePart = Field(default_factory=MessagePart)


class SenderIdentity(BaseModel):
    """Resolved sender of a message."""
    model_config = ConfigDict(frozen=True)

    email: str
    name: str
    display_name: str
    folder_name: str   # filesystem-safe variant of display_name
    raw_from: str
