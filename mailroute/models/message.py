"""
Message Models

Inbound envelope and parsed message content.

The envelope is what the transport tells us (SMTP MAIL FROM / RCPT TO and the
raw header block). The parsed message is what the MIME parser extracts from
the raw bytes. Both are immutable; content redaction returns a new
ParsedMessage.
"""

from dataclasses import dataclass, field
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class InboundEnvelope:
    """
    SMTP envelope of one inbound delivery.

    Attributes:
        from_address: Envelope sender (MAIL FROM)
        to_address: Envelope recipient (RCPT TO)
        headers: Lower-cased header name -> raw values, in message order
    """

    from_address: str
    to_address: str
    headers: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        """First raw value of a header, or None when absent/empty."""
        values = self.headers.get(name.lower())
        if not values:
            return None
        return values[0] or None


class MailAddress(BaseModel):
    """Address with optional display name."""

    model_config = ConfigDict(frozen=True)

    address: str = Field(default="", description="Bare address as written")
    name: str = Field(default="", description="Display name")


class MessageAttachment(BaseModel):
    """Attachment extracted from the MIME tree."""

    model_config = ConfigDict(frozen=True)

    filename: str = Field(..., description="Original filename")
    content_type: str = Field(default="application/octet-stream", description="MIME type")
    content_id: str | None = Field(default=None, description="Content-ID for inline parts")
    content: bytes = Field(default=b"", description="Decoded payload")

    @property
    def size_bytes(self) -> int:
        return len(self.content)


REDACTED_CONTENT = "The content has been deleted"


class ParsedMessage(BaseModel):
    """
    Structured view of a raw inbound message.

    Produced by lambdas.receive_email.email_parser.parse_message.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_: MailAddress = Field(default_factory=MailAddress, alias="from")
    to: list[MailAddress] = Field(default_factory=list)
    cc: list[MailAddress] = Field(default_factory=list)
    bcc: list[MailAddress] = Field(default_factory=list)
    subject: str = ""
    html: str = ""
    text: str = ""
    attachments: list[MessageAttachment] = Field(default_factory=list)
    message_id: str = ""
    in_reply_to: str = ""
    references: str = ""

    @property
    def sender_address(self) -> str:
        return self.from_.address

    def redacted(self) -> "ParsedMessage":
        """Copy with bodies replaced by the placeholder and no attachments."""
        return self.model_copy(
            update={
                "html": REDACTED_CONTENT,
                "text": REDACTED_CONTENT,
                "attachments": [],
            }
        )
