# Shared Models
"""
Pydantic models for inbound messages and DynamoDB items.
"""

from mailroute.models.dynamo import (
    Account,
    BanEmailType,
    EmailRecord,
    RolePolicy,
    StoredAttachment,
)
from mailroute.models.message import (
    REDACTED_CONTENT,
    InboundEnvelope,
    MailAddress,
    MessageAttachment,
    ParsedMessage,
)

__all__ = [
    # Message
    "REDACTED_CONTENT",
    "InboundEnvelope",
    "MailAddress",
    "MessageAttachment",
    "ParsedMessage",
    # DynamoDB
    "Account",
    "BanEmailType",
    "EmailRecord",
    "RolePolicy",
    "StoredAttachment",
]
