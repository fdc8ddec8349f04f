"""
DynamoDB Models

Pydantic models for items in the MailRoute table.

Key layout:
    Account:        PK ACCOUNT#<email>   SK METADATA
    Role policy:    PK USER#<user_id>    SK ROLE
    Email record:   PK EMAIL#<email_id>  SK METADATA
    Attachment:     PK EMAIL#<email_id>  SK ATT#<nnn>
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mailroute.status import EmailStatus


def _as_list(value: Any) -> list[str]:
    """Accept a comma-separated string, a list or a set."""
    if not value:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item).strip() for item in value if str(item).strip()]


# =====================================================
# Account
# =====================================================


class Account(BaseModel):
    """
    Mailbox account. Read-only from the routing pipeline.

    Soft-deleted accounts are still returned by lookups: deletion hides a
    mailbox from the UI, not from routing.
    """

    model_config = ConfigDict(frozen=True)

    account_id: int = Field(..., description="Account identifier")
    user_id: int = Field(..., description="Owning user identifier")
    email: str = Field(..., description="Normalized mailbox address")
    is_deleted: bool = Field(default=False, description="Soft-delete flag")

    @property
    def pk(self) -> str:
        return f"ACCOUNT#{self.email}"

    @property
    def sk(self) -> str:
        return "METADATA"

    def to_dynamodb(self) -> dict[str, Any]:
        """Convert to DynamoDB item."""
        return {
            "PK": self.pk,
            "SK": self.sk,
            "account_id": self.account_id,
            "user_id": self.user_id,
            "email": self.email,
            "is_deleted": self.is_deleted,
        }

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "Account":
        """Parse from DynamoDB item."""
        return cls(
            account_id=int(item.get("account_id", 0)),
            user_id=int(item.get("user_id", 0)),
            email=str(item.get("email", "")).lower(),
            is_deleted=bool(item.get("is_deleted", False)),
        )


# =====================================================
# Role Policy
# =====================================================


class BanEmailType(str, Enum):
    """Enforcement level when a sender is banned."""

    ALL = "ALL"
    """Drop the message entirely."""

    CONTENT = "CONTENT"
    """Keep metadata, replace bodies and drop attachments."""


class RolePolicy(BaseModel):
    """Ban and domain-permission rules of a user's role."""

    model_config = ConfigDict(frozen=True)

    user_id: int = Field(..., description="Owning user identifier")
    ban_email: frozenset[str] = Field(
        default_factory=frozenset,
        description="Banned sender addresses or bare domains",
    )
    ban_email_type: BanEmailType = Field(
        default=BanEmailType.ALL,
        description="Enforcement level for ban matches",
    )
    avail_domain: list[str] = Field(
        default_factory=list,
        description="Domains the user may receive on; empty means unrestricted",
    )

    @property
    def pk(self) -> str:
        return f"USER#{self.user_id}"

    @property
    def sk(self) -> str:
        return "ROLE"

    def to_dynamodb(self) -> dict[str, Any]:
        """Convert to DynamoDB item."""
        return {
            "PK": self.pk,
            "SK": self.sk,
            "user_id": self.user_id,
            "ban_email": ",".join(sorted(self.ban_email)),
            "ban_email_type": self.ban_email_type.value,
            "avail_domain": list(self.avail_domain),
        }

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "RolePolicy":
        """Parse from DynamoDB item."""
        return cls(
            user_id=int(item.get("user_id", 0)),
            ban_email=frozenset(e.lower() for e in _as_list(item.get("ban_email"))),
            ban_email_type=BanEmailType(str(item.get("ban_email_type", "ALL")).upper()),
            avail_domain=[d.lower() for d in _as_list(item.get("avail_domain"))],
        )


# =====================================================
# Email Record
# =====================================================


class EmailRecord(BaseModel):
    """Persisted inbound email row."""

    model_config = ConfigDict(frozen=True)

    email_id: str = Field(..., description="Email identifier")
    account_id: int = Field(default=0, description="Owning account, 0 when unassigned")
    user_id: int = Field(default=0, description="Owning user, 0 when unassigned")
    to_email: str = Field(..., description="Final resolved recipient address")
    to_name: str = Field(default="", description="Recipient display name")
    send_email: str = Field(default="", description="Sender address")
    name: str = Field(default="", description="Sender display name")
    subject: str = Field(default="")
    content: str = Field(default="", description="HTML body")
    text: str = Field(default="", description="Plain text body")
    cc: list[dict[str, str]] = Field(default_factory=list)
    bcc: list[dict[str, str]] = Field(default_factory=list)
    recipient: list[dict[str, str]] = Field(default_factory=list, description="Header To list")
    in_reply_to: str = Field(default="")
    relation: str = Field(default="", description="References header")
    message_id: str = Field(default="")
    status: EmailStatus = Field(default=EmailStatus.SAVING)
    create_time: int = Field(..., description="Unix epoch timestamp")

    @property
    def pk(self) -> str:
        return f"EMAIL#{self.email_id}"

    @property
    def sk(self) -> str:
        return "METADATA"

    def to_dynamodb(self) -> dict[str, Any]:
        """Convert to DynamoDB item."""
        item = self.model_dump(mode="json")
        item["PK"] = self.pk
        item["SK"] = self.sk
        return item

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "EmailRecord":
        """Parse from DynamoDB item."""
        data = {k: v for k, v in item.items() if k not in ("PK", "SK")}
        for key in ("account_id", "user_id", "create_time"):
            if key in data:
                data[key] = int(data[key])
        return cls.model_validate(data)


class StoredAttachment(BaseModel):
    """Attachment metadata row, the bytes live in S3 under `key`."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="S3 object key")
    filename: str = Field(..., description="Original filename")
    content_type: str = Field(..., description="MIME type")
    content_id: str | None = Field(default=None, description="Content-ID for inline parts")
    size_bytes: int = Field(..., ge=0)
    email_id: str = Field(default="")
    account_id: int = Field(default=0)
    user_id: int = Field(default=0)

    def to_dynamodb(self, sequence: int) -> dict[str, Any]:
        """Convert to DynamoDB item."""
        item = self.model_dump(mode="json", exclude_none=True)
        item["PK"] = f"EMAIL#{self.email_id}"
        item["SK"] = f"ATT#{sequence:03d}"
        return item
