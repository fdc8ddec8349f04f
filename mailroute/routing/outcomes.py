"""
Routing Outcomes

Closed set of terminal results of one routing pass. Dropped messages are
never persisted; Redacted and Delivered both carry the resolution result,
the message to persist and its terminal status.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union

from mailroute.models.dynamo import Account
from mailroute.models.message import ParsedMessage
from mailroute.status import EmailStatus


class DropReason(str, Enum):
    """Why a message was not persisted."""

    RECEIVE_CLOSED = "receive_closed"
    NO_RECIPIENT = "no_recipient"
    ENVELOPE_DOMAIN_NOT_ALLOWED = "envelope_domain_not_allowed"
    SENDER_BINDING_REJECTED = "sender_binding_rejected"
    UNKNOWN_RECIPIENT = "unknown_recipient"
    DOMAIN_PERMISSION = "domain_permission"
    BANNED_SENDER = "banned_sender"
    RULE_FILTER = "rule_filter"


@dataclass(frozen=True)
class ResolutionResult:
    """Owning account (if any) and the address the message is filed under."""

    account: Account | None
    final_address: str

    @property
    def matched(self) -> bool:
        return self.account is not None


@dataclass(frozen=True)
class Dropped:
    reason: DropReason
    final_address: str | None = None


@dataclass(frozen=True)
class Redacted:
    """Sender matched a CONTENT ban; bodies and attachments were stripped."""

    result: ResolutionResult
    message: ParsedMessage
    status: EmailStatus


@dataclass(frozen=True)
class Delivered:
    result: ResolutionResult
    message: ParsedMessage
    status: EmailStatus


RoutingOutcome = Union[Dropped, Redacted, Delivered]
