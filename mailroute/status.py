"""
Email Record Status

Persisted lifecycle of an inbound email record. A record is written as
SAVING before attachments are stored and is then completed with exactly one
terminal status.
"""

from enum import Enum
from typing import Final

import structlog

from mailroute.exceptions import MailRouteError

log = structlog.get_logger()


class EmailStatus(str, Enum):
    """Email record status."""

    SAVING = "SAVING"
    """Row written, attachments and terminal status still pending."""

    RECEIVED = "RECEIVED"
    """Visible and tied to an account, or forced visible."""

    UNASSIGNED = "UNASSIGNED"
    """Persisted without an owning account."""

    @property
    def is_terminal(self) -> bool:
        """Check if this is a terminal status (no outgoing transitions)."""
        return self in TERMINAL_STATUSES

    @classmethod
    def from_string(cls, value: str) -> "EmailStatus":
        """Convert string to EmailStatus enum."""
        try:
            return cls(value.upper())
        except ValueError as e:
            raise ValueError(
                f"Invalid email status: '{value}'. "
                f"Valid values are: {[s.value for s in cls]}"
            ) from e


TERMINAL_STATUSES: Final[frozenset[EmailStatus]] = frozenset({
    EmailStatus.RECEIVED,
    EmailStatus.UNASSIGNED,
})

VALID_TRANSITIONS: Final[dict[EmailStatus, frozenset[EmailStatus]]] = {
    EmailStatus.SAVING: frozenset({
        EmailStatus.RECEIVED,
        EmailStatus.UNASSIGNED,
    }),
    EmailStatus.RECEIVED: frozenset(),
    EmailStatus.UNASSIGNED: frozenset(),
}


class InvalidStatusTransitionError(MailRouteError):
    """Attempted to complete a record that is not in SAVING."""

    def __init__(self, current_status: str, new_status: str) -> None:
        self.current_status = current_status
        self.new_status = new_status
        super().__init__(
            f"Cannot transition email from '{current_status}' to '{new_status}'",
            current_status=current_status,
            new_status=new_status,
        )


def validate_transition(
    current_status: EmailStatus | str,
    new_status: EmailStatus | str,
    *,
    raise_on_invalid: bool = True,
) -> bool:
    """
    Validate that a status transition is allowed.

    Raises:
        InvalidStatusTransitionError: If transition is invalid and raise_on_invalid=True
    """
    if isinstance(current_status, str):
        current_status = EmailStatus.from_string(current_status)
    if isinstance(new_status, str):
        new_status = EmailStatus.from_string(new_status)

    is_valid = new_status in VALID_TRANSITIONS.get(current_status, frozenset())

    if not is_valid and raise_on_invalid:
        log.warning(
            "invalid_status_transition",
            current_status=current_status.value,
            new_status=new_status.value,
        )
        raise InvalidStatusTransitionError(current_status.value, new_status.value)

    return is_valid
