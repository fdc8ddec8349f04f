"""
Admission Rules

Final allow-list filter and terminal status decision.
"""

from typing import Iterable

from mailroute.status import EmailStatus


def passes_rule_filter(
    enabled: bool,
    rule_emails: Iterable[str],
    final_address: str | None,
    envelope_address: str | None,
) -> bool:
    """
    Rule-mode allow-list check.

    When enabled, the final or the envelope address must be listed.
    """
    if not enabled:
        return True

    allowed = {e.strip().lower() for e in rule_emails if e and e.strip()}
    return any(
        address and address.lower() in allowed
        for address in (final_address, envelope_address)
    )


def decide_status(matched: bool, force_visible: bool = False) -> EmailStatus:
    """RECEIVED for matched or forced-visible mail, UNASSIGNED otherwise."""
    if matched or force_visible:
        return EmailStatus.RECEIVED
    return EmailStatus.UNASSIGNED
