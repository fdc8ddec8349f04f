"""
Policy Gate

Per-account domain permission and sender ban enforcement.

Only evaluated for a matched, non-administrator account. A permission miss or
an ALL ban drops the message before persistence; a CONTENT ban keeps the
message and its metadata but strips bodies and attachments.
"""

import re
from enum import Enum
from typing import Iterable

import structlog

from mailroute.models.dynamo import Account, BanEmailType, RolePolicy
from mailroute.models.message import ParsedMessage
from mailroute.routing.normalizer import address_domain, normalize_address

log = structlog.get_logger()

DOMAIN_PATTERN = re.compile(r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}$")


class PolicyVerdict(str, Enum):
    """Outcome of the policy gate."""

    ALLOW = "ALLOW"
    REDACT = "REDACT"
    DROP_PERMISSION = "DROP_PERMISSION"
    DROP_BANNED = "DROP_BANNED"

    @property
    def is_drop(self) -> bool:
        return self in (PolicyVerdict.DROP_PERMISSION, PolicyVerdict.DROP_BANNED)


def is_domain(entry: str) -> bool:
    """True for a bare domain such as `spam.example` (no local part)."""
    return bool(DOMAIN_PATTERN.match(entry.strip().lower()))


def has_domain_permission(avail_domains: Iterable[str], address: str) -> bool:
    """
    Whether `address` is on a domain the account may receive on.

    Entries may be written `domain`, `@domain` or `*.domain` (subdomains).
    An empty list means unrestricted.
    """
    rules = [d.strip().lower().lstrip("@") for d in avail_domains if d and d.strip()]
    if not rules:
        return True

    domain = address_domain(address)
    if not domain:
        return False

    for rule in rules:
        if rule.startswith("*."):
            if domain.endswith(rule[1:]):
                return True
        elif domain == rule:
            return True
    return False


def find_ban_match(ban_entries: Iterable[str], sender: str) -> str | None:
    """
    Ban entry matching `sender`, if any.

    Bare domains compare with the sender's domain, anything else with the
    full sender address; both case-insensitive.
    """
    sender_address = normalize_address(sender, drop_plus_tag=False) or (sender or "").strip().lower()
    sender_domain = address_domain(sender_address)

    for entry in ban_entries:
        item = (entry or "").strip().lower()
        if not item:
            continue
        if is_domain(item.lstrip("@")):
            if sender_domain and item.lstrip("@") == sender_domain:
                return item
        elif item == sender_address:
            return item
    return None


def is_admin_account(account: Account | None, admin_email: str | None) -> bool:
    """Whether `account` is the administrator account, which no role policy restricts."""
    if account is None or not admin_email:
        return False
    return account.email.strip().lower() == admin_email.strip().lower()


def evaluate_policy(
    account: Account | None,
    policy: RolePolicy | None,
    *,
    sender: str,
    final_address: str,
    admin_email: str | None,
) -> PolicyVerdict:
    """
    Permission and ban verdict for a matched account.

    Returns ALLOW without looking at the policy when no account matched or
    the account belongs to the administrator.
    """
    if account is None or policy is None:
        return PolicyVerdict.ALLOW
    if is_admin_account(account, admin_email):
        return PolicyVerdict.ALLOW

    if not has_domain_permission(policy.avail_domain, final_address):
        log.info(
            "domain_permission_denied",
            account_id=account.account_id,
            final_address=final_address,
        )
        return PolicyVerdict.DROP_PERMISSION

    banned = find_ban_match(policy.ban_email, sender)
    if banned is None:
        return PolicyVerdict.ALLOW

    log.info(
        "sender_banned",
        account_id=account.account_id,
        ban_entry=banned,
        ban_email_type=policy.ban_email_type.value,
    )
    if policy.ban_email_type == BanEmailType.CONTENT:
        return PolicyVerdict.REDACT
    return PolicyVerdict.DROP_BANNED


def redact_message(message: ParsedMessage) -> ParsedMessage:
    """Copy of `message` with placeholder bodies and no attachments."""
    return message.redacted()
