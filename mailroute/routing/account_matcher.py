"""
Account Matching

Queries the account-lookup collaborator over the candidate list, and resolves
the per-display-domain sink account when nothing matched.
"""

from typing import Any, Callable, Iterable, Mapping

import structlog

from mailroute.models.dynamo import Account
from mailroute.routing.normalizer import normalize_address

log = structlog.get_logger()

AccountLookup = Callable[[str], Account | None]


def match_account(
    candidates: Iterable[str],
    lookup: AccountLookup,
) -> tuple[Account, str] | None:
    """
    First candidate that has an account, in candidate order.

    Lookup errors propagate: a failed lookup is not the same as "no account".
    """
    for address in candidates:
        account = lookup(address)
        if account is not None:
            log.info(
                "account_matched",
                address=address,
                account_id=account.account_id,
                is_deleted=account.is_deleted,
            )
            return account, address
    return None


def resolve_sink(
    display_domain: str,
    sink_map: Mapping[str, Any] | None,
    admin_email: str | None,
    lookup: AccountLookup,
) -> tuple[Account, str] | None:
    """
    Sink account for a display domain, falling back to the administrator.

    Returns:
        (account, sink_address) when a sink is configured and exists
    """
    configured = None
    if isinstance(sink_map, Mapping):
        configured = sink_map.get((display_domain or "").lower())
    if not isinstance(configured, str):
        configured = None

    sink_address = normalize_address(configured or admin_email or "")
    if not sink_address:
        return None

    account = lookup(sink_address)
    if account is None:
        log.warning("sink_account_not_found", sink_address=sink_address)
        return None

    log.info(
        "sink_fallback",
        display_domain=display_domain,
        sink_address=sink_address,
        account_id=account.account_id,
    )
    return account, sink_address
