"""
Header Recipient Resolution

Catch-all and forwarding relays usually rewrite the primary To but keep at
least one trace header naming the address the sender actually used. Those
headers are tried in a fixed priority order before falling back to the
envelope recipient.
"""

from typing import Final, Iterable, Mapping

import structlog

from mailroute.routing.normalizer import normalize_address

log = structlog.get_logger()

# Original-recipient family first, then forwarding-chain headers. To and Cc
# list every addressee of a multi-recipient copy, so they never name this one.
RECIPIENT_HEADER_PRIORITY: Final[tuple[str, ...]] = (
    "x-original-to",
    "original-recipient",
    "envelope-to",
    "x-receiver",
    "x-forwarded-to",
    "delivered-to",
)

# Delivered-To is rewritten by several relays to the relay's own mailbox.
DEFAULT_HEADER_EXCLUSIONS: Final[frozenset[str]] = frozenset({"delivered-to"})


def _first_value(headers: Mapping[str, Iterable[str] | str], name: str) -> str | None:
    value = headers.get(name)
    if not value:
        return None
    if isinstance(value, str):
        return value
    for item in value:
        return item or None
    return None


def resolve_header_recipient(
    headers: Mapping[str, Iterable[str] | str],
    fallback: str | None,
    exclude: Iterable[str] = DEFAULT_HEADER_EXCLUSIONS,
) -> str | None:
    """
    Best guess of the recipient the original sender addressed.

    Args:
        headers: Lower-cased header name -> raw value(s); only the first
            value of each header is consumed
        fallback: Address used when no header yields one (normally the
            envelope recipient)
        exclude: Header names never trusted for this purpose

    Returns:
        Normalized address, or the normalized fallback (None if that is
        unusable too)
    """
    excluded = {name.lower() for name in exclude}

    for name in RECIPIENT_HEADER_PRIORITY:
        if name in excluded:
            continue
        raw = _first_value(headers, name)
        if not raw:
            continue
        address = normalize_address(raw)
        if address:
            log.debug("recipient_from_header", header=name, address=address)
            return address

    return normalize_address(fallback)
