"""
Candidate Address Building

Produces the ordered list of mailbox addresses tried for an account.
Narrower configuration wins over broader defaults:

    1. sender-binding target domains
    2. recipient-domain aliases of the envelope domain, then its display domain
    3. global canonical domains
    4. the primary domain
    5. the envelope domain itself (always last)

The order is the precedence; the list is never re-sorted.
"""

from typing import Iterable


def _dedupe(addresses: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for address in addresses:
        key = address.lower()
        if key in seen:
            continue
        seen.add(key)
        ordered.append(key)
    return ordered


def build_candidates(
    local: str,
    envelope_domain: str,
    *,
    binding_domains: Iterable[str] = (),
    alias_domains: Iterable[str] = (),
    canonical_domains: Iterable[str] = (),
    primary_domain: str | None = None,
) -> list[str]:
    """
    Ordered, case-insensitively deduplicated candidate addresses.

    Args:
        local: Resolved local part (already normalized)
        envelope_domain: Domain the message was received on
        binding_domains: Target domains of the sender binding
        alias_domains: Alias/display domains of the envelope domain
        canonical_domains: Globally configured canonical domains
        primary_domain: Primary mailbox domain

    Returns:
        Candidate list ending with `local@envelope_domain`
    """
    local = local.strip().lower()
    envelope_domain = envelope_domain.strip().lower()

    domains: list[str] = []
    domains.extend(binding_domains)
    domains.extend(alias_domains)
    domains.extend(canonical_domains)
    if primary_domain:
        domains.append(primary_domain)

    # The identity address stays last even when a rule names the envelope domain
    candidates = [
        f"{local}@{d.strip().lower()}"
        for d in domains
        if d and d.strip() and d.strip().lower() != envelope_domain
    ]
    candidates.append(f"{local}@{envelope_domain}")

    return _dedupe(candidates)
