# Recipient Routing
"""
Recipient resolution for inbound mail.

Each step is an independent function; pipeline.route_message composes them.
"""

from mailroute.routing.account_matcher import match_account, resolve_sink
from mailroute.routing.admission import decide_status, passes_rule_filter
from mailroute.routing.candidates import build_candidates
from mailroute.routing.domain_mapper import map_display_domain, mapped_domains
from mailroute.routing.header_resolver import (
    DEFAULT_HEADER_EXCLUSIONS,
    RECIPIENT_HEADER_PRIORITY,
    resolve_header_recipient,
)
from mailroute.routing.normalizer import (
    address_domain,
    extract_first_address,
    normalize_address,
    split_address,
)
from mailroute.routing.outcomes import (
    Delivered,
    DropReason,
    Dropped,
    Redacted,
    ResolutionResult,
    RoutingOutcome,
)
from mailroute.routing.pipeline import route_message
from mailroute.routing.policy_gate import (
    PolicyVerdict,
    evaluate_policy,
    find_ban_match,
    has_domain_permission,
    is_admin_account,
    redact_message,
)
from mailroute.routing.sender_binding import (
    SenderBinding,
    admits_envelope_domain,
    resolve_sender_binding,
)

__all__ = [
    # Normalization
    "address_domain",
    "extract_first_address",
    "normalize_address",
    "split_address",
    # Resolution steps
    "DEFAULT_HEADER_EXCLUSIONS",
    "RECIPIENT_HEADER_PRIORITY",
    "resolve_header_recipient",
    "map_display_domain",
    "mapped_domains",
    "SenderBinding",
    "admits_envelope_domain",
    "resolve_sender_binding",
    "build_candidates",
    "match_account",
    "resolve_sink",
    # Policy and admission
    "PolicyVerdict",
    "evaluate_policy",
    "find_ban_match",
    "has_domain_permission",
    "is_admin_account",
    "redact_message",
    "decide_status",
    "passes_rule_filter",
    # Outcomes
    "Delivered",
    "DropReason",
    "Dropped",
    "Redacted",
    "ResolutionResult",
    "RoutingOutcome",
    "route_message",
]
