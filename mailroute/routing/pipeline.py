"""
Routing Pipeline

Composes the routing steps for one inbound message:

    receive switch -> envelope domain allow-list -> sender binding admission
    -> header recipient -> display domain -> candidates -> account match
    (or sink fallback) -> unknown-recipient acceptance -> policy gate
    -> rule filter -> status

Every step is a pure function of its inputs; the only I/O is the two lookup
callables, whose errors propagate to the caller.
"""

from typing import Callable

import structlog

from mailroute.config import RoutingConfig
from mailroute.models.dynamo import Account, RolePolicy
from mailroute.models.message import InboundEnvelope, ParsedMessage
from mailroute.routing.account_matcher import AccountLookup, match_account, resolve_sink
from mailroute.routing.admission import decide_status, passes_rule_filter
from mailroute.routing.candidates import build_candidates
from mailroute.routing.domain_mapper import map_display_domain, mapped_domains
from mailroute.routing.header_resolver import resolve_header_recipient
from mailroute.routing.normalizer import normalize_address, split_address
from mailroute.routing.outcomes import (
    Delivered,
    DropReason,
    Dropped,
    Redacted,
    ResolutionResult,
    RoutingOutcome,
)
from mailroute.routing.policy_gate import (
    PolicyVerdict,
    evaluate_policy,
    is_admin_account,
    redact_message,
)
from mailroute.routing.sender_binding import admits_envelope_domain, resolve_sender_binding

log = structlog.get_logger()

RoleLookup = Callable[[int], RolePolicy]


def _drop(reason: DropReason, final_address: str | None = None, **context) -> Dropped:
    log.info("message_dropped", reason=reason.value, final_address=final_address, **context)
    return Dropped(reason=reason, final_address=final_address)


def route_message(
    envelope: InboundEnvelope,
    message: ParsedMessage,
    config: RoutingConfig,
    *,
    lookup_account: AccountLookup,
    lookup_role: RoleLookup,
) -> RoutingOutcome:
    """
    Decide where (and whether) an inbound message is filed.

    Args:
        envelope: SMTP envelope and raw headers
        message: Parsed message content
        config: Routing configuration snapshot
        lookup_account: Exact-address account lookup (soft-deleted included)
        lookup_role: Role policy lookup by user id

    Returns:
        Dropped, Redacted or Delivered
    """
    if not config.receive_enabled:
        return _drop(DropReason.RECEIVE_CLOSED)

    envelope_to = normalize_address(envelope.to_address)
    env_local, env_domain = split_address(envelope_to)
    if not envelope_to:
        return _drop(DropReason.NO_RECIPIENT, envelope_to=envelope.to_address)

    if config.allowed_envelope_domains and env_domain not in config.allowed_envelope_domains:
        return _drop(DropReason.ENVELOPE_DOMAIN_NOT_ALLOWED, envelope_domain=env_domain)

    sender = message.sender_address or envelope.from_address
    binding = resolve_sender_binding(sender, config.sender_bindings)
    if not admits_envelope_domain(binding, env_domain):
        return _drop(
            DropReason.SENDER_BINDING_REJECTED,
            sender=normalize_address(sender, drop_plus_tag=False),
            envelope_domain=env_domain,
        )

    resolved_to = resolve_header_recipient(
        envelope.headers,
        envelope_to,
        exclude=config.header_exclusions,
    )
    header_local, _ = split_address(resolved_to)
    local = header_local or env_local

    display_domain = map_display_domain(env_domain, config.display_domain_map)
    alias_domains = mapped_domains(env_domain, config.recipient_domain_aliases)
    alias_domains.append(display_domain)

    candidates = build_candidates(
        local,
        env_domain,
        binding_domains=binding.target_domains if binding else (),
        alias_domains=alias_domains,
        canonical_domains=config.canonical_domains,
        primary_domain=config.primary_domain,
    )

    log.info(
        "recipient_resolved",
        envelope_to=envelope_to,
        resolved_to=resolved_to,
        local_part=local,
        display_domain=display_domain,
        candidates=candidates,
    )

    account: Account | None = None
    final_address = f"{local}@{display_domain}"

    hit = match_account(candidates, lookup_account)
    if hit is None:
        hit = resolve_sink(
            display_domain,
            config.sink_account_map,
            config.admin_email,
            lookup_account,
        )
    if hit is not None:
        account, final_address = hit

    if account is None and not config.accept_unknown_recipients:
        return _drop(DropReason.UNKNOWN_RECIPIENT, final_address)

    redacted = False
    # The role row is only read for accounts the policy can restrict
    if account is not None and not is_admin_account(account, config.admin_email):
        verdict = evaluate_policy(
            account,
            lookup_role(account.user_id),
            sender=sender,
            final_address=final_address,
            admin_email=config.admin_email,
        )
        if verdict == PolicyVerdict.DROP_PERMISSION:
            return _drop(DropReason.DOMAIN_PERMISSION, final_address)
        if verdict == PolicyVerdict.DROP_BANNED:
            return _drop(DropReason.BANNED_SENDER, final_address)
        if verdict == PolicyVerdict.REDACT:
            message = redact_message(message)
            redacted = True

    skip_rules = config.rule_filter_skip_when_forced and config.force_visibility
    if not skip_rules and not passes_rule_filter(
        config.rule_mode, config.rule_emails, final_address, envelope_to
    ):
        return _drop(DropReason.RULE_FILTER, final_address)

    result = ResolutionResult(account=account, final_address=final_address)
    status = decide_status(result.matched, config.force_visibility)

    log.info(
        "message_routed",
        final_address=final_address,
        account_id=account.account_id if account else None,
        status=status.value,
        redacted=redacted,
    )

    if redacted:
        return Redacted(result=result, message=message, status=status)
    return Delivered(result=result, message=message, status=status)
