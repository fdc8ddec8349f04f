"""
Sender Binding

A sender binding ties a specific sender, typically a forwarding relay, to the
domains its mail is meant for. Bound target domains take precedence over
every other candidate domain, and a strict binding also restricts which
envelope domains the relay may deliver to.

Configuration shapes accepted per sender:
    "relay@gmail.example": "target.example"
    "relay@gmail.example": {
        "targetDomains": ["target.example"],
        "allowedTo": ["target.example"],
        "strict": true
    }
"""

from dataclasses import dataclass
from typing import Any, Mapping

import structlog

from mailroute.routing.normalizer import normalize_address

log = structlog.get_logger()


@dataclass(frozen=True)
class SenderBinding:
    """Resolved binding for one sender."""

    target_domains: tuple[str, ...] = ()
    allowed_to: frozenset[str] = frozenset()
    strict: bool = False


def _domains(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value.strip().lower()] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(v).strip().lower() for v in value if isinstance(v, str) and v.strip()]
    return []


def _parse_binding(value: Any) -> SenderBinding | None:
    if isinstance(value, str):
        domains = _domains(value)
        return SenderBinding(target_domains=tuple(domains)) if domains else None

    if isinstance(value, Mapping):
        targets = _domains(value.get("targetDomains"))
        # dict.fromkeys keeps first-seen order while deduplicating
        return SenderBinding(
            target_domains=tuple(dict.fromkeys(targets)),
            allowed_to=frozenset(_domains(value.get("allowedTo"))),
            strict=value.get("strict") is True,
        )

    return None


def _lookup(key: str, bindings: Mapping[str, Any]) -> Any:
    if key in bindings:
        return bindings[key]
    for name, value in bindings.items():
        if isinstance(name, str) and normalize_address(name, drop_plus_tag=False) == key:
            return value
    return None


def resolve_sender_binding(
    sender: str | None,
    bindings: Mapping[str, Any] | None,
) -> SenderBinding | None:
    """
    Binding configured for `sender`, if any.

    The exact normalized sender (plus tag kept) is tried before its
    plus-stripped form; first match wins. Unusable entries count as absent.
    """
    if not sender or not isinstance(bindings, Mapping) or not bindings:
        return None

    exact = normalize_address(sender, drop_plus_tag=False)
    stripped = normalize_address(sender)

    for key in dict.fromkeys(k for k in (exact, stripped) if k):
        value = _lookup(key, bindings)
        if value is None:
            continue
        binding = _parse_binding(value)
        if binding is not None:
            log.debug(
                "sender_binding_matched",
                sender=key,
                target_domains=list(binding.target_domains),
                strict=binding.strict,
            )
            return binding

    return None


def admits_envelope_domain(binding: SenderBinding | None, envelope_domain: str) -> bool:
    """
    Whether a binding lets mail through for `envelope_domain`.

    Only strict bindings with a non-empty allow-list restrict anything.
    """
    if binding is None or not binding.strict or not binding.allowed_to:
        return True
    return (envelope_domain or "").lower() in binding.allowed_to
