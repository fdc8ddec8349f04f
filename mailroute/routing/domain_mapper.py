"""
Domain Mapping

Maps the domain a message was physically received on to the domain it is
filed and shown under. Configuration problems never block delivery: any
missing or malformed entry maps a domain to itself.
"""

from typing import Any, Mapping


def _lookup(domain: str, alias_map: Mapping[str, Any] | None) -> Any:
    if not domain or not isinstance(alias_map, Mapping):
        return None
    value = alias_map.get(domain)
    if value is not None:
        return value
    # Operators do not always lowercase their keys
    for key, candidate in alias_map.items():
        if isinstance(key, str) and key.lower() == domain:
            return candidate
    return None


def mapped_domains(domain: str | None, alias_map: Mapping[str, Any] | None) -> list[str]:
    """
    All domains configured for `domain`, in configured order.

    A bare string is a single entry; lists keep only non-empty string
    items. Returns [] when nothing usable is configured.
    """
    d = (domain or "").strip().lower()
    value = _lookup(d, alias_map)

    if isinstance(value, str):
        return [value.strip().lower()] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(v).strip().lower() for v in value if isinstance(v, str) and v.strip()]
    return []


def map_display_domain(domain: str | None, alias_map: Mapping[str, Any] | None) -> str:
    """
    Display domain for a receiving domain.

    First entry wins for one-to-many maps; identity when unmapped.
    """
    d = (domain or "").strip().lower()
    entries = mapped_domains(d, alias_map)
    return entries[0] if entries else d
