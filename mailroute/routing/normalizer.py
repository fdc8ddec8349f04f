"""
Address Normalization

Canonical form used everywhere in routing: lowercase `local@domain`, with the
`+tag` suffix of the local part removed unless asked otherwise.
"""

import re

ANGLE_ADDRESS_PATTERN = re.compile(r"<\s*([^>]+?)\s*>")
ADDRESS_TOKEN_PATTERN = re.compile(
    r"(?<![a-zA-Z0-9._%+-])[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[A-Za-z]{2,}(?![a-zA-Z0-9.-])"
)

# Grammar of a normalized address; anything else is not routable
LOCAL_PART_PATTERN = re.compile(r"[a-z0-9._%+-]+")
DOMAIN_PART_PATTERN = re.compile(r"[a-z0-9-]+(?:\.[a-z0-9-]+)*")


def extract_first_address(raw: str | None) -> str | None:
    """
    Pull the first address out of a header-style value.

    Handles formats like:
    - "John Doe <john@example.com>"
    - "<john@example.com>"
    - "john@example.com, jane@example.com"
    - "john@localhost" (single bare token without a dotted domain)
    """
    if not raw:
        return None

    match = ANGLE_ADDRESS_PATTERN.search(raw)
    if match and match.group(1):
        return match.group(1).strip()

    match = ADDRESS_TOKEN_PATTERN.search(raw)
    if match:
        return match.group(0)

    token = raw.strip()
    if "@" in token and not any(ch.isspace() for ch in token) and "," not in token:
        return token

    return None


def normalize_address(raw: str | None, drop_plus_tag: bool = True) -> str | None:
    """
    Normalize an address to lowercase `local@domain`.

    Args:
        raw: Address, optionally with display name and angle brackets
        drop_plus_tag: Truncate the local part at the first '+'

    Returns:
        Normalized address, or None when no usable address is present.
        normalize_address(normalize_address(x)) == normalize_address(x).
    """
    address = extract_first_address(raw)
    if not address:
        return None

    local, sep, domain = address.strip().lower().partition("@")
    if not sep or not LOCAL_PART_PATTERN.fullmatch(local):
        return None
    if not DOMAIN_PART_PATTERN.fullmatch(domain):
        return None

    if drop_plus_tag and "+" in local:
        local = local.split("+", 1)[0]
        if not local:
            return None

    return f"{local}@{domain}"


def split_address(address: str | None) -> tuple[str, str]:
    """Normalized (local, domain), or ("", "") when not normalizable."""
    normalized = normalize_address(address)
    if not normalized:
        return "", ""
    local, _, domain = normalized.rpartition("@")
    return local, domain


def address_domain(address: str | None) -> str:
    """Lowercased domain of an address (plus tag irrelevant), "" if none."""
    normalized = normalize_address(address, drop_plus_tag=False)
    if not normalized:
        return ""
    return normalized.rpartition("@")[2]
