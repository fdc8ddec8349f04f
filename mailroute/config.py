"""
Configuration Management

Pydantic-settings based configuration for the inbound mail router.
All settings can be overridden via environment variables.

Structured routing tables (domain maps, sender bindings, ...) are stored as
raw JSON strings and parsed leniently into a frozen RoutingConfig snapshot:
a malformed table degrades to its empty default instead of failing the
invocation.
"""

import json
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Literal

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

log = structlog.get_logger()


def safe_json(value: Any, default: Any) -> Any:
    """
    Decode a JSON configuration value, tolerating already-decoded input.

    Returns `default` for empty values, malformed JSON, or a decoded value
    whose type differs from the type of `default`.
    """
    if value is None or value == "":
        return default

    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError as e:
            log.warning("config_json_malformed", error=str(e))
            return default
    elif isinstance(value, (dict, list)):
        decoded = value
    else:
        return default

    if default is not None and not isinstance(decoded, type(default)):
        log.warning(
            "config_json_unexpected_type",
            expected=type(default).__name__,
            actual=type(decoded).__name__,
        )
        return default

    return decoded


def _split_csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip().lower() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class RoutingConfig:
    """
    Read-only configuration snapshot for one pipeline invocation.

    Built once from Settings; every JSON table is already decoded.
    """

    allowed_envelope_domains: tuple[str, ...] = ()
    display_domain_map: dict[str, Any] = field(default_factory=dict)
    sink_account_map: dict[str, Any] = field(default_factory=dict)
    admin_email: str | None = None
    sender_bindings: dict[str, Any] = field(default_factory=dict)
    recipient_domain_aliases: dict[str, Any] = field(default_factory=dict)
    canonical_domains: tuple[str, ...] = ()
    primary_domain: str | None = None
    header_exclusions: frozenset[str] = frozenset({"delivered-to"})
    receive_enabled: bool = True
    accept_unknown_recipients: bool = True
    force_visibility: bool = False
    rule_mode: bool = False
    rule_emails: tuple[str, ...] = ()
    rule_filter_skip_when_forced: bool = False


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables are prefixed with MAILROUTE_ and are case-insensitive.
    Example: MAILROUTE_DISPLAY_DOMAIN_MAP='{"recv.example": "display.example"}'
    """

    model_config = SettingsConfigDict(
        env_prefix="MAILROUTE_",
        env_file=[".env.local", ".env"],  # Try .env.local first
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Routing tables (raw JSON)
    allowed_envelope_domains: str = Field(
        default="",
        description="JSON list of accepted envelope domains; empty allows all",
    )
    display_domain_map: str = Field(
        default="",
        description="JSON map of receiving domain to display domain(s)",
    )
    display_sink_account_map: str = Field(
        default="",
        description="JSON map of display domain to sink account address",
    )
    sender_binding_map: str = Field(
        default="",
        description="JSON map of sender address to target domain or binding record",
    )
    recipient_domain_alias_map: str = Field(
        default="",
        description="JSON map of envelope domain to alias domain(s) tried for accounts",
    )
    canonical_domains: str = Field(
        default="",
        description="JSON list of globally tried canonical domains",
    )
    header_exclusions: str = Field(
        default='["delivered-to"]',
        description="JSON list of header names never trusted for the original recipient",
    )
    primary_domain: str | None = Field(
        default=None,
        description="Primary mailbox domain tried before the literal envelope domain",
    )
    admin_email: str | None = Field(
        default=None,
        description="Administrator address (global sink fallback, bypasses policy)",
    )

    # Admission flags
    receive_enabled: bool = Field(
        default=True,
        description="Global receive switch; false drops every inbound message",
    )
    accept_unknown_recipients: bool = Field(
        default=True,
        description="Persist messages that match no account",
    )
    force_visibility: bool = Field(
        default=False,
        description="File unmatched messages as RECEIVED instead of UNASSIGNED",
    )
    rule_mode: bool = Field(
        default=False,
        description="Only admit messages addressed to rule_emails",
    )
    rule_emails: str = Field(
        default="",
        description="Comma-separated allow-list used when rule_mode is on",
    )
    rule_filter_skip_when_forced: bool = Field(
        default=False,
        description="Skip the rule filter when force_visibility is on",
    )

    # Telegram Notification
    tg_bot_enabled: bool = Field(default=False, description="Push a Telegram summary per message")
    tg_bot_token: str | None = Field(default=None, description="Telegram bot token")
    tg_chat_ids: str = Field(default="", description="Comma-separated Telegram chat ids")
    telegram_api_base_url: str = Field(
        default="https://api.telegram.org",
        description="Telegram Bot API base URL",
    )
    notify_timezone: str = Field(
        default="Asia/Shanghai",
        description="IANA timezone used to render the received time",
    )
    notify_timeout_seconds: float = Field(
        default=10.0,
        description="Per-request timeout for notification delivery",
    )

    # DynamoDB Configuration
    dynamodb_table_name: str = Field(
        default="MailRoute",
        description="DynamoDB table for accounts, roles and email records",
    )
    dynamodb_endpoint_url: str | None = Field(
        default=None,
        description="DynamoDB endpoint URL (for local development)",
    )

    # S3 Configuration
    s3_bucket_name: str = Field(
        default="mailroute-attachments",
        description="S3 bucket for attachments and raw inbound mail",
    )
    s3_attachments_prefix: str = Field(
        default="attachments/",
        description="Prefix for stored attachments",
    )
    s3_endpoint_url: str | None = Field(
        default=None,
        description="S3 endpoint URL (for local development)",
    )
    attachment_public_domain: str | None = Field(
        default=None,
        description="Public host serving attachments, used to rewrite inline cid: links",
    )

    # AWS Configuration
    aws_region: str = Field(
        default="us-west-2",
        description="AWS region",
    )

    # Application Configuration
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    @property
    def dynamodb_config(self) -> dict:
        """DynamoDB client configuration."""
        config = {"region_name": self.aws_region}
        if self.dynamodb_endpoint_url:
            config["endpoint_url"] = self.dynamodb_endpoint_url
        return config

    @property
    def s3_config(self) -> dict:
        """S3 client configuration."""
        config = {"region_name": self.aws_region}
        if self.s3_endpoint_url:
            config["endpoint_url"] = self.s3_endpoint_url
        return config

    @property
    def telegram_chat_ids(self) -> list[str]:
        """Configured Telegram chat ids, in order."""
        return [c.strip() for c in self.tg_chat_ids.split(",") if c.strip()]

    @property
    def routing_config(self) -> RoutingConfig:
        """Decode the routing tables into a read-only snapshot."""
        allowed = safe_json(self.allowed_envelope_domains, [])
        canonical = safe_json(self.canonical_domains, [])
        exclusions = safe_json(self.header_exclusions, ["delivered-to"])

        return RoutingConfig(
            allowed_envelope_domains=tuple(str(d).strip().lower() for d in allowed if d),
            display_domain_map=safe_json(self.display_domain_map, {}),
            sink_account_map=safe_json(self.display_sink_account_map, {}),
            admin_email=(self.admin_email or "").strip().lower() or None,
            sender_bindings=safe_json(self.sender_binding_map, {}),
            recipient_domain_aliases=safe_json(self.recipient_domain_alias_map, {}),
            canonical_domains=tuple(str(d).strip().lower() for d in canonical if d),
            primary_domain=(self.primary_domain or "").strip().lower() or None,
            header_exclusions=frozenset(str(h).strip().lower() for h in exclusions),
            receive_enabled=self.receive_enabled,
            accept_unknown_recipients=self.accept_unknown_recipients,
            force_visibility=self.force_visibility,
            rule_mode=self.rule_mode,
            rule_emails=_split_csv(self.rule_emails),
            rule_filter_skip_when_forced=self.rule_filter_skip_when_forced,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are loaded only once.
    Call Settings.model_validate({}) in tests to override.
    """
    return Settings()
