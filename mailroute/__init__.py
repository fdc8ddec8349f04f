# Inbound Mail Router
"""
Shared infrastructure for the inbound mail router.

This package provides:
- Recipient routing pipeline (mailroute.routing)
- Pydantic models for messages and DynamoDB items
- Tool implementations for DynamoDB, S3 and Telegram
- Email record status lifecycle
- Configuration management
- Custom exceptions
"""

from mailroute.config import RoutingConfig, Settings, get_settings
from mailroute.exceptions import (
    AccountLookupError,
    DynamoDBError,
    MailRouteError,
    MessageParseError,
    NotificationError,
    S3Error,
)
from mailroute.status import EmailStatus, validate_transition

__all__ = [
    # Status
    "EmailStatus",
    "validate_transition",
    # Exceptions
    "AccountLookupError",
    "DynamoDBError",
    "MailRouteError",
    "MessageParseError",
    "NotificationError",
    "S3Error",
    # Config
    "RoutingConfig",
    "Settings",
    "get_settings",
]
