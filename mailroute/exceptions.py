"""
Custom Exceptions for the Inbound Mail Router

All exceptions carry the context needed for debugging and logging.
Each one is fatal for the current message only: the Lambda handler catches
MailRouteError per message, logs it and moves on to the next message.
"""

from dataclasses import dataclass
from typing import Any


class MailRouteError(Exception):
    """Base exception for the inbound mail router."""

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


@dataclass
class MessageParseError(MailRouteError):
    """Raw MIME content could not be obtained or parsed."""

    source: str  # "embedded", "s3", "mime"

    def __init__(self, source: str, error_message: str | None = None) -> None:
        self.source = source
        super().__init__(
            f"Failed to parse inbound message from {source}: {error_message or 'Unknown error'}",
            source=source,
            error_message=error_message,
        )


@dataclass
class DynamoDBError(MailRouteError):
    """DynamoDB operation failed."""

    operation: str  # "get", "put", "update"
    table_name: str

    def __init__(
        self,
        operation: str,
        table_name: str,
        error_message: str | None = None,
    ) -> None:
        self.operation = operation
        self.table_name = table_name
        super().__init__(
            f"DynamoDB {operation} failed on table '{table_name}': {error_message or 'Unknown error'}",
            operation=operation,
            table_name=table_name,
            error_message=error_message,
        )


@dataclass
class AccountLookupError(DynamoDBError):
    """Account or role lookup failed (distinct from 'not found')."""

    lookup_key: str

    def __init__(
        self,
        table_name: str,
        lookup_key: str,
        error_message: str | None = None,
    ) -> None:
        self.lookup_key = lookup_key
        super().__init__(
            operation="lookup",
            table_name=table_name,
            error_message=f"{lookup_key}: {error_message or 'Unknown error'}",
        )


@dataclass
class S3Error(MailRouteError):
    """S3 operation failed."""

    operation: str  # "upload", "download"
    bucket: str
    key: str | None = None

    def __init__(
        self,
        operation: str,
        bucket: str,
        key: str | None = None,
        error_message: str | None = None,
    ) -> None:
        self.operation = operation
        self.bucket = bucket
        self.key = key
        super().__init__(
            f"S3 {operation} failed for s3://{bucket}/{key or '*'}: "
            f"{error_message or 'Unknown error'}",
            operation=operation,
            bucket=bucket,
            key=key,
            error_message=error_message,
        )


@dataclass
class NotificationError(MailRouteError):
    """A single notification target rejected or failed the push."""

    target: str
    status_code: int | None = None

    def __init__(
        self,
        target: str,
        status_code: int | None = None,
        error_message: str | None = None,
    ) -> None:
        self.target = target
        self.status_code = status_code
        super().__init__(
            f"Notification to '{target}' failed: {error_message or 'Unknown error'}",
            target=target,
            status_code=status_code,
        )
