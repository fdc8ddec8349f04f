"""
S3 Tools

Raw inbound mail retrieval and content-addressed attachment storage.

Attachments are keyed by the SHA-256 of their bytes, so the same file
received twice is stored once.
"""

import hashlib
import os
import re

import boto3
from botocore.exceptions import ClientError
import structlog

from mailroute.config import get_settings
from mailroute.exceptions import S3Error
from mailroute.models.dynamo import EmailRecord, StoredAttachment
from mailroute.models.message import MessageAttachment

log = structlog.get_logger()

MAX_EXTENSION_LENGTH = 16


def _get_client():
    """Get S3 client."""
    settings = get_settings()
    return boto3.client("s3", **settings.s3_config)


def attachment_extension(filename: str) -> str:
    """Lowercased extension with its dot, "" when absent or implausible."""
    ext = os.path.splitext(filename.replace("\\", "/").rsplit("/", 1)[-1])[1].lower()
    if len(ext) > MAX_EXTENSION_LENGTH or not re.fullmatch(r"\.[a-z0-9]+", ext or "."):
        return ""
    return ext


def build_attachment_key(attachment: MessageAttachment, prefix: str | None = None) -> str:
    """
    S3 key for an attachment.

    Format: {prefix}{sha256(content)}{ext}
    """
    key_prefix = get_settings().s3_attachments_prefix if prefix is None else prefix
    digest = hashlib.sha256(attachment.content).hexdigest()
    return f"{key_prefix}{digest}{attachment_extension(attachment.filename)}"


def fetch_email_from_s3(bucket: str, key: str) -> bytes:
    """
    Fetch raw email content from S3.

    Used when the SES receipt rule stores mail in S3 instead of embedding it.

    Raises:
        S3Error: If the get fails
    """
    log.info("fetching_email_from_s3", bucket=bucket, key=key)

    client = _get_client()

    try:
        response = client.get_object(Bucket=bucket, Key=key)
        content = response["Body"].read()
    except ClientError as e:
        log.error("s3_fetch_failed", bucket=bucket, key=key, error=str(e))
        raise S3Error(
            operation="download",
            bucket=bucket,
            key=key,
            error_message=str(e),
        ) from e

    log.debug("email_fetched_from_s3", bucket=bucket, key=key, size_bytes=len(content))
    return content


def store_attachments(
    attachments: list[MessageAttachment],
    record: EmailRecord,
    *,
    bucket: str | None = None,
) -> list[StoredAttachment]:
    """
    Upload every attachment of a persisted email.

    Args:
        attachments: Parsed attachments (possibly empty after redaction)
        record: Persisted email record the attachments belong to
        bucket: Override S3 bucket name

    Returns:
        StoredAttachment metadata, in message order

    Raises:
        S3Error: If any upload fails
    """
    if not attachments:
        return []

    settings = get_settings()
    s3_bucket = bucket or settings.s3_bucket_name
    client = _get_client()
    stored: list[StoredAttachment] = []

    for attachment in attachments:
        key = build_attachment_key(attachment)

        log.info(
            "storing_attachment",
            filename=attachment.filename,
            bucket=s3_bucket,
            key=key,
            content_type=attachment.content_type,
            size_bytes=attachment.size_bytes,
        )

        try:
            client.put_object(
                Bucket=s3_bucket,
                Key=key,
                Body=attachment.content,
                ContentType=attachment.content_type,
            )
        except ClientError as e:
            log.error("s3_upload_failed", bucket=s3_bucket, key=key, error=str(e))
            raise S3Error(
                operation="upload",
                bucket=s3_bucket,
                key=key,
                error_message=str(e),
            ) from e

        stored.append(
            StoredAttachment(
                key=key,
                filename=attachment.filename,
                content_type=attachment.content_type,
                content_id=attachment.content_id,
                size_bytes=attachment.size_bytes,
                email_id=record.email_id,
                account_id=record.account_id,
                user_id=record.user_id,
            )
        )

    log.info("attachments_stored", count=len(stored), email_id=record.email_id)
    return stored


def rewrite_inline_references(
    html: str,
    attachments: list[StoredAttachment],
    public_domain: str | None,
) -> str:
    """
    Point `cid:` references of inline parts at their public S3 URL.

    Returns html unchanged when no public domain is configured.
    """
    if not html or not public_domain:
        return html

    base = public_domain.rstrip("/")
    if not base.startswith(("http://", "https://")):
        base = f"https://{base}"

    for attachment in attachments:
        if not attachment.content_id:
            continue
        cid = attachment.content_id.strip("<>")
        html = html.replace(f"cid:{cid}", f"{base}/{attachment.key}")

    return html
