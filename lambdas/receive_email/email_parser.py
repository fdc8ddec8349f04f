"""
Email Parser Module

Parses SES/SNS notifications into a receipt (envelope sender, envelope
recipients, where the raw mail is) and raw MIME into a ParsedMessage plus
the header map used for recipient resolution.
"""

import base64
import binascii
import email
import json
from dataclasses import dataclass
from email.message import EmailMessage
from email.policy import default as default_policy
from email.utils import getaddresses
from typing import Any

import structlog

from mailroute.exceptions import MessageParseError
from mailroute.models.message import MailAddress, MessageAttachment, ParsedMessage

log = structlog.get_logger()


@dataclass(frozen=True)
class SesReceipt:
    """Envelope data and raw-content location from one SES notification."""

    message_id: str
    source: str
    recipients: tuple[str, ...]
    notification_type: str | None = None
    content: bytes | None = None
    s3_bucket: str | None = None
    s3_key: str | None = None

    @property
    def is_delivery_report(self) -> bool:
        return self.notification_type in ("Bounce", "Complaint")

    @property
    def stored_in_s3(self) -> bool:
        return self.content is None and bool(self.s3_bucket and self.s3_key)


def _unwrap_sns(event: dict[str, Any]) -> dict[str, Any]:
    """SES notification from a Lambda SNS record, an SNS message or itself."""
    if "Sns" in event:
        return json.loads(event["Sns"].get("Message", "{}"))
    if "Message" in event and isinstance(event["Message"], str):
        return json.loads(event["Message"])
    if "ses" in event:
        # Direct SES -> Lambda invocation record
        return event["ses"]
    return event


def _decode_content(content: str) -> bytes:
    """SES embeds raw mail either as-is or base64 encoded."""
    stripped = content.lstrip()
    if stripped[:5].lower() in ("from:", "mime-", "recei", "retur", "deliv", "x-ori"):
        return content.encode("utf-8")
    try:
        return base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError):
        return content.encode("utf-8")


def parse_ses_notification(event: dict[str, Any]) -> SesReceipt:
    """
    Parse an SNS record, SNS message or SES notification into a receipt.

    Envelope recipients come from receipt.recipients (falling back to
    mail.destination); the envelope sender is mail.source.

    Raises:
        MessageParseError: If the notification is not valid JSON or lacks
            the mail section
    """
    try:
        notification = _unwrap_sns(event)
    except json.JSONDecodeError as e:
        raise MessageParseError("embedded", f"Invalid SNS message JSON: {e}") from e

    mail = notification.get("mail")
    if not isinstance(mail, dict):
        raise MessageParseError("embedded", "SES notification missing 'mail'")

    receipt = notification.get("receipt") or {}
    recipients = receipt.get("recipients") or mail.get("destination") or []

    action = receipt.get("action") or {}
    s3_bucket = s3_key = None
    if isinstance(action, dict) and action.get("type") == "S3":
        s3_bucket = action.get("bucketName")
        s3_key = action.get("objectKey") or action.get("objectKeyPrefix")

    content = notification.get("content")

    log.debug(
        "ses_notification_parsed",
        notification_type=notification.get("notificationType"),
        recipient_count=len(recipients),
        embedded=bool(content),
    )

    return SesReceipt(
        message_id=mail.get("messageId", ""),
        source=mail.get("source", ""),
        recipients=tuple(recipients),
        notification_type=notification.get("notificationType"),
        content=_decode_content(content) if content else None,
        s3_bucket=s3_bucket,
        s3_key=s3_key,
    )


def load_mime(raw_email: str | bytes) -> EmailMessage:
    """
    Parse raw MIME bytes.

    Raises:
        MessageParseError: If the content is empty or cannot be parsed
    """
    if not raw_email:
        raise MessageParseError("mime", "Empty message")

    raw_bytes = raw_email.encode("utf-8") if isinstance(raw_email, str) else raw_email

    try:
        return email.message_from_bytes(raw_bytes, policy=default_policy)
    except Exception as e:
        log.error("email_parse_failed", error=str(e))
        raise MessageParseError("mime", str(e)) from e


def header_map(msg: EmailMessage) -> dict[str, tuple[str, ...]]:
    """Lower-cased header name -> raw values, in message order."""
    headers: dict[str, list[str]] = {}
    for name, value in msg.raw_items():
        headers.setdefault(name.lower(), []).append(str(value).strip())
    return {name: tuple(values) for name, values in headers.items()}


def _addresses(msg: EmailMessage, name: str) -> list[MailAddress]:
    values = [str(v) for v in msg.get_all(name, [])]
    return [
        MailAddress(address=addr.strip(), name=display.strip())
        for display, addr in getaddresses(values)
        if addr and addr.strip()
    ]


def _decode_part(part: EmailMessage) -> str:
    payload = part.get_payload(decode=True)
    if not payload:
        return ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def _is_attachment(part: EmailMessage) -> bool:
    disposition = part.get_content_disposition()
    if disposition == "attachment":
        return True
    if part.get_filename():
        return True
    # Inline images referenced from the HTML body
    return disposition == "inline" and part.get_content_maintype() != "text"


def _extract_bodies_and_attachments(
    msg: EmailMessage,
) -> tuple[str, str, list[MessageAttachment]]:
    html = ""
    text = ""
    attachments: list[MessageAttachment] = []

    for part in msg.walk():
        if part.is_multipart():
            continue

        if _is_attachment(part) or (
            part.get("Content-ID") and part.get_content_maintype() != "text"
        ):
            payload = part.get_payload(decode=True) or b""
            content_type = part.get_content_type()
            filename = part.get_filename() or f"attachment.{part.get_content_subtype()}"
            content_id = part.get("Content-ID")
            attachments.append(
                MessageAttachment(
                    filename=filename,
                    content_type=content_type,
                    content_id=str(content_id).strip().strip("<>") if content_id else None,
                    content=payload,
                )
            )
            log.debug(
                "extracted_attachment",
                filename=filename,
                content_type=content_type,
                size_bytes=len(payload),
            )
            continue

        content_type = part.get_content_type()
        if content_type == "text/plain" and not text:
            text = _decode_part(part)
        elif content_type == "text/html" and not html:
            html = _decode_part(part)

    return html, text, attachments


def to_parsed_message(msg: EmailMessage) -> ParsedMessage:
    """Structured view of a parsed MIME message."""
    senders = _addresses(msg, "From")
    html, text, attachments = _extract_bodies_and_attachments(msg)

    return ParsedMessage(
        from_=senders[0] if senders else MailAddress(),
        to=_addresses(msg, "To"),
        cc=_addresses(msg, "Cc"),
        bcc=_addresses(msg, "Bcc"),
        subject=str(msg.get("Subject", "") or ""),
        html=html,
        text=text,
        attachments=attachments,
        message_id=str(msg.get("Message-ID", "") or "").strip(),
        in_reply_to=str(msg.get("In-Reply-To", "") or "").strip(),
        references=str(msg.get("References", "") or "").strip(),
    )


def parse_message(raw_email: str | bytes) -> ParsedMessage:
    """
    Parse raw email content (MIME format) into a ParsedMessage.

    Raises:
        MessageParseError: If the content cannot be parsed
    """
    return to_parsed_message(load_mime(raw_email))
