"""
ReceiveEmail Lambda Handler

Main entry point for inbound mail. Parses SNS→SES notifications, routes the
message once per envelope recipient and files every admitted copy.

Trigger: SNS topic subscribed to the SES inbound receipt rule
Output: Email record + attachment rows in DynamoDB, attachments in S3,
        Telegram notifications

Flow (per envelope recipient):
1. Route: receive switch, allow-lists, sender binding, recipient resolution,
   account match or sink fallback, role policy, rule filter
2. Save the record as SAVING
3. Store attachments to S3 and their metadata rows
4. Rewrite inline cid: references, complete the record (RECEIVED/UNASSIGNED)
5. Push a Telegram notification
"""

import json
import time
from typing import Any

import structlog

from lambdas.receive_email.email_parser import (
    SesReceipt,
    header_map,
    load_mime,
    parse_ses_notification,
    to_parsed_message,
)
from mailroute.config import get_settings
from mailroute.exceptions import MailRouteError
from mailroute.models.dynamo import EmailRecord
from mailroute.models.message import InboundEnvelope, MailAddress, ParsedMessage
from mailroute.routing import Dropped, RoutingOutcome, normalize_address, route_message
from mailroute.tools.dynamodb import (
    complete_receive,
    delete_email_record,
    load_account_by_email,
    load_role_policy,
    new_email_id,
    save_attachment_records,
    save_email_record,
)
from mailroute.tools.s3 import (
    fetch_email_from_s3,
    rewrite_inline_references,
    store_attachments,
)
from mailroute.tools.telegram import render_notification, send_notifications

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

log = structlog.get_logger()


def _address_dicts(addresses: list[MailAddress]) -> list[dict[str, str]]:
    return [{"address": a.address, "name": a.name} for a in addresses]


def _recipient_name(message: ParsedMessage, *addresses: str) -> str:
    """Display name of the header To entry matching any of the given addresses."""
    wanted = {a for a in addresses if a}
    for entry in message.to:
        if normalize_address(entry.address) in wanted:
            return entry.name
    return ""


def build_email_record(
    outcome: RoutingOutcome,
    envelope: InboundEnvelope,
    *,
    email_id: str,
    create_time: int,
) -> EmailRecord:
    """
    Email record for an admitted (Delivered or Redacted) outcome.

    The sender name falls back to the local part of the sender address.
    """
    message = outcome.message
    account = outcome.result.account
    final_address = outcome.result.final_address

    sender = message.sender_address or envelope.from_address
    sender_name = message.from_.name or sender.partition("@")[0]

    return EmailRecord(
        email_id=email_id,
        account_id=account.account_id if account else 0,
        user_id=account.user_id if account else 0,
        to_email=final_address,
        to_name=_recipient_name(message, final_address, normalize_address(envelope.to_address)),
        send_email=sender,
        name=sender_name,
        subject=message.subject,
        content=message.html,
        text=message.text,
        cc=_address_dicts(message.cc),
        bcc=_address_dicts(message.bcc),
        recipient=_address_dicts(message.to),
        in_reply_to=message.in_reply_to,
        relation=message.references,
        message_id=message.message_id,
        create_time=create_time,
    )


def _roll_back(email_id: str) -> None:
    """Delete a record left in SAVING; the original failure is re-raised by the caller."""
    log.warning("email_record_rolled_back", email_id=email_id)
    try:
        delete_email_record(email_id)
    except MailRouteError as e:
        log.error("email_record_rollback_failed", email_id=email_id, error=e.message)


def persist_and_notify(
    outcome: RoutingOutcome,
    envelope: InboundEnvelope,
) -> EmailRecord:
    """
    File an admitted message and notify Telegram.

    Notification failures are logged by the notifier and never fail the
    message. A storage failure after the record is written removes the
    record and its attachment rows before propagating.
    """
    settings = get_settings()
    record = build_email_record(
        outcome,
        envelope,
        email_id=new_email_id(),
        create_time=int(time.time()),
    )

    save_email_record(record)

    try:
        stored = store_attachments(outcome.message.attachments, record)
        save_attachment_records(stored)

        content = rewrite_inline_references(
            record.content,
            stored,
            settings.attachment_public_domain,
        )

        completed = complete_receive(
            record.email_id,
            outcome.status,
            content=content if content != record.content else None,
        )
    except Exception:
        _roll_back(record.email_id)
        raise

    notification = render_notification(
        subject=completed.subject,
        sender_name=completed.name,
        sender_address=completed.send_email,
        recipient=completed.to_email,
        created_at=completed.create_time,
        text=completed.text,
        content=completed.content,
        tz_name=settings.notify_timezone,
    )
    send_notifications(notification)

    return completed


def _load_raw_email(receipt: SesReceipt) -> bytes:
    if receipt.content is not None:
        return receipt.content
    if receipt.stored_in_s3:
        log.info("email_stored_in_s3", bucket=receipt.s3_bucket, key=receipt.s3_key)
        return fetch_email_from_s3(receipt.s3_bucket, receipt.s3_key)
    return b""


def _route_recipient(
    recipient: str,
    receipt: SesReceipt,
    message: ParsedMessage,
    headers: dict[str, tuple[str, ...]],
) -> dict[str, Any]:
    """Route and file one envelope recipient; returns its result entry."""
    envelope = InboundEnvelope(
        from_address=receipt.source,
        to_address=recipient,
        headers=headers,
    )

    outcome = route_message(
        envelope,
        message,
        get_settings().routing_config,
        lookup_account=load_account_by_email,
        lookup_role=load_role_policy,
    )

    if isinstance(outcome, Dropped):
        return {
            "recipient": recipient,
            "outcome": "dropped",
            "reason": outcome.reason.value,
        }

    record = persist_and_notify(outcome, envelope)
    return {
        "recipient": recipient,
        "outcome": type(outcome).__name__.lower(),
        "email_id": record.email_id,
        "to_email": record.to_email,
        "status": record.status.value,
    }


def process_ses_notification(event: dict[str, Any]) -> dict[str, Any]:
    """
    Process one SES notification (SNS record, SNS message or raw).

    Each envelope recipient is handled independently: a failure is logged
    and recorded in the result list without affecting the others.

    Raises:
        MailRouteError: If the notification or the MIME content cannot be
            read at all
    """
    receipt = parse_ses_notification(event)

    if receipt.is_delivery_report:
        log.info(
            "received_delivery_notification",
            type=receipt.notification_type,
            message_id=receipt.message_id,
        )
        return {"status": "skipped", "reason": f"{receipt.notification_type} notification"}

    mime = load_mime(_load_raw_email(receipt))
    message = to_parsed_message(mime)
    headers = header_map(mime)

    log.info(
        "email_parsed",
        message_id=receipt.message_id,
        source=receipt.source,
        subject=message.subject,
        recipient_count=len(receipt.recipients),
        attachment_count=len(message.attachments),
    )

    results: list[dict[str, Any]] = []
    for recipient in receipt.recipients:
        try:
            results.append(_route_recipient(recipient, receipt, message, headers))
        except MailRouteError as e:
            log.error(
                "recipient_processing_failed",
                recipient=recipient,
                message_id=receipt.message_id,
                error=e.message,
                **e.context,
            )
            results.append(
                {"recipient": recipient, "outcome": "failed", "error": e.message}
            )
        except Exception as e:
            log.exception(
                "recipient_processing_failed",
                recipient=recipient,
                message_id=receipt.message_id,
                error=str(e),
            )
            results.append({"recipient": recipient, "outcome": "failed", "error": str(e)})

    return {"status": "processed", "message_id": receipt.message_id, "results": results}


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    AWS Lambda handler for inbound mail.

    Args:
        event: SNS event containing SES notifications
        context: Lambda context

    Returns:
        Response dict with one summary per processed notification
    """
    request_id = getattr(context, "aws_request_id", "local")

    log.info(
        "processing_inbound_email",
        request_id=request_id,
        event_keys=list(event.keys()),
    )

    if "Records" in event:
        notifications = list(event["Records"])
    elif "Message" in event or "mail" in event:
        notifications = [event]
    else:
        log.error("unknown_event_format", event_keys=list(event.keys()))
        return {
            "statusCode": 400,
            "body": json.dumps({"error": "Unknown event format"}),
        }

    summaries: list[dict[str, Any]] = []
    failed = 0
    for notification in notifications:
        try:
            summaries.append(process_ses_notification(notification))
        except MailRouteError as e:
            failed += 1
            log.error("notification_processing_failed", error=e.message, **e.context)
            summaries.append({"status": "failed", "error": e.message})
        except Exception as e:
            failed += 1
            log.exception("notification_processing_failed", error=str(e))
            summaries.append({"status": "failed", "error": str(e)})

    return {
        "statusCode": 500 if failed and failed == len(notifications) else 200,
        "body": json.dumps({"request_id": request_id, "notifications": summaries}),
    }
