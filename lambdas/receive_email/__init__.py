"""
ReceiveEmail Lambda

Routes inbound mail received via SES → SNS to mailbox accounts, files it
in DynamoDB/S3 and pushes a Telegram notification.

Flow:
    Inbound mail
    → SES Receipt Rule
    → SNS Topic
    → This Lambda
    → DynamoDB email record + S3 attachments
    → Telegram
"""

from lambdas.receive_email.email_parser import (
    SesReceipt,
    header_map,
    load_mime,
    parse_message,
    parse_ses_notification,
)
from lambdas.receive_email.handler import (
    lambda_handler,
    persist_and_notify,
    process_ses_notification,
)

__all__ = [
    "SesReceipt",
    "header_map",
    "lambda_handler",
    "load_mime",
    "parse_message",
    "parse_ses_notification",
    "persist_and_notify",
    "process_ses_notification",
]
