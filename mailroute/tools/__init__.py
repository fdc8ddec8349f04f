# Shared Tools
"""
Collaborator implementations used by the receive Lambda.

- DynamoDB: account/role lookups and email persistence
- S3: raw mail retrieval and attachment storage
- Telegram: notification fan-out
"""

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
    build_attachment_key,
    fetch_email_from_s3,
    rewrite_inline_references,
    store_attachments,
)
from mailroute.tools.telegram import (
    html_to_text,
    notify_chats,
    render_notification,
    send_notifications,
)

__all__ = [
    # DynamoDB tools
    "complete_receive",
    "delete_email_record",
    "load_account_by_email",
    "load_role_policy",
    "new_email_id",
    "save_attachment_records",
    "save_email_record",
    # S3 tools
    "build_attachment_key",
    "fetch_email_from_s3",
    "rewrite_inline_references",
    "store_attachments",
    # Telegram tools
    "html_to_text",
    "notify_chats",
    "render_notification",
    "send_notifications",
]
