"""
DynamoDB Tools

Account and role lookups for routing, and email record persistence.
All items live in one table keyed by PK/SK (see mailroute.models.dynamo).

Calls are single-attempt: failures surface as DynamoDBError and abort the
current message only.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import boto3
from botocore.exceptions import ClientError
import structlog

from mailroute.config import get_settings
from mailroute.exceptions import AccountLookupError, DynamoDBError
from mailroute.models.dynamo import Account, EmailRecord, RolePolicy, StoredAttachment
from mailroute.status import EmailStatus, validate_transition

log = structlog.get_logger()


def _get_table():
    """Get DynamoDB table resource."""
    settings = get_settings()
    dynamodb = boto3.resource("dynamodb", **settings.dynamodb_config)
    return dynamodb.Table(settings.dynamodb_table_name)


def load_account_by_email(
    address: str,
    *,
    consistent_read: bool = True,
) -> Account | None:
    """
    Load an account by exact (normalized) address.

    Soft-deleted accounts are returned as well.

    Raises:
        AccountLookupError: On DynamoDB operation failure or a malformed row
    """
    settings = get_settings()
    table = _get_table()
    email = address.strip().lower()

    try:
        response = table.get_item(
            Key={"PK": f"ACCOUNT#{email}", "SK": "METADATA"},
            ConsistentRead=consistent_read,
        )
    except ClientError as e:
        log.error("dynamodb_account_get_failed", email=email, error=str(e))
        raise AccountLookupError(
            table_name=settings.dynamodb_table_name,
            lookup_key=email,
            error_message=str(e),
        ) from e

    item = response.get("Item")
    if not item:
        log.debug("account_not_found", email=email)
        return None

    try:
        return Account.from_dynamodb(item)
    except (TypeError, ValueError) as e:
        log.error("account_row_malformed", email=email, error=str(e))
        raise AccountLookupError(
            table_name=settings.dynamodb_table_name,
            lookup_key=email,
            error_message=f"malformed account row: {e}",
        ) from e


def load_role_policy(user_id: int) -> RolePolicy:
    """
    Load the role policy of a user.

    A user without a role row gets the permissive default (no bans, no
    domain restriction).

    Raises:
        AccountLookupError: On DynamoDB operation failure or a malformed row
    """
    settings = get_settings()
    table = _get_table()

    try:
        response = table.get_item(
            Key={"PK": f"USER#{user_id}", "SK": "ROLE"},
            ConsistentRead=True,
        )
    except ClientError as e:
        log.error("dynamodb_role_get_failed", user_id=user_id, error=str(e))
        raise AccountLookupError(
            table_name=settings.dynamodb_table_name,
            lookup_key=f"USER#{user_id}",
            error_message=str(e),
        ) from e

    item = response.get("Item")
    if not item:
        log.debug("role_policy_not_found", user_id=user_id)
        return RolePolicy(user_id=user_id)

    try:
        return RolePolicy.from_dynamodb(item)
    except (TypeError, ValueError) as e:
        log.error("role_row_malformed", user_id=user_id, error=str(e))
        raise AccountLookupError(
            table_name=settings.dynamodb_table_name,
            lookup_key=f"USER#{user_id}",
            error_message=f"malformed role row: {e}",
        ) from e


def new_email_id() -> str:
    return uuid4().hex


def save_email_record(record: EmailRecord) -> EmailRecord:
    """
    Write a new email record (status SAVING).

    Raises:
        DynamoDBError: On DynamoDB operation failure
    """
    settings = get_settings()
    table = _get_table()

    log.info(
        "saving_email_record",
        email_id=record.email_id,
        to_email=record.to_email,
        account_id=record.account_id,
    )

    try:
        table.put_item(
            Item=record.to_dynamodb(),
            ConditionExpression="attribute_not_exists(PK)",
        )
    except ClientError as e:
        log.error("dynamodb_put_failed", email_id=record.email_id, error=str(e))
        raise DynamoDBError(
            operation="put",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    return record


def save_attachment_records(attachments: list[StoredAttachment]) -> None:
    """
    Write attachment metadata rows under their email.

    Raises:
        DynamoDBError: On DynamoDB operation failure
    """
    if not attachments:
        return

    settings = get_settings()
    table = _get_table()

    try:
        with table.batch_writer() as batch:
            for sequence, attachment in enumerate(attachments, start=1):
                batch.put_item(Item=attachment.to_dynamodb(sequence))
    except ClientError as e:
        log.error("dynamodb_batch_write_failed", error=str(e))
        raise DynamoDBError(
            operation="batch_write",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    log.info("attachment_records_saved", count=len(attachments))


def complete_receive(
    email_id: str,
    status: EmailStatus,
    *,
    content: str | None = None,
) -> EmailRecord:
    """
    Move a SAVING record to its terminal status.

    Args:
        email_id: Email identifier
        status: RECEIVED or UNASSIGNED
        content: Rewritten HTML body (inline attachment links), if any

    Returns:
        Updated EmailRecord

    Raises:
        InvalidStatusTransitionError: If status is not terminal
        DynamoDBError: On DynamoDB failure, including a record not in SAVING
    """
    settings = get_settings()
    table = _get_table()

    validate_transition(EmailStatus.SAVING, status)

    update_expr = "SET #status = :status, updated_at = :now"
    expr_values: dict[str, Any] = {
        ":status": status.value,
        ":saving": EmailStatus.SAVING.value,
        ":now": int(datetime.now(timezone.utc).timestamp()),
    }
    if content is not None:
        update_expr += ", content = :content"
        expr_values[":content"] = content

    try:
        response = table.update_item(
            Key={"PK": f"EMAIL#{email_id}", "SK": "METADATA"},
            UpdateExpression=update_expr,
            ConditionExpression="#status = :saving",
            ExpressionAttributeNames={"#status": "status"},
            ExpressionAttributeValues=expr_values,
            ReturnValues="ALL_NEW",
        )
    except ClientError as e:
        log.error(
            "dynamodb_update_failed",
            email_id=email_id,
            status=status.value,
            error=str(e),
        )
        raise DynamoDBError(
            operation="update",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    log.info("email_receive_completed", email_id=email_id, status=status.value)

    attributes = dict(response["Attributes"])
    attributes.pop("updated_at", None)
    return EmailRecord.from_dynamodb(attributes)


def delete_email_record(email_id: str) -> int:
    """
    Remove an email record together with its attachment rows.

    Used to roll back a record that never reached its terminal status.
    Attachment objects in S3 are content-addressed and may be shared with
    other records, so they are left in place.

    Returns:
        Number of rows deleted

    Raises:
        DynamoDBError: On DynamoDB operation failure
    """
    settings = get_settings()
    table = _get_table()

    query_params: dict[str, Any] = {
        "KeyConditionExpression": "PK = :pk",
        "ExpressionAttributeValues": {":pk": f"EMAIL#{email_id}"},
        "ProjectionExpression": "PK, SK",
        "ConsistentRead": True,
    }

    try:
        response = table.query(**query_params)
        keys = response.get("Items", [])
        while "LastEvaluatedKey" in response:
            query_params["ExclusiveStartKey"] = response["LastEvaluatedKey"]
            response = table.query(**query_params)
            keys.extend(response.get("Items", []))

        with table.batch_writer() as batch:
            for key in keys:
                batch.delete_item(Key={"PK": key["PK"], "SK": key["SK"]})
    except ClientError as e:
        log.error("dynamodb_delete_failed", email_id=email_id, error=str(e))
        raise DynamoDBError(
            operation="delete",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    log.info("email_record_deleted", email_id=email_id, rows=len(keys))
    return len(keys)
