"""
Unit tests for ReceiveEmail Lambda handler.

Tests cover:
- Email parser: email_parser.py
- Handler: handler.py (moto-backed DynamoDB/S3, notifications patched)
"""

import json
from unittest.mock import patch

import pytest

from mailroute.exceptions import DynamoDBError, MessageParseError, S3Error
from mailroute.models.message import REDACTED_CONTENT
from tests.fixtures.mail import (
    build_raw_email,
    put_account,
    put_role,
    ses_notification,
    ses_sns_event,
)

BUCKET = "test-mailroute-attachments"


# ============================================================================
# Email Parser Tests
# ============================================================================


class TestParseMessage:
    """Tests for parse_message."""

    def test_basic_fields(self, raw_email):
        from lambdas.receive_email.email_parser import parse_message

        message = parse_message(raw_email)

        assert message.sender_address == "alice@sender.example"
        assert message.from_.name == "Alice Sender"
        assert [a.address for a in message.to] == ["user+x@recv.example"]
        assert message.to[0].name == "User"
        assert message.subject == "Quarterly report"
        assert message.text.strip() == "Hello there"
        assert "<b>there</b>" in message.html
        assert message.message_id == "<msg-001@sender.example>"

    def test_attachment_extracted(self, raw_email):
        from lambdas.receive_email.email_parser import parse_message

        message = parse_message(raw_email)

        assert len(message.attachments) == 1
        attachment = message.attachments[0]
        assert attachment.filename == "report.pdf"
        assert attachment.content_type == "application/pdf"
        assert attachment.content == b"%PDF-1.4 data"
        assert attachment.content_id is None

    def test_inline_image_keeps_content_id(self):
        from lambdas.receive_email.email_parser import parse_message

        raw = build_raw_email(html='<img src="cid:logo">', inline_image=b"\x89PNG")

        message = parse_message(raw)

        assert len(message.attachments) == 1
        assert message.attachments[0].content_id == "logo"
        assert message.attachments[0].content_type == "image/png"
        assert 'cid:logo' in message.html

    def test_cc_and_threading_headers(self):
        from lambdas.receive_email.email_parser import parse_message

        raw = build_raw_email(
            extra_headers={
                "Cc": "Carol <carol@x.example>, dave@x.example",
                "In-Reply-To": "<prev@x.example>",
                "References": "<root@x.example> <prev@x.example>",
            }
        )

        message = parse_message(raw)

        assert [c.address for c in message.cc] == ["carol@x.example", "dave@x.example"]
        assert message.in_reply_to == "<prev@x.example>"
        assert message.references == "<root@x.example> <prev@x.example>"

    def test_plain_text_only(self):
        from lambdas.receive_email.email_parser import parse_message

        message = parse_message(build_raw_email(html=None))

        assert message.html == ""
        assert message.attachments == []

    def test_empty_raises(self):
        from lambdas.receive_email.email_parser import parse_message

        with pytest.raises(MessageParseError):
            parse_message(b"")


class TestHeaderMap:
    """Tests for header_map."""

    def test_lowercased_names_in_order(self):
        from lambdas.receive_email.email_parser import header_map, load_mime

        raw = build_raw_email(extra_headers={"X-Original-To": "orig@recv.example"})

        headers = header_map(load_mime(raw))

        assert headers["x-original-to"] == ("orig@recv.example",)
        assert headers["to"] == ("User <user+x@recv.example>",)


class TestParseSesNotification:
    """Tests for parse_ses_notification."""

    def test_sns_record_with_base64_content(self, raw_email):
        from lambdas.receive_email.email_parser import parse_ses_notification

        record = ses_sns_event(raw_email, recipients=["user@recv.example"])["Records"][0]

        receipt = parse_ses_notification(record)

        assert receipt.source == "alice@sender.example"
        assert receipt.recipients == ("user@recv.example",)
        assert receipt.content == raw_email
        assert not receipt.is_delivery_report

    def test_plain_content(self, raw_email):
        from lambdas.receive_email.email_parser import parse_ses_notification

        notification = ses_notification(raw_email, recipients=["user@recv.example"])
        notification["content"] = raw_email.decode("utf-8")

        assert parse_ses_notification(notification).content == raw_email

    def test_destination_fallback_and_s3_action(self):
        from lambdas.receive_email.email_parser import parse_ses_notification

        receipt = parse_ses_notification(
            {
                "mail": {"messageId": "m1", "source": "a@x.example", "destination": ["b@y.example"]},
                "receipt": {"action": {"type": "S3", "bucketName": "raw", "objectKey": "inbound/m1"}},
            }
        )

        assert receipt.recipients == ("b@y.example",)
        assert receipt.stored_in_s3
        assert (receipt.s3_bucket, receipt.s3_key) == ("raw", "inbound/m1")

    def test_invalid_sns_json(self):
        from lambdas.receive_email.email_parser import parse_ses_notification

        with pytest.raises(MessageParseError):
            parse_ses_notification({"Sns": {"Message": "{not json"}})

    def test_missing_mail_section(self):
        from lambdas.receive_email.email_parser import parse_ses_notification

        with pytest.raises(MessageParseError):
            parse_ses_notification({"notificationType": "Received"})


# ============================================================================
# Handler Tests
# ============================================================================


def _results(response: dict) -> list[dict]:
    body = json.loads(response["body"])
    return body["notifications"][0]["results"]


def _email_items(table) -> list[dict]:
    items = table.scan()["Items"]
    return [i for i in items if i["PK"].startswith("EMAIL#") and i["SK"] == "METADATA"]


@pytest.fixture
def notifier():
    with patch("lambdas.receive_email.handler.send_notifications") as send:
        send.return_value = {}
        yield send


class TestLambdaHandler:
    """End-to-end handler tests against moto."""

    def test_sink_fallback_end_to_end(
        self, mock_aws_all, notifier, raw_email, lambda_context, monkeypatch
    ):
        from lambdas.receive_email.handler import lambda_handler

        monkeypatch.setenv("MAILROUTE_DISPLAY_DOMAIN_MAP", '{"recv.example": "display.example"}')
        monkeypatch.setenv(
            "MAILROUTE_DISPLAY_SINK_ACCOUNT_MAP", '{"display.example": "root@display.example"}'
        )
        table = mock_aws_all["table"]
        put_account(table, "root@display.example", 7, 70)

        response = lambda_handler(
            ses_sns_event(raw_email, recipients=["user+x@recv.example"]),
            lambda_context,
        )

        assert response["statusCode"] == 200
        [result] = _results(response)
        assert result["outcome"] == "delivered"
        assert result["to_email"] == "root@display.example"
        assert result["status"] == "RECEIVED"

        [item] = _email_items(table)
        assert item["status"] == "RECEIVED"
        assert item["account_id"] == 7
        assert item["name"] == "Alice Sender"
        assert item["to_name"] == "User"
        assert item["send_email"] == "alice@sender.example"

        att = table.get_item(Key={"PK": item["PK"], "SK": "ATT#001"})["Item"]
        assert att["filename"] == "report.pdf"
        stored = mock_aws_all["s3"].get_object(Bucket=BUCKET, Key=att["key"])
        assert stored["Body"].read() == b"%PDF-1.4 data"

        notifier.assert_called_once()
        assert "root@display.example" in notifier.call_args.args[0]

    def test_strict_binding_drops_without_record(
        self, mock_aws_all, notifier, lambda_context, monkeypatch
    ):
        from lambdas.receive_email.handler import lambda_handler

        monkeypatch.setenv(
            "MAILROUTE_SENDER_BINDING_MAP",
            json.dumps(
                {
                    "relay@gmail.example": {
                        "targetDomains": ["target.example"],
                        "allowedTo": ["target.example"],
                        "strict": True,
                    }
                }
            ),
        )
        raw = build_raw_email(from_header="relay@gmail.example", to_header="user@other.example")

        response = lambda_handler(
            ses_sns_event(raw, recipients=["user@other.example"], source="relay@gmail.example"),
            lambda_context,
        )

        [result] = _results(response)
        assert result == {
            "recipient": "user@other.example",
            "outcome": "dropped",
            "reason": "sender_binding_rejected",
        }
        assert _email_items(mock_aws_all["table"]) == []
        notifier.assert_not_called()

    def test_content_ban_persists_redacted(
        self, mock_aws_all, notifier, raw_email, lambda_context
    ):
        from lambdas.receive_email.handler import lambda_handler

        table = mock_aws_all["table"]
        put_account(table, "user@recv.example", 1, 10)
        put_role(
            table,
            10,
            ban_email=frozenset({"alice@sender.example"}),
            ban_email_type="CONTENT",
        )

        response = lambda_handler(
            ses_sns_event(raw_email, recipients=["user@recv.example"]),
            lambda_context,
        )

        [result] = _results(response)
        assert result["outcome"] == "redacted"

        [item] = _email_items(table)
        assert item["content"] == REDACTED_CONTENT
        assert item["text"] == REDACTED_CONTENT
        assert item["subject"] == "Quarterly report"
        assert item["send_email"] == "alice@sender.example"
        assert "Item" not in table.get_item(Key={"PK": item["PK"], "SK": "ATT#001"})
        assert mock_aws_all["s3"].list_objects_v2(Bucket=BUCKET)["KeyCount"] == 0
        notifier.assert_called_once()

    def test_ban_all_drops(self, mock_aws_all, notifier, raw_email, lambda_context):
        from lambdas.receive_email.handler import lambda_handler

        table = mock_aws_all["table"]
        put_account(table, "user@recv.example", 1, 10)
        put_role(table, 10, ban_email=frozenset({"sender.example"}))

        response = lambda_handler(
            ses_sns_event(raw_email, recipients=["user@recv.example"]),
            lambda_context,
        )

        assert _results(response)[0]["reason"] == "banned_sender"
        assert _email_items(table) == []
        notifier.assert_not_called()

    def test_inline_references_rewritten(
        self, mock_aws_all, notifier, lambda_context, monkeypatch
    ):
        from lambdas.receive_email.handler import lambda_handler

        monkeypatch.setenv("MAILROUTE_ATTACHMENT_PUBLIC_DOMAIN", "files.example")
        table = mock_aws_all["table"]
        put_account(table, "user@recv.example", 1, 10)
        raw = build_raw_email(html='<img src="cid:logo">', inline_image=b"\x89PNG")

        lambda_handler(ses_sns_event(raw, recipients=["user@recv.example"]), lambda_context)

        [item] = _email_items(table)
        assert "cid:logo" not in item["content"]
        assert 'src="https://files.example/attachments/' in item["content"]

    def test_one_failing_recipient_does_not_block_others(
        self, mock_aws_all, notifier, raw_email, lambda_context
    ):
        from lambdas.receive_email.handler import lambda_handler
        from mailroute.tools import dynamodb as dynamodb_tools

        real_save = dynamodb_tools.save_email_record

        def flaky_save(record):
            if record.to_email == "first@recv.example":
                raise DynamoDBError("put", "TestMailRoute", "throttled")
            return real_save(record)

        event = ses_sns_event(raw_email, recipients=["first@recv.example", "second@recv.example"])

        with patch("lambdas.receive_email.handler.save_email_record", side_effect=flaky_save):
            response = lambda_handler(event, lambda_context)

        assert response["statusCode"] == 200
        first, second = _results(response)
        assert first["outcome"] == "failed"
        assert second["outcome"] == "delivered"
        assert second["status"] == "UNASSIGNED"
        assert len(_email_items(mock_aws_all["table"])) == 1

    def test_each_copy_filed_under_its_own_recipient(
        self, mock_aws_all, notifier, lambda_context
    ):
        from lambdas.receive_email.handler import lambda_handler

        table = mock_aws_all["table"]
        put_account(table, "alice@recv.example", 1, 10)
        put_account(table, "bob@recv.example", 2, 20)
        raw = build_raw_email(
            to_header="Alice <alice@recv.example>",
            extra_headers={"Cc": "Bob <bob@recv.example>"},
        )

        response = lambda_handler(
            ses_sns_event(raw, recipients=["alice@recv.example", "bob@recv.example"]),
            lambda_context,
        )

        alice, bob = _results(response)
        assert alice["to_email"] == "alice@recv.example"
        assert bob["to_email"] == "bob@recv.example"
        owners = sorted((i["to_email"], i["account_id"]) for i in _email_items(table))
        assert owners == [("alice@recv.example", 1), ("bob@recv.example", 2)]

    def test_attachment_failure_leaves_no_record(
        self, mock_aws_all, notifier, raw_email, lambda_context
    ):
        from lambdas.receive_email.handler import lambda_handler

        table = mock_aws_all["table"]
        put_account(table, "user@recv.example", 1, 10)
        error = S3Error("upload", BUCKET, error_message="slow down")

        with patch("lambdas.receive_email.handler.store_attachments", side_effect=error):
            response = lambda_handler(
                ses_sns_event(raw_email, recipients=["user@recv.example"]),
                lambda_context,
            )

        [result] = _results(response)
        assert result["outcome"] == "failed"
        assert [i for i in table.scan()["Items"] if i["PK"].startswith("EMAIL#")] == []
        notifier.assert_not_called()

    def test_completion_failure_removes_attachment_rows(
        self, mock_aws_all, notifier, raw_email, lambda_context
    ):
        from lambdas.receive_email.handler import lambda_handler

        table = mock_aws_all["table"]
        put_account(table, "user@recv.example", 1, 10)
        error = DynamoDBError("update", "TestMailRoute", "conditional check failed")

        with patch("lambdas.receive_email.handler.complete_receive", side_effect=error):
            response = lambda_handler(
                ses_sns_event(raw_email, recipients=["user@recv.example"]),
                lambda_context,
            )

        assert _results(response)[0]["outcome"] == "failed"
        assert [i for i in table.scan()["Items"] if i["PK"].startswith("EMAIL#")] == []

    def test_malformed_role_row_fails_only_that_recipient(
        self, mock_aws_all, notifier, raw_email, lambda_context
    ):
        from lambdas.receive_email.handler import lambda_handler

        table = mock_aws_all["table"]
        put_account(table, "first@recv.example", 1, 10)
        put_account(table, "second@recv.example", 2, 20)
        table.put_item(Item={"PK": "USER#10", "SK": "ROLE", "user_id": 10, "ban_email_type": "NONE"})

        response = lambda_handler(
            ses_sns_event(raw_email, recipients=["first@recv.example", "second@recv.example"]),
            lambda_context,
        )

        assert response["statusCode"] == 200
        first, second = _results(response)
        assert first["outcome"] == "failed"
        assert second["outcome"] == "delivered"
        assert second["status"] == "RECEIVED"
        [item] = _email_items(table)
        assert item["to_email"] == "second@recv.example"

    def test_unexpected_error_isolated_per_recipient(
        self, mock_aws_all, notifier, raw_email, lambda_context
    ):
        from lambdas.receive_email import handler

        real_route = handler.route_message

        def broken_for_first(envelope, *args, **kwargs):
            if envelope.to_address == "first@recv.example":
                raise KeyError("account_id")
            return real_route(envelope, *args, **kwargs)

        event = ses_sns_event(raw_email, recipients=["first@recv.example", "second@recv.example"])

        with patch("lambdas.receive_email.handler.route_message", side_effect=broken_for_first):
            response = handler.lambda_handler(event, lambda_context)

        first, second = _results(response)
        assert first["outcome"] == "failed"
        assert second["outcome"] == "delivered"

    def test_unexpected_error_isolated_per_notification(self, raw_email, lambda_context):
        from lambdas.receive_email.handler import lambda_handler

        first = ses_sns_event(raw_email, recipients=["a@recv.example"])["Records"][0]
        second = ses_sns_event(raw_email, recipients=["b@recv.example"])["Records"][0]
        processed = {"status": "processed", "message_id": "m2", "results": []}

        with patch(
            "lambdas.receive_email.handler.process_ses_notification",
            side_effect=[TypeError("bad record"), processed],
        ):
            response = lambda_handler({"Records": [first, second]}, lambda_context)

        body = json.loads(response["body"])
        assert response["statusCode"] == 200
        assert body["notifications"][0] == {"status": "failed", "error": "bad record"}
        assert body["notifications"][1] == processed

    def test_receive_closed(self, mock_aws_all, notifier, raw_email, lambda_context, monkeypatch):
        from lambdas.receive_email.handler import lambda_handler

        monkeypatch.setenv("MAILROUTE_RECEIVE_ENABLED", "false")

        response = lambda_handler(
            ses_sns_event(raw_email, recipients=["user@recv.example"]),
            lambda_context,
        )

        assert _results(response)[0]["reason"] == "receive_closed"
        assert _email_items(mock_aws_all["table"]) == []

    def test_mail_stored_in_s3(self, mock_aws_all, notifier, raw_email):
        from lambdas.receive_email.handler import process_ses_notification

        mock_aws_all["s3"].put_object(Bucket=BUCKET, Key="inbound/m1", Body=raw_email)
        notification = {
            "notificationType": "Received",
            "mail": {"messageId": "m1", "source": "alice@sender.example"},
            "receipt": {
                "recipients": ["user@recv.example"],
                "action": {"type": "S3", "bucketName": BUCKET, "objectKey": "inbound/m1"},
            },
        }

        summary = process_ses_notification(notification)

        assert summary["results"][0]["outcome"] == "delivered"

    def test_bounce_skipped(self, raw_email, lambda_context):
        from lambdas.receive_email.handler import lambda_handler

        event = ses_sns_event(
            raw_email,
            recipients=["user@recv.example"],
            notification_type="Bounce",
        )

        response = lambda_handler(event, lambda_context)

        body = json.loads(response["body"])
        assert response["statusCode"] == 200
        assert body["notifications"][0]["status"] == "skipped"

    def test_unreadable_message_fails_notification(self, mock_aws_all, lambda_context):
        from lambdas.receive_email.handler import lambda_handler

        notification = {
            "mail": {"messageId": "m1", "source": "a@x.example"},
            "receipt": {"recipients": ["user@recv.example"]},
        }

        response = lambda_handler({"Message": json.dumps(notification)}, lambda_context)

        assert response["statusCode"] == 500
        assert json.loads(response["body"])["notifications"][0]["status"] == "failed"

    def test_unknown_event_format(self, lambda_context):
        from lambdas.receive_email.handler import lambda_handler

        response = lambda_handler({"foo": "bar"}, lambda_context)

        assert response["statusCode"] == 400
