"""
Pytest Configuration and Shared Fixtures

Provides moto AWS mocking, sample messages and test utilities.
"""

import os

import boto3
import pytest
from moto import mock_aws

# Set test environment before importing application modules
os.environ["MAILROUTE_DYNAMODB_TABLE_NAME"] = "TestMailRoute"
os.environ["MAILROUTE_S3_BUCKET_NAME"] = "test-mailroute-attachments"
os.environ["MAILROUTE_AWS_REGION"] = "us-west-2"
os.environ["MAILROUTE_TG_BOT_ENABLED"] = "false"
os.environ["AWS_DEFAULT_REGION"] = "us-west-2"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"

TABLE_NAME = "TestMailRoute"
BUCKET_NAME = "test-mailroute-attachments"


@pytest.fixture(autouse=True)
def fresh_settings():
    """Reload settings from the environment for every test."""
    from mailroute.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# --- AWS Mocking Fixtures ---


@pytest.fixture
def aws_credentials():
    """Mock AWS credentials for moto."""
    return {
        "aws_access_key_id": "testing",
        "aws_secret_access_key": "testing",
        "region_name": "us-west-2",
    }


def _create_table(dynamodb):
    table = dynamodb.create_table(
        TableName=TABLE_NAME,
        KeySchema=[
            {"AttributeName": "PK", "KeyType": "HASH"},
            {"AttributeName": "SK", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "PK", "AttributeType": "S"},
            {"AttributeName": "SK", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    table.meta.client.get_waiter("table_exists").wait(TableName=TABLE_NAME)
    return table


def _create_bucket(s3) -> None:
    s3.create_bucket(
        Bucket=BUCKET_NAME,
        CreateBucketConfiguration={"LocationConstraint": "us-west-2"},
    )


@pytest.fixture
def mock_dynamodb(aws_credentials):
    """Create a mocked MailRoute table; yields the Table resource."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", **aws_credentials)
        yield _create_table(dynamodb)


@pytest.fixture
def mock_s3(aws_credentials):
    """Create a mocked attachment bucket; yields the S3 client."""
    with mock_aws():
        s3 = boto3.client("s3", **aws_credentials)
        _create_bucket(s3)
        yield s3


@pytest.fixture
def mock_aws_all(aws_credentials):
    """
    Mock all AWS services used by the application.

    Provides a complete mocked AWS environment.
    """
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", **aws_credentials)
        table = _create_table(dynamodb)

        s3 = boto3.client("s3", **aws_credentials)
        _create_bucket(s3)

        yield {"table": table, "s3": s3}


# --- Message Fixtures ---


@pytest.fixture
def raw_email() -> bytes:
    """Sample multipart message with one PDF attachment."""
    from tests.fixtures.mail import build_raw_email

    return build_raw_email(attachments=[("report.pdf", "application/pdf", b"%PDF-1.4 data")])


@pytest.fixture
def lambda_context():
    """Minimal Lambda context."""

    class _Context:
        aws_request_id = "req-test-001"

    return _Context()
